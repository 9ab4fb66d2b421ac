"""Data models for crosvm-runner.

All models are frozen: a GuestConfig handed to the argument builder or the
launch supervisor is never mutated. Field-level types are checked by pydantic;
rules spanning several fields (rootfs vs. disks, network triple, kernel path)
are enforced by crosvm_cmd.build_crosvm_args so that the error names the
offending field.
"""

from __future__ import annotations

import os
from enum import Enum
from ipaddress import IPv4Address
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class DiskType(str, Enum):
    """Disk image formats understood by crosvm."""

    FLAT_FILE = "flatfile"
    QCOW = "qcow"


class _FrozenModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,  # Immutable after creation
        extra="forbid",  # Reject unknown fields
    )


class SMP(_FrozenModel):
    """Guest multi-processor configuration."""

    cpus: int = Field(default=0, ge=0, description="Number of vCPUs (0 = hypervisor default)")


class Memory(_FrozenModel):
    """Guest memory configuration."""

    size: int = Field(default=0, ge=0, description="Guest memory in MiB (0 = hypervisor default)")


class Kernel(_FrozenModel):
    """Guest kernel configuration."""

    path: str = Field(default="", description="Kernel image path on the host")
    params: str = Field(default="", description="Kernel command line")


class NetDevice(_FrozenModel):
    """Guest networking device.

    Either all of mac_address, host_ip and netmask are set, or none of them.
    """

    mac_address: str = Field(default="", description="Guest interface MAC address")
    host_ip: IPv4Address | None = Field(default=None, description="IPv4 address of the host TAP interface")
    netmask: IPv4Address | None = Field(default=None, description="Netmask of the guest subnet")
    vhost: bool = Field(default=False, description="Emulate virtio-net in the host kernel (vhost-net)")

    def is_empty(self) -> bool:
        return not self.mac_address and self.host_ip is None and self.netmask is None


class Disk(_FrozenModel):
    """Host disk image made accessible in the guest."""

    path: str = Field(default="", description="Disk image path on the host")
    type: str = Field(description="Image format: 'flatfile' or 'qcow'")
    writable: bool = Field(default=False, description="Attach read-write instead of read-only")


class Security(_FrozenModel):
    """Guest sandboxing settings.

    disable_sandbox runs all devices in a single unsandboxed process. Otherwise
    devices are sandboxed with seccomp policies from seccomp_policy_dir (empty
    means the hypervisor's built-in default).
    """

    disable_sandbox: bool = False
    seccomp_policy_dir: str = ""


class GuestConfig(_FrozenModel):
    """Complete crosvm guest configuration."""

    path: str | None = Field(default=None, description="crosvm binary (None = settings / $PATH lookup)")
    rootfs: str = Field(default="", description="Read-only root filesystem image")
    socket: str = Field(default="", description="Control socket path")
    disks: tuple[Disk, ...] = ()
    kernel: Kernel = Kernel()
    memory: Memory = Memory()
    smp: SMP = SMP()
    net: NetDevice = NetDevice()
    sec: Security = Security()

    @classmethod
    def from_json_file(cls, path: str | os.PathLike[str]) -> GuestConfig:
        """Load a guest configuration from a JSON document.

        Raises:
            OSError: File cannot be read
            pydantic.ValidationError: Document does not match the schema
        """
        return cls.model_validate_json(Path(path).read_text())


class ProcessAttrs(_FrozenModel):
    """OS-level attributes applied to spawned crosvm processes.

    start_new_session keeps crosvm out of the caller's process group so a
    terminal Ctrl-C does not reach a detached guest.
    """

    user: str | int | None = None
    group: str | int | None = None
    extra_groups: tuple[str | int, ...] | None = None
    umask: int = Field(default=-1, ge=-1, le=0o777, description="-1 keeps the parent umask")
    start_new_session: bool = True
    cwd: Path | None = None
    env: dict[str, str] | None = None

    def popen_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for asyncio.create_subprocess_exec()."""
        kwargs: dict[str, Any] = {"start_new_session": self.start_new_session}
        if self.user is not None:
            kwargs["user"] = self.user
        if self.group is not None:
            kwargs["group"] = self.group
        if self.extra_groups is not None:
            kwargs["extra_groups"] = list(self.extra_groups)
        if self.umask != -1:
            kwargs["umask"] = self.umask
        if self.cwd is not None:
            kwargs["cwd"] = self.cwd
        if self.env is not None:
            kwargs["env"] = dict(self.env)
        return kwargs
