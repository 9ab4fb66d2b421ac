"""Unit tests for the crosvm argument builder.

Pure functions, no processes: every test feeds a GuestConfig in and checks
the exact token list (or the ConfigValidationError) that comes out.
"""

from ipaddress import IPv4Address

import pytest
from hypothesis import assume, given, settings
from hypothesis.strategies import (
    booleans,
    builds,
    from_regex,
    integers,
    ip_addresses,
    just,
    lists,
    one_of,
    sampled_from,
    text,
)

from crosvm_runner.crosvm_cmd import (
    ASSEMBLY_STEPS,
    build_crosvm_args,
    build_crosvm_cmd,
    format_disk,
    format_kernel,
    format_memory,
    format_net,
    format_security,
    format_smp,
)
from crosvm_runner.exceptions import ConfigValidationError
from crosvm_runner.models import SMP, Disk, DiskType, GuestConfig, Kernel, Memory, NetDevice, Security


def _net(**overrides: object) -> NetDevice:
    fields: dict[str, object] = {
        "mac_address": "AA:BB:CC:00:00:12",
        "host_ip": IPv4Address("192.168.30.1"),
        "netmask": IPv4Address("255.255.255.0"),
    }
    fields.update(overrides)
    return NetDevice(**fields)  # type: ignore[arg-type]


# ============================================================================
# Full Assembly
# ============================================================================


class TestBuildCrosvmArgs:
    """End-to-end argument assembly."""

    def test_qcow_disk_memory_cpus_no_sandbox(self) -> None:
        """Every section appears once, in canonical order, kernel path last."""
        config = GuestConfig(
            socket="/tmp/s.sock",
            rootfs="rootfs.ext4",
            disks=(Disk(path="image.qcow", type="qcow", writable=True),),
            memory=Memory(size=1024),
            smp=SMP(cpus=2),
            sec=Security(disable_sandbox=True),
            kernel=Kernel(path="vmlinux"),
        )
        assert build_crosvm_args(config) == [
            "-s", "/tmp/s.sock",
            "-r", "rootfs.ext4",
            "--rwqcow", "image.qcow",
            "-m", "1024",
            "-c", "2",
            "--disable-sandbox",
            "vmlinux",
        ]  # fmt: skip

    def test_minimal_config_keeps_sandbox(self) -> None:
        """Default security emits the seccomp flags with an empty policy dir."""
        config = GuestConfig(socket="s.sock", rootfs="rootfs.ext4", kernel=Kernel(path="vmlinux"))
        assert build_crosvm_args(config) == [
            "-s", "s.sock",
            "-r", "rootfs.ext4",
            "-u", "--seccomp-policy-dir", "",
            "vmlinux",
        ]  # fmt: skip

    def test_network_and_kernel_params(self) -> None:
        """Network tokens sit between disks and memory; params precede the kernel path."""
        config = GuestConfig(
            socket="s.sock",
            disks=(Disk(path="disk.img", type="flatfile"),),
            net=_net(vhost=True),
            memory=Memory(size=512),
            sec=Security(seccomp_policy_dir="/usr/share/policy/crosvm"),
            kernel=Kernel(path="bzImage", params="console=ttyS0 root=/dev/vda"),
        )
        assert build_crosvm_args(config) == [
            "-s", "s.sock",
            "--disk", "disk.img",
            "--mac", "AA:BB:CC:00:00:12",
            "--host_ip", "192.168.30.1",
            "--netmask", "255.255.255.0",
            "--vhost-net",
            "-m", "512",
            "-u", "--seccomp-policy-dir", "/usr/share/policy/crosvm",
            "-p", "console=ttyS0 root=/dev/vda",
            "bzImage",
        ]  # fmt: skip

    def test_disks_keep_caller_order(self) -> None:
        """Disks are emitted in the order given, each with its own flag."""
        config = GuestConfig(
            socket="s.sock",
            disks=(
                Disk(path="b.img", type="flatfile", writable=True),
                Disk(path="a.qcow", type="qcow"),
                Disk(path="c.img", type="flatfile"),
            ),
            kernel=Kernel(path="vmlinux"),
        )
        args = build_crosvm_args(config)
        assert args[2:8] == ["--rwdisk", "b.img", "--qcow", "a.qcow", "--disk", "c.img"]

    def test_zero_memory_and_cpus_are_omitted(self) -> None:
        config = GuestConfig(
            socket="s.sock",
            rootfs="rootfs.ext4",
            memory=Memory(size=0),
            smp=SMP(cpus=0),
            kernel=Kernel(path="vmlinux"),
        )
        args = build_crosvm_args(config)
        assert "-m" not in args
        assert "-c" not in args

    def test_returns_fresh_list(self) -> None:
        """Mutating the result does not affect later calls."""
        config = GuestConfig(socket="s.sock", rootfs="r", kernel=Kernel(path="k"))
        first = build_crosvm_args(config)
        first.append("--junk")
        assert build_crosvm_args(config) == first[:-1]

    def test_assembly_steps_end_with_kernel(self) -> None:
        """The kernel step is last so its path stays the trailing positional."""
        assert ASSEMBLY_STEPS[-1].__name__ == "_kernel_step"
        assert ASSEMBLY_STEPS[0].__name__ == "_control_socket_step"


# ============================================================================
# Validation
# ============================================================================


class TestBuildCrosvmArgsValidation:
    """Invalid configurations raise ConfigValidationError and return nothing."""

    def test_no_rootfs_and_no_disks(self) -> None:
        config = GuestConfig(socket="s.sock", kernel=Kernel(path="vmlinux"))
        with pytest.raises(ConfigValidationError, match="No rootfs or disks specified"):
            build_crosvm_args(config)

    def test_missing_socket(self) -> None:
        config = GuestConfig(rootfs="rootfs.ext4", kernel=Kernel(path="vmlinux"))
        with pytest.raises(ConfigValidationError, match="Socket path must be defined"):
            build_crosvm_args(config)

    def test_rootfs_checked_before_socket(self) -> None:
        """With neither rootfs nor socket, the rootfs error is reported."""
        with pytest.raises(ConfigValidationError, match="No rootfs"):
            build_crosvm_args(GuestConfig(kernel=Kernel(path="vmlinux")))

    def test_missing_kernel_path(self) -> None:
        config = GuestConfig(socket="s.sock", rootfs="rootfs.ext4", kernel=Kernel(params="quiet"))
        with pytest.raises(ConfigValidationError, match="Kernel path must be specified"):
            build_crosvm_args(config)

    def test_unknown_disk_type(self) -> None:
        config = GuestConfig(
            socket="s.sock",
            disks=(Disk(path="disk.vmdk", type="vmdk"),),
            kernel=Kernel(path="vmlinux"),
        )
        with pytest.raises(ConfigValidationError, match="Unknown disk type vmdk") as exc_info:
            build_crosvm_args(config)
        assert exc_info.value.context["type"] == "vmdk"

    def test_disk_without_path(self) -> None:
        config = GuestConfig(socket="s.sock", disks=(Disk(type="qcow"),), kernel=Kernel(path="vmlinux"))
        with pytest.raises(ConfigValidationError, match="Path not specified for disk"):
            build_crosvm_args(config)

    def test_partial_network(self) -> None:
        config = GuestConfig(
            socket="s.sock",
            rootfs="rootfs.ext4",
            net=NetDevice(mac_address="AA:BB:CC:00:00:12"),
            kernel=Kernel(path="vmlinux"),
        )
        with pytest.raises(ConfigValidationError, match="MACAddress, HostIP and NetMask must be defined"):
            build_crosvm_args(config)


# ============================================================================
# Fragment Formatters
# ============================================================================


class TestFormatDisk:
    """Disk flag selection by image type and writability."""

    @pytest.mark.parametrize(
        ("disk_type", "writable", "flag"),
        [
            (DiskType.FLAT_FILE, False, "--disk"),
            (DiskType.FLAT_FILE, True, "--rwdisk"),
            (DiskType.QCOW, False, "--qcow"),
            (DiskType.QCOW, True, "--rwqcow"),
        ],
    )
    def test_flag(self, disk_type: DiskType, writable: bool, flag: str) -> None:
        assert format_disk(Disk(path="img", type=disk_type.value, writable=writable)) == (flag, "img")

    def test_type_is_case_sensitive(self) -> None:
        with pytest.raises(ConfigValidationError, match="Unknown disk type QCOW"):
            format_disk(Disk(path="img", type="QCOW"))


class TestFormatNet:
    """Network device fragment."""

    def test_empty_device_emits_nothing(self) -> None:
        assert format_net(NetDevice()) == ()

    def test_vhost_alone_emits_nothing(self) -> None:
        """vhost without any address field is an unset device."""
        assert format_net(NetDevice(vhost=True)) == ()

    def test_full_triple(self) -> None:
        assert format_net(_net()) == (
            "--mac", "AA:BB:CC:00:00:12",
            "--host_ip", "192.168.30.1",
            "--netmask", "255.255.255.0",
        )  # fmt: skip

    @pytest.mark.parametrize(
        ("overrides", "missing"),
        [
            ({"mac_address": ""}, ["mac_address"]),
            ({"host_ip": None}, ["host_ip"]),
            ({"netmask": None}, ["netmask"]),
            ({"host_ip": None, "netmask": None}, ["host_ip", "netmask"]),
        ],
    )
    def test_partial_triple_names_missing_fields(self, overrides: dict[str, object], missing: list[str]) -> None:
        with pytest.raises(ConfigValidationError) as exc_info:
            format_net(_net(**overrides))
        assert exc_info.value.context["missing"] == missing


class TestScalarFragments:
    """Memory, vCPU, security and kernel fragments."""

    def test_memory(self) -> None:
        assert format_memory(Memory(size=2048)) == ("-m", "2048")
        assert format_memory(Memory()) == ()

    def test_smp(self) -> None:
        assert format_smp(SMP(cpus=4)) == ("-c", "4")
        assert format_smp(SMP()) == ()

    def test_security_disabled_ignores_policy_dir(self) -> None:
        sec = Security(disable_sandbox=True, seccomp_policy_dir="/policy")
        assert format_security(sec) == ("--disable-sandbox",)

    def test_security_with_policy_dir(self) -> None:
        assert format_security(Security(seccomp_policy_dir="/policy")) == ("-u", "--seccomp-policy-dir", "/policy")

    def test_kernel_without_params(self) -> None:
        assert format_kernel(Kernel(path="vmlinux")) == ("vmlinux",)

    def test_kernel_with_params(self) -> None:
        assert format_kernel(Kernel(path="vmlinux", params="quiet")) == ("-p", "quiet", "vmlinux")


# ============================================================================
# Full Command
# ============================================================================


class TestBuildCrosvmCmd:
    """Binary resolution and the run subcommand."""

    def test_default_binary(self) -> None:
        config = GuestConfig(socket="s.sock", rootfs="r", kernel=Kernel(path="k"))
        assert build_crosvm_cmd(config)[:3] == ["crosvm", "run", "-s"]

    def test_settings_binary(self) -> None:
        config = GuestConfig(socket="s.sock", rootfs="r", kernel=Kernel(path="k"))
        assert build_crosvm_cmd(config, "/opt/crosvm/bin/crosvm")[0] == "/opt/crosvm/bin/crosvm"

    def test_config_path_wins(self) -> None:
        config = GuestConfig(path="/usr/local/bin/crosvm", socket="s.sock", rootfs="r", kernel=Kernel(path="k"))
        assert build_crosvm_cmd(config, "/opt/crosvm/bin/crosvm")[0] == "/usr/local/bin/crosvm"


# ============================================================================
# Property-Based Tests
# ============================================================================

# No leading '-' so generated values never look like flags
_paths = text(alphabet="abcdefghijklmnopqrstuvwxyz0123456789/._", min_size=1, max_size=16)

_disks = _paths.flatmap(
    lambda p: sampled_from([Disk(path=p, type=t.value, writable=w) for t in DiskType for w in (False, True)])
)

_nets = one_of(
    just(NetDevice()),
    builds(
        NetDevice,
        mac_address=from_regex(r"[0-9A-F]{2}(:[0-9A-F]{2}){5}", fullmatch=True),
        host_ip=ip_addresses(v=4),
        netmask=ip_addresses(v=4),
        vhost=booleans(),
    ),
)


class TestAssemblyOrderProperties:
    """Ordering holds for arbitrary valid configurations."""

    @given(
        rootfs=one_of(just(""), _paths),
        socket=_paths,
        kernel_path=_paths,
        disks=lists(_disks, max_size=4),
        net=_nets,
        memory=integers(min_value=0, max_value=65536),
        cpus=integers(min_value=0, max_value=64),
        disable_sandbox=booleans(),
    )
    @settings(max_examples=200)
    def test_canonical_order(
        self,
        rootfs: str,
        socket: str,
        kernel_path: str,
        disks: list[Disk],
        net: NetDevice,
        memory: int,
        cpus: int,
        disable_sandbox: bool,
    ) -> None:
        """Socket, rootfs, disks, network, memory, vCPUs, security, then the kernel path."""
        assume(rootfs or disks)
        config = GuestConfig(
            rootfs=rootfs,
            socket=socket,
            disks=tuple(disks),
            net=net,
            memory=Memory(size=memory),
            smp=SMP(cpus=cpus),
            sec=Security(disable_sandbox=disable_sandbox),
            kernel=Kernel(path=kernel_path),
        )
        args = build_crosvm_args(config)

        head = ["-s", socket, *(["-r", rootfs] if rootfs else [])]
        assert args[: len(head)] == head
        assert args[-1] == kernel_path

        disk_start = len(head)
        disk_tokens = [token for disk in disks for token in format_disk(disk)]
        assert args[disk_start : disk_start + len(disk_tokens)] == disk_tokens

        net_start = disk_start + len(disk_tokens)
        net_tokens = list(format_net(net))
        assert args[net_start : net_start + len(net_tokens)] == net_tokens
        if memory:
            assert args.index("-m") == net_start + len(net_tokens)

        tail = args[net_start + len(net_tokens) : -1]
        expected_tail = [*format_memory(config.memory), *format_smp(config.smp), *format_security(config.sec)]
        assert tail == expected_tail
