"""crosvm command line builder.

Translates a GuestConfig into the argument list of ``crosvm run``. crosvm's
parser treats the kernel image as the trailing positional argument, so token
order is part of the contract:

    control socket -> rootfs -> disks (caller order) -> network -> memory
    -> vCPUs -> security -> kernel params + kernel path (always last)

Assembly is the fixed tuple ASSEMBLY_STEPS applied to an immutable token
accumulator. Each step returns the extended tuple or raises
ConfigValidationError, so the first invalid fragment stops assembly and
nothing partial is returned.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Final

from crosvm_runner import constants
from crosvm_runner.exceptions import ConfigValidationError
from crosvm_runner.models import SMP, Disk, DiskType, GuestConfig, Kernel, Memory, NetDevice, Security

Tokens = tuple[str, ...]
AssemblyStep = Callable[[GuestConfig, Tokens], Tokens]

# (image format, writable) -> crosvm flag
_DISK_FLAGS: Final[dict[tuple[DiskType, bool], str]] = {
    (DiskType.FLAT_FILE, False): "--disk",
    (DiskType.FLAT_FILE, True): "--rwdisk",
    (DiskType.QCOW, False): "--qcow",
    (DiskType.QCOW, True): "--rwqcow",
}


# =============================================================================
# Fragment formatters
# =============================================================================


def format_disk(disk: Disk) -> Tokens:
    """Format one disk as ``(flag, path)``.

    Raises:
        ConfigValidationError: Path missing or image type not recognized
    """
    if not disk.path:
        raise ConfigValidationError("Path not specified for disk", context={"field": "disks.path"})

    try:
        disk_type = DiskType(disk.type)
    except ValueError:
        raise ConfigValidationError(
            f"Unknown disk type {disk.type}",
            context={"field": "disks.type", "type": disk.type, "path": disk.path},
        ) from None

    return (_DISK_FLAGS[(disk_type, disk.writable)], disk.path)


def format_net(net: NetDevice) -> Tokens:
    """Format the network device; empty when no address field is set.

    Raises:
        ConfigValidationError: Only some of mac_address, host_ip and netmask are set
    """
    if net.is_empty():
        return ()

    missing = [
        name
        for name, is_set in (
            ("mac_address", bool(net.mac_address)),
            ("host_ip", net.host_ip is not None),
            ("netmask", net.netmask is not None),
        )
        if not is_set
    ]
    if missing:
        raise ConfigValidationError(
            f"MACAddress, HostIP and NetMask must be defined (missing: {', '.join(missing)})",
            context={"field": "net", "missing": missing},
        )

    tokens: Tokens = ("--mac", net.mac_address, "--host_ip", str(net.host_ip), "--netmask", str(net.netmask))
    if net.vhost:
        tokens += ("--vhost-net",)
    return tokens


def format_memory(memory: Memory) -> Tokens:
    return ("-m", str(memory.size)) if memory.size > 0 else ()


def format_smp(smp: SMP) -> Tokens:
    return ("-c", str(smp.cpus)) if smp.cpus > 0 else ()


def format_security(sec: Security) -> Tokens:
    """Sandbox disabled, or sandboxed with a (possibly empty) seccomp policy dir."""
    if sec.disable_sandbox:
        return ("--disable-sandbox",)
    # Empty dir is passed through: crosvm falls back to its built-in policies
    return ("-u", "--seccomp-policy-dir", sec.seccomp_policy_dir)


def format_kernel(kernel: Kernel) -> Tokens:
    """Format kernel params and the trailing positional kernel path.

    Raises:
        ConfigValidationError: Kernel path missing
    """
    if not kernel.path:
        raise ConfigValidationError("Kernel path must be specified", context={"field": "kernel.path"})

    tokens: Tokens = ("-p", kernel.params) if kernel.params else ()
    return (*tokens, kernel.path)


# =============================================================================
# Assembly steps
# =============================================================================


def _control_socket_step(config: GuestConfig, args: Tokens) -> Tokens:
    return (*args, "-s", config.socket)


def _rootfs_step(config: GuestConfig, args: Tokens) -> Tokens:
    return (*args, "-r", config.rootfs) if config.rootfs else args


def _disks_step(config: GuestConfig, args: Tokens) -> Tokens:
    for disk in config.disks:
        args = (*args, *format_disk(disk))
    return args


def _net_step(config: GuestConfig, args: Tokens) -> Tokens:
    return (*args, *format_net(config.net))


def _memory_step(config: GuestConfig, args: Tokens) -> Tokens:
    return (*args, *format_memory(config.memory))


def _smp_step(config: GuestConfig, args: Tokens) -> Tokens:
    return (*args, *format_smp(config.smp))


def _security_step(config: GuestConfig, args: Tokens) -> Tokens:
    return (*args, *format_security(config.sec))


def _kernel_step(config: GuestConfig, args: Tokens) -> Tokens:
    return (*args, *format_kernel(config.kernel))


ASSEMBLY_STEPS: Final[tuple[AssemblyStep, ...]] = (
    _control_socket_step,
    _rootfs_step,
    _disks_step,
    _net_step,
    _memory_step,
    _smp_step,
    _security_step,
    _kernel_step,  # must stay last: kernel path is positional
)


def validate_guest_config(config: GuestConfig) -> None:
    """Check the requirements that must hold before any token is emitted.

    Raises:
        ConfigValidationError: No rootfs and no disks, or no control socket
    """
    if not config.rootfs and not config.disks:
        raise ConfigValidationError("No rootfs or disks specified", context={"field": "rootfs"})
    if not config.socket:
        raise ConfigValidationError("Socket path must be defined", context={"field": "socket"})


def build_crosvm_args(config: GuestConfig) -> list[str]:
    """Build the argument list for ``crosvm run`` (without binary and subcommand).

    Args:
        config: Guest configuration

    Returns:
        Ordered argument tokens

    Raises:
        ConfigValidationError: Configuration is incomplete or contradictory
    """
    validate_guest_config(config)

    args: Tokens = ()
    for step in ASSEMBLY_STEPS:
        args = step(config, args)
    return list(args)


def resolve_binary(path: str | None, default: str = constants.DEFAULT_CROSVM_BINARY) -> str:
    """Return the crosvm binary to execute; bare names are looked up on $PATH at exec time."""
    return path or default


def build_crosvm_cmd(config: GuestConfig, binary: str | None = None) -> list[str]:
    """Build the full ``<binary> run <args>`` command line for a guest."""
    args = build_crosvm_args(config)
    return [resolve_binary(config.path, binary or constants.DEFAULT_CROSVM_BINARY), constants.RUN_SUBCOMMAND, *args]
