"""crosvm-runner: launch and supervise crosvm guests from asyncio.

Quick Start:
    ```python
    from crosvm_runner import GuestConfig, Kernel, StdlibLog, execute_stop, launch_crosvm_async

    config = GuestConfig(
        rootfs="rootfs.ext4",
        socket="/run/user/1000/crosvm.sock",
        kernel=Kernel(path="vmlinux", params="console=ttyS0"),
    )
    guest = await launch_crosvm_async(config, timeout=30, logger=StdlibLog())
    print(guest.pid)
    await execute_stop([config.socket])
    await guest.wait()
    ```

Argument assembly only:
    ```python
    from crosvm_runner import build_crosvm_args

    build_crosvm_args(config)
    # ['-s', '/run/user/1000/crosvm.sock', '-r', 'rootfs.ext4', '-u',
    #  '--seccomp-policy-dir', '', '-p', 'console=ttyS0', 'vmlinux']
    ```

Requirements:
    - crosvm on $PATH (or GuestConfig.path / CROSVM_RUNNER_CROSVM_BIN)
    - Linux host (unix datagram control socket)
    - Python 3.12+
"""

from crosvm_runner._logging import Log, NullLogger, StdlibLog, configure_logging
from crosvm_runner.control import execute_balloon, execute_stop
from crosvm_runner.crosvm_cmd import build_crosvm_args, build_crosvm_cmd
from crosvm_runner.exceptions import (
    ConfigValidationError,
    ControlInvocationError,
    CrosvmError,
    CrosvmProcessError,
    LaunchCancelledError,
    LaunchProcessError,
    LaunchTimeoutError,
    PermanentError,
    TransientError,
)
from crosvm_runner.models import SMP, Disk, DiskType, GuestConfig, Kernel, Memory, NetDevice, ProcessAttrs, Security
from crosvm_runner.process import CrosvmProcess
from crosvm_runner.readiness import wait_for_guest
from crosvm_runner.settings import Settings
from crosvm_runner.supervisor import launch_crosvm, launch_crosvm_async, launch_custom_crosvm

__all__ = [
    "SMP",
    "ConfigValidationError",
    "ControlInvocationError",
    "CrosvmError",
    "CrosvmProcess",
    "CrosvmProcessError",
    "Disk",
    "DiskType",
    "GuestConfig",
    "Kernel",
    "LaunchCancelledError",
    "LaunchProcessError",
    "LaunchTimeoutError",
    "Log",
    "Memory",
    "NetDevice",
    "NullLogger",
    "PermanentError",
    "ProcessAttrs",
    "Security",
    "Settings",
    "StdlibLog",
    "TransientError",
    "build_crosvm_args",
    "build_crosvm_cmd",
    "configure_logging",
    "execute_balloon",
    "execute_stop",
    "launch_crosvm",
    "launch_crosvm_async",
    "launch_custom_crosvm",
    "wait_for_guest",
]

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("crosvm-runner")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"
