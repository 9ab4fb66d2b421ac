"""Out-of-band control of running crosvm guests.

Each operation runs the crosvm binary once against every given control
socket and waits for it to exit. Nothing is shared with the launch
supervisor: guests are addressed only through their socket paths.
"""

from __future__ import annotations

from collections.abc import Sequence

from crosvm_runner import constants
from crosvm_runner._logging import Log
from crosvm_runner.crosvm_cmd import resolve_binary
from crosvm_runner.exceptions import ConfigValidationError, ControlInvocationError
from crosvm_runner.models import ProcessAttrs
from crosvm_runner.process import exec_crosvm
from crosvm_runner.settings import Settings


def _require_sockets(sockets: Sequence[str]) -> list[str]:
    if isinstance(sockets, str):
        raise ConfigValidationError("sockets must be a sequence of paths, not a string")
    if not sockets:
        raise ConfigValidationError("Expected at least one socket path", context={"field": "sockets"})
    return list(sockets)


async def execute_stop(
    sockets: Sequence[str],
    *,
    path: str | None = None,
    attrs: ProcessAttrs | None = None,
    logger: Log | None = None,
    settings: Settings | None = None,
) -> None:
    """Stop one or more guests (``crosvm stop <socket>...``).

    Args:
        sockets: Control socket paths of the guests to stop
        path: crosvm binary (None = settings / $PATH lookup)
        attrs: OS-level attributes for the crosvm process
        logger: Log capability (NullLogger when None)
        settings: Runtime settings (defaults from environment)

    Raises:
        ConfigValidationError: No socket given
        ControlInvocationError: crosvm could not be started or exited non-zero
    """
    socket_paths = _require_sockets(sockets)
    settings = settings or Settings()
    cmd = [resolve_binary(path, settings.crosvm_bin), constants.STOP_SUBCOMMAND, *socket_paths]
    await exec_crosvm(cmd, error_type=ControlInvocationError, attrs=attrs, logger=logger, settings=settings)


async def execute_balloon(
    num_pages: int,
    sockets: Sequence[str],
    *,
    path: str | None = None,
    attrs: ProcessAttrs | None = None,
    logger: Log | None = None,
    settings: Settings | None = None,
) -> None:
    """Adjust the memory balloon of one or more guests by ``num_pages``.

    Runs ``crosvm balloon <num_pages> <socket>...``. ``num_pages`` is a
    signed 32-bit page delta.

    Raises:
        ConfigValidationError: No socket given or num_pages out of range
        ControlInvocationError: crosvm could not be started or exited non-zero
    """
    socket_paths = _require_sockets(sockets)
    if isinstance(num_pages, bool) or not constants.BALLOON_MIN_PAGES <= num_pages <= constants.BALLOON_MAX_PAGES:
        raise ConfigValidationError(
            f"num_pages must be a 32-bit signed integer, got {num_pages!r}",
            context={"field": "num_pages", "value": num_pages},
        )
    settings = settings or Settings()
    cmd = [
        resolve_binary(path, settings.crosvm_bin),
        constants.BALLOON_SUBCOMMAND,
        str(num_pages),
        *socket_paths,
    ]
    await exec_crosvm(cmd, error_type=ControlInvocationError, attrs=attrs, logger=logger, settings=settings)
