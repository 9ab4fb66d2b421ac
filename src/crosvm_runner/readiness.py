"""Guest readiness probe on the crosvm control socket.

crosvm binds its control socket (AF_UNIX, SOCK_DGRAM) once the guest
control plane is up. A successful datagram connect() is the readiness
signal; no bytes are exchanged and the probe endpoint is closed at once.

Attempts repeat at a fixed interval until the socket answers or the optional
deadline passes.
"""

from __future__ import annotations

import asyncio
import socket
from pathlib import Path

import aiofiles.os
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, wait_fixed

from crosvm_runner import constants
from crosvm_runner._logging import Log, resolve_log
from crosvm_runner.exceptions import LaunchTimeoutError


async def probe_control_socket(path: str | Path) -> None:
    """Single connect attempt on a datagram control socket.

    Raises:
        OSError: Socket missing (FileNotFoundError) or not bound (ConnectionRefusedError)
    """
    path = str(path)
    if not await aiofiles.os.path.exists(path):
        raise FileNotFoundError(f"control socket {path} does not exist")

    loop = asyncio.get_running_loop()
    transport, _ = await loop.create_datagram_endpoint(
        asyncio.DatagramProtocol,
        remote_addr=path,
        family=socket.AF_UNIX,
    )
    transport.close()


async def wait_for_guest(
    socket_path: str | Path,
    *,
    logger: Log | None = None,
    poll_interval: float = constants.READY_POLL_INTERVAL_SECONDS,
    timeout: float | None = None,
) -> None:
    """Block until the guest control socket accepts a connection.

    Cancelling the calling task stops the wait at the next await point,
    including in the middle of the sleep between attempts.

    Args:
        socket_path: crosvm control socket path
        logger: Log capability (NullLogger when None)
        poll_interval: Seconds between attempts
        timeout: Give up after this many seconds (None waits forever)

    Raises:
        LaunchTimeoutError: Socket not reachable within timeout
    """
    log = resolve_log(logger)

    def _log_retry(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        log.info("Attempt to open guest socket failed %s", exc)

    try:
        async with asyncio.timeout(timeout):
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(OSError),
                wait=wait_fixed(poll_interval),
                before_sleep=_log_retry,
            ):
                with attempt:
                    await probe_control_socket(socket_path)
    except TimeoutError:
        raise LaunchTimeoutError(
            f"Guest control socket not ready after {timeout}s",
            context={"socket": str(socket_path), "timeout": timeout},
        ) from None

    log.info("Successfully connected to guest socket")
