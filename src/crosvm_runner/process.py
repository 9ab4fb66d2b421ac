"""crosvm process spawning and teardown.

- spawn_crosvm: fork+exec crosvm with ProcessAttrs, stderr drained in the background
- exec_crosvm: spawn and wait for exit, raising on non-zero status (stop/balloon, blocking run)
- CrosvmProcess: PID-reuse safe handle (psutil) with SIGTERM -> SIGKILL teardown
"""

from __future__ import annotations

import asyncio
import contextlib
import shlex
from collections import deque
from collections.abc import Sequence

import psutil

from crosvm_runner import constants
from crosvm_runner._logging import Log, get_logger, resolve_log
from crosvm_runner.exceptions import CrosvmProcessError
from crosvm_runner.models import ProcessAttrs
from crosvm_runner.settings import Settings

logger = get_logger(__name__)


def log_task_exception(task: asyncio.Task[None]) -> None:
    """Log exceptions from background tasks.

    Callback for asyncio.Task.add_done_callback() so failures of detached
    tasks are never silent.
    """
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            "Background task failed",
            extra={"task_name": task.get_name()},
            exc_info=exc,
        )


class CrosvmProcess:
    """Handle on a running crosvm process.

    Wraps asyncio.subprocess.Process with psutil.Process so signals are never
    delivered to a recycled PID, and owns the task draining crosvm's stderr.
    The last ``stderr_tail_lines`` lines are kept for error reports.
    """

    def __init__(
        self,
        async_proc: asyncio.subprocess.Process,
        cmd: Sequence[str],
        *,
        log: Log,
        settings: Settings,
    ) -> None:
        self.async_proc = async_proc
        self.cmd = list(cmd)
        self.stderr_lines: deque[str] = deque(maxlen=settings.stderr_tail_lines)
        self._log = log
        self._term_timeout = settings.terminate_timeout
        self._kill_timeout = settings.kill_timeout
        self._drain_timeout = settings.stderr_drain_timeout
        self.psutil_proc: psutil.Process | None = None

        if async_proc.pid:
            with contextlib.suppress(psutil.NoSuchProcess, psutil.AccessDenied):
                # Process already died or inaccessible
                self.psutil_proc = psutil.Process(async_proc.pid)

        self._drain_task = asyncio.create_task(self._drain_stderr(), name=f"crosvm-stderr-{async_proc.pid}")
        self._drain_task.add_done_callback(log_task_exception)

    async def _drain_stderr(self) -> None:
        stream = self.async_proc.stderr
        if stream is None:
            return
        async for raw in stream:
            line = raw.decode(errors="replace").rstrip()
            if line:
                self.stderr_lines.append(line)
                self._log.warning("[crosvm stderr] %s", line)

    @property
    def pid(self) -> int | None:
        """Process ID."""
        return self.async_proc.pid

    @property
    def returncode(self) -> int | None:
        """Process return code (None if still running)."""
        return self.async_proc.returncode

    def stderr_text(self) -> str:
        """Captured stderr tail as a single string."""
        return "\n".join(self.stderr_lines)

    async def is_running(self) -> bool:
        """Check if process is still running (PID-reuse safe)."""
        if self.async_proc.returncode is not None or self.psutil_proc is None:
            return self.async_proc.returncode is None
        try:
            return await asyncio.to_thread(self.psutil_proc.is_running)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return False

    async def _wait_exit(self) -> int:
        # Process.wait() also waits for every pipe to close, which a device
        # helper holding crosvm's stderr can delay indefinitely
        exit_task = asyncio.ensure_future(self.async_proc.wait())
        try:
            while (returncode := self.async_proc.returncode) is None:
                if exit_task.done():
                    return exit_task.result()
                await asyncio.wait({exit_task}, timeout=constants.EXIT_POLL_INTERVAL_SECONDS)
        finally:
            exit_task.cancel()
        return returncode

    async def wait(self) -> int:
        """Wait for the process to exit, then briefly for stderr to drain.

        Stderr draining is bounded by ``stderr_drain_timeout``; whatever has
        not arrived by then is dropped and the drain task is cancelled.

        Returns:
            Process exit code
        """
        returncode = await self._wait_exit()
        if not self._drain_task.done():
            await asyncio.wait({self._drain_task}, timeout=self._drain_timeout)
            if not self._drain_task.done():
                logger.debug("crosvm stderr still open after exit, dropping it", extra={"pid": self.pid})
                self._drain_task.cancel()
        return returncode

    def exit_error(self, error_type: type[CrosvmProcessError], message: str | None = None) -> CrosvmProcessError:
        """Build an exception describing how the process exited."""
        stderr = self.stderr_text()
        if message is None:
            message = f"{self.cmd[0]} exited with status {self.returncode}"
        if stderr:
            message = f"{message}: {stderr[-constants.STDERR_PREVIEW_CHARS :]}"
        return error_type(message, returncode=self.returncode, stderr=stderr, cmd=self.cmd)

    async def _signal(self, sig_name: str) -> None:
        if self.psutil_proc is not None and await self.is_running():
            with contextlib.suppress(psutil.NoSuchProcess, psutil.AccessDenied):
                await asyncio.to_thread(getattr(self.psutil_proc, sig_name))
        elif self.async_proc.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                getattr(self.async_proc, sig_name)()

    async def terminate(self) -> bool:
        """Stop the process (SIGTERM, then SIGKILL) and reap it.

        Never raises; failures are logged.

        Returns:
            True if the process is gone, False if it survived SIGKILL
        """
        if self.returncode is not None:
            await self.wait()
            return True

        try:
            logger.debug("Sending SIGTERM to crosvm", extra={"pid": self.pid})
            await self._signal("terminate")
            try:
                async with asyncio.timeout(self._term_timeout):
                    await self.wait()
                return True
            except TimeoutError:
                logger.warning(
                    "crosvm didn't respond to SIGTERM, force killing",
                    extra={"pid": self.pid, "term_timeout": self._term_timeout},
                )

            await self._signal("kill")
            try:
                async with asyncio.timeout(self._kill_timeout):
                    await self.wait()
                logger.warning("crosvm force killed (SIGKILL)", extra={"pid": self.pid})
                return True
            except TimeoutError:
                logger.error(
                    "crosvm didn't respond to SIGKILL within timeout",
                    extra={"pid": self.pid, "kill_timeout": self._kill_timeout},
                )
                return False
        except Exception:
            logger.error("crosvm cleanup error", extra={"pid": self.pid}, exc_info=True)
            return False


async def spawn_crosvm(
    cmd: Sequence[str],
    *,
    error_type: type[CrosvmProcessError],
    attrs: ProcessAttrs | None = None,
    logger: Log | None = None,
    settings: Settings | None = None,
) -> CrosvmProcess:
    """Start crosvm without waiting for it.

    Args:
        cmd: Full command line, binary first
        error_type: Exception raised if the process cannot be started
        attrs: OS-level process attributes (user, group, umask, ...)
        logger: Log capability (NullLogger when None)
        settings: Runtime settings (defaults from environment)

    Raises:
        CrosvmProcessError: Binary missing, not executable, or attrs rejected by the OS
    """
    log = resolve_log(logger)
    settings = settings or Settings()
    attrs = attrs or ProcessAttrs()

    log.info("running %s", shlex.join(cmd))

    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
            **attrs.popen_kwargs(),
        )
    except (OSError, KeyError, ValueError) as e:
        # KeyError: unknown user/group name in attrs
        log.error("failed to start %s: %s", cmd[0], e)
        raise error_type(f"Failed to start {cmd[0]}: {e}", cmd=cmd) from e

    return CrosvmProcess(proc, cmd, log=log, settings=settings)


async def exec_crosvm(
    cmd: Sequence[str],
    *,
    error_type: type[CrosvmProcessError],
    attrs: ProcessAttrs | None = None,
    logger: Log | None = None,
    settings: Settings | None = None,
) -> None:
    """Run crosvm to completion.

    Cancelling the calling task terminates the child before CancelledError
    propagates.

    Raises:
        CrosvmProcessError: Start failure or non-zero exit status (as error_type)
    """
    proc = await spawn_crosvm(cmd, error_type=error_type, attrs=attrs, logger=logger, settings=settings)
    try:
        returncode = await proc.wait()
    except asyncio.CancelledError:
        await proc.terminate()
        raise

    if returncode != 0:
        raise proc.exit_error(error_type)
