"""crosvm guest launch and supervision.

Three ways to start a guest:

- launch_custom_crosvm: ``crosvm run <args>`` with caller-built arguments,
  returns when the guest exits.
- launch_crosvm: same, with arguments assembled from a GuestConfig.
- launch_crosvm_async: returns as soon as the guest control socket answers,
  leaving the guest running.

launch_crosvm_async races three actors inside one asyncio.TaskGroup:

    launcher   spawn crosvm, wait for it to exit   -> ProcessFailed
    waiter     probe the control socket            -> Ready
    watcher    caller deadline / cancel event      -> Cancelled

The first to finish decides the outcome (select_outcome), the others are
cancelled, and the TaskGroup joins all three before the function returns.
On Ready the launcher is detached first, so cancelling it leaves crosvm
running; on any other outcome cancelling it terminates crosvm.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from crosvm_runner import constants
from crosvm_runner._logging import Log, resolve_log
from crosvm_runner.crosvm_cmd import build_crosvm_cmd, resolve_binary
from crosvm_runner.exceptions import LaunchCancelledError, LaunchProcessError, LaunchTimeoutError
from crosvm_runner.models import GuestConfig, ProcessAttrs
from crosvm_runner.process import CrosvmProcess, exec_crosvm, spawn_crosvm
from crosvm_runner.readiness import wait_for_guest
from crosvm_runner.settings import Settings

# =============================================================================
# Outcomes
# =============================================================================


@dataclass(frozen=True)
class Ready:
    """Guest control socket accepted a connection."""

    proc: CrosvmProcess


@dataclass(frozen=True)
class ProcessFailed:
    """crosvm could not start or exited before the launch completed."""

    error: LaunchProcessError


@dataclass(frozen=True)
class Cancelled:
    """Caller deadline or cancel event fired before readiness."""

    error: LaunchCancelledError


LaunchOutcome = Ready | ProcessFailed | Cancelled


def select_outcome(
    launcher: ProcessFailed | None,
    waiter: Ready | None,
    watcher: Cancelled | None,
) -> LaunchOutcome:
    """Pick the launch outcome from the actors that have finished.

    Process failure wins over everything. Readiness wins over a cancellation
    observed at the same time, since the guest is already up.

    Raises:
        ValueError: No actor has finished
    """
    if launcher is not None:
        return launcher
    if waiter is not None:
        return waiter
    if watcher is not None:
        return watcher
    raise ValueError("select_outcome called before any launch actor finished")


def _finished(task: asyncio.Task[Any]) -> Any:
    if task.done() and not task.cancelled():
        return task.result()
    return None


# =============================================================================
# Actors
# =============================================================================


class _Launcher:
    """Launcher actor state for one launch attempt."""

    def __init__(
        self,
        cmd: Sequence[str],
        *,
        attrs: ProcessAttrs | None,
        log: Log,
        settings: Settings,
    ) -> None:
        self.cmd = list(cmd)
        self.attrs = attrs
        self.log = log
        self.settings = settings
        self.spawned: asyncio.Future[CrosvmProcess] = asyncio.get_running_loop().create_future()
        self.detached = False

    async def run(self) -> ProcessFailed:
        try:
            proc = await spawn_crosvm(
                self.cmd,
                error_type=LaunchProcessError,
                attrs=self.attrs,
                logger=self.log,
                settings=self.settings,
            )
        except LaunchProcessError as e:
            return ProcessFailed(e)
        self.spawned.set_result(proc)

        try:
            returncode = await proc.wait()
        except asyncio.CancelledError:
            if not self.detached:
                await proc.terminate()
            raise

        error = proc.exit_error(
            LaunchProcessError,
            f"{self.cmd[0]} exited with status {returncode} before the guest was ready",
        )
        return ProcessFailed(error)  # type: ignore[arg-type]


async def _wait_ready(launcher: _Launcher, socket: str, log: Log, poll_interval: float) -> Ready:
    # Probe only sockets of a crosvm this launch spawned
    proc = await asyncio.shield(launcher.spawned)
    await wait_for_guest(socket, logger=log, poll_interval=poll_interval)
    return Ready(proc)


async def _watch_cancellation(timeout: float | None, cancel: asyncio.Event | None) -> Cancelled:
    try:
        async with asyncio.timeout(timeout):
            if cancel is None:
                await asyncio.get_running_loop().create_future()
            else:
                await cancel.wait()
    except TimeoutError:
        return Cancelled(LaunchTimeoutError(f"Guest not ready after {timeout}s", context={"timeout": timeout}))
    return Cancelled(LaunchCancelledError("Launch cancelled before the guest was ready"))


# =============================================================================
# Public API
# =============================================================================


async def launch_crosvm_async(
    config: GuestConfig,
    *,
    attrs: ProcessAttrs | None = None,
    logger: Log | None = None,
    timeout: float | None = None,
    cancel: asyncio.Event | None = None,
    settings: Settings | None = None,
) -> CrosvmProcess:
    """Launch a guest and return once its control socket is ready.

    The guest keeps running after this returns; stop it with
    control.execute_stop() or CrosvmProcess.terminate(). Neither ``timeout``
    nor ``cancel`` has any effect once the function has returned.

    Args:
        config: Guest configuration
        attrs: OS-level attributes for the crosvm process
        logger: Log capability (NullLogger when None)
        timeout: Seconds to wait for readiness (None waits forever)
        cancel: Setting this event aborts the launch
        settings: Runtime settings (defaults from environment)

    Returns:
        Handle on the running crosvm process

    Raises:
        ConfigValidationError: Invalid configuration (nothing is spawned)
        LaunchProcessError: crosvm failed to start or exited before readiness,
            or within the ready grace period after it
        LaunchTimeoutError: ``timeout`` elapsed first
        LaunchCancelledError: ``cancel`` was set first
    """
    log = resolve_log(logger)
    settings = settings or Settings()
    cmd = build_crosvm_cmd(config, settings.crosvm_bin)

    launcher = _Launcher(cmd, attrs=attrs, log=log, settings=settings)

    async with asyncio.TaskGroup() as tg:
        launch_task = tg.create_task(launcher.run(), name="crosvm-launcher")
        ready_task = tg.create_task(
            _wait_ready(launcher, config.socket, log, settings.ready_poll_interval), name="crosvm-ready"
        )
        watch_task = tg.create_task(_watch_cancellation(timeout, cancel), name="crosvm-cancel-watch")

        log.info("Waiting for guest to start")
        await asyncio.wait({launch_task, ready_task, watch_task}, return_when=asyncio.FIRST_COMPLETED)
        outcome = select_outcome(_finished(launch_task), _finished(ready_task), _finished(watch_task))

        if isinstance(outcome, Ready):
            # A crash within the grace period still fails the launch
            await asyncio.wait({launch_task}, timeout=settings.ready_grace_period)
            outcome = select_outcome(_finished(launch_task), outcome, None)
            if isinstance(outcome, Ready):
                launcher.detached = True

        for task in (launch_task, ready_task, watch_task):
            task.cancel()

    match outcome:
        case ProcessFailed(error=error):
            log.info("Guest failed to launch: %s", error)
            raise error
        case Cancelled(error=error):
            log.info("Launch cancelled: %s", error)
            raise error
        case Ready(proc=proc):
            log.info("Guest running (pid %s)", proc.pid)
            return proc


async def launch_custom_crosvm(
    path: str | None,
    args: Sequence[str],
    *,
    attrs: ProcessAttrs | None = None,
    logger: Log | None = None,
    settings: Settings | None = None,
) -> None:
    """Run ``crosvm run <args>`` and wait for the guest to exit.

    Args:
        path: crosvm binary (None = settings / $PATH lookup)
        args: Arguments following the ``run`` subcommand

    Raises:
        LaunchProcessError: crosvm failed to start or exited non-zero
    """
    settings = settings or Settings()
    cmd = [resolve_binary(path, settings.crosvm_bin), constants.RUN_SUBCOMMAND, *args]
    await exec_crosvm(cmd, error_type=LaunchProcessError, attrs=attrs, logger=logger, settings=settings)


async def launch_crosvm(
    config: GuestConfig,
    *,
    attrs: ProcessAttrs | None = None,
    logger: Log | None = None,
    settings: Settings | None = None,
) -> None:
    """Launch a guest from a GuestConfig and wait for it to exit.

    Raises:
        ConfigValidationError: Invalid configuration (nothing is spawned)
        LaunchProcessError: crosvm failed to start or exited non-zero
    """
    settings = settings or Settings()
    cmd = build_crosvm_cmd(config, settings.crosvm_bin)
    await exec_crosvm(cmd, error_type=LaunchProcessError, attrs=attrs, logger=logger, settings=settings)
