"""Logging for crosvm-runner.

Two layers:

- Library logging (stdlib ``logging``). The ``crosvm_runner`` logger carries a
  NullHandler so importing the package prints nothing. CROSVM_RUNNER_LOG_LEVEL
  sets its level at import time, and configure_logging() attaches a stderr
  handler for the CLI.
- The ``Log`` capability consumed by launch and control functions. Callers
  pass their own implementation to route guest lifecycle messages into their
  logs; NullLogger is used when none is given. StdlibLog bridges the capability
  onto a ``logging.Logger``.

CLI records look like:
    WARNING 2026-02-25 10:02:54 crosvm_runner.process: [crosvm stderr] ...

The CLI handler never writes on the emitting thread. Records go into a
bounded queue and a QueueListener thread echoes them through click, so a
crosvm flooding stderr cannot stall the event loop. Overflow is dropped.
"""

import contextlib
import logging
import logging.handlers
import os
import queue
from typing import Any, Protocol, runtime_checkable

import click

LIBRARY_LOGGER_NAME: str = "crosvm_runner"

_LINE_FORMAT = "%(levelname)s %(asctime)s %(name)s: %(message)s"
_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"
_MAX_PENDING_RECORDS = 4096


def _level_from_env() -> int | None:
    name = os.environ.get("CROSVM_RUNNER_LOG_LEVEL", "").strip().upper()
    level = logging.getLevelNamesMapping().get(name)
    return level or None  # NOTSET means unset


_library_logger = logging.getLogger(LIBRARY_LOGGER_NAME)
_library_logger.addHandler(logging.NullHandler())
if (_env_level := _level_from_env()) is not None:
    _library_logger.setLevel(_env_level)


class _EchoHandler(logging.Handler):
    """Writes formatted records to stderr with click (listener thread only)."""

    def __init__(self) -> None:
        super().__init__()
        self.setFormatter(logging.Formatter(_LINE_FORMAT, _TIME_FORMAT))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            click.secho(self.format(record), err=True, dim=True)
        except BlockingIOError:
            pass  # stderr is a full non-blocking pipe
        except Exception:  # noqa: BLE001
            self.handleError(record)


class _QueuedStderrHandler(logging.handlers.QueueHandler):
    """QueueHandler paired with its own listener thread feeding _EchoHandler."""

    def __init__(self) -> None:
        pending: queue.Queue[logging.LogRecord] = queue.Queue(maxsize=_MAX_PENDING_RECORDS)
        super().__init__(pending)
        self._listener = logging.handlers.QueueListener(pending, _EchoHandler())
        self._listener.start()

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # Records never leave the process; keep args and exc_info intact
        return record

    def enqueue(self, record: logging.LogRecord) -> None:
        with contextlib.suppress(queue.Full):
            self.queue.put_nowait(record)

    def close(self) -> None:
        self._listener.stop()
        super().close()


def get_logger(name: str) -> logging.Logger:
    """Module logger under the ``crosvm_runner`` hierarchy."""
    return logging.getLogger(name)


def configure_logging(*, level: int | str | None = None, quiet: bool = False) -> None:
    """Send library log records to stderr (CLI and application entry points).

    Safe to call more than once: the stderr handler is attached only once.

    Args:
        level: Level for the ``crosvm_runner`` logger; wins over CROSVM_RUNNER_LOG_LEVEL
        quiet: Only show errors, whatever ``level`` says
    """
    if not any(isinstance(h, _QueuedStderrHandler) for h in _library_logger.handlers):
        _library_logger.addHandler(_QueuedStderrHandler())

    if quiet:
        _library_logger.setLevel(logging.ERROR)
    elif level is not None:
        _library_logger.setLevel(level)


# =============================================================================
# Log capability
# =============================================================================


@runtime_checkable
class Log(Protocol):
    """Logging capability accepted by launch and control functions.

    Messages use printf-style formatting, like the stdlib logging API.
    """

    def v(self, level: int) -> bool:
        """Return True if ``level`` is within the implementation's verbosity."""
        ...

    def info(self, msg: str, *args: Any) -> None: ...

    def warning(self, msg: str, *args: Any) -> None: ...

    def error(self, msg: str, *args: Any) -> None: ...


class NullLogger:
    """Log implementation that discards everything."""

    def v(self, level: int) -> bool:
        return False

    def info(self, msg: str, *args: Any) -> None:
        pass

    def warning(self, msg: str, *args: Any) -> None:
        pass

    def error(self, msg: str, *args: Any) -> None:
        pass


class StdlibLog:
    """Log implementation backed by a ``logging.Logger``.

    Args:
        logger: Target logger. Defaults to the library root logger.
        verbosity: Highest level for which v() returns True.
    """

    def __init__(self, logger: logging.Logger | None = None, verbosity: int = 0) -> None:
        self.logger = logger or get_logger(LIBRARY_LOGGER_NAME)
        self.verbosity = verbosity

    def v(self, level: int) -> bool:
        return level <= self.verbosity

    def info(self, msg: str, *args: Any) -> None:
        self.logger.info(msg, *args)

    def warning(self, msg: str, *args: Any) -> None:
        self.logger.warning(msg, *args)

    def error(self, msg: str, *args: Any) -> None:
        self.logger.error(msg, *args)


def resolve_log(logger: Log | None) -> Log:
    """Return ``logger`` or a fresh NullLogger when None."""
    return logger if logger is not None else NullLogger()
