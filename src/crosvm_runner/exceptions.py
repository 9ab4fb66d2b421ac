"""Exception hierarchy for crosvm-runner.

All exceptions inherit from CrosvmError base class.

Hierarchy:
    CrosvmError (base)
    ├── PermanentError (non-retryable marker base)
    │   └── ConfigValidationError      ← missing/contradictory config fields
    ├── TransientError (retryable marker base)
    │   └── LaunchCancelledError       ← caller cancelled before readiness
    │       └── LaunchTimeoutError     ← caller deadline expired before readiness
    └── CrosvmProcessError             ← crosvm child process failed
        ├── LaunchProcessError         ← `crosvm run` failed or exited before ready
        └── ControlInvocationError     ← `crosvm stop` / `crosvm balloon` failed
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any


class CrosvmError(Exception):
    """Base exception for all crosvm-runner errors with structured context.

    Attributes:
        message: Human-readable error message
        context: Dictionary of structured error context for logging/debugging
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


class TransientError(CrosvmError):
    """Base for errors that may succeed on retry."""


class PermanentError(CrosvmError):
    """Base for errors that won't succeed on retry without caller changes."""


class ConfigValidationError(PermanentError):
    """Invalid guest configuration.

    Raised before any process is spawned when a required field is missing
    or fields that must be given together are only partially set.
    """


class LaunchCancelledError(TransientError):
    """Launch cancelled by the caller before the guest became ready.

    Distinct from LaunchProcessError: the hypervisor itself did not fail,
    so the launch may be retried.
    """


class LaunchTimeoutError(LaunchCancelledError):
    """Caller deadline expired before the guest control socket was reachable."""


class CrosvmProcessError(CrosvmError):
    """crosvm child process failed to start or exited with an error.

    Attributes:
        returncode: Exit status (None if the process never started,
            negative for death by signal)
        stderr: Tail of the process standard error
        cmd: Full command line that was executed
    """

    def __init__(
        self,
        message: str,
        *,
        returncode: int | None = None,
        stderr: str = "",
        cmd: Sequence[str] = (),
        context: dict[str, Any] | None = None,
    ):
        ctx = context or {}
        ctx.update({"returncode": returncode, "cmd": list(cmd)})
        super().__init__(message, ctx)
        self.returncode = returncode
        self.stderr = stderr
        self.cmd = list(cmd)


class LaunchProcessError(CrosvmProcessError):
    """`crosvm run` could not be started or exited before signalling readiness."""


class ControlInvocationError(CrosvmProcessError):
    """A `crosvm stop` or `crosvm balloon` invocation failed.

    Surfaced as-is; no retry is attempted.
    """
