"""Constants for crosvm-runner defaults and limits."""

from typing import Final

# ============================================================================
# Hypervisor binary
# ============================================================================

DEFAULT_CROSVM_BINARY: Final[str] = "crosvm"
"""Binary name looked up on $PATH when no explicit path is configured."""

RUN_SUBCOMMAND: Final[str] = "run"
STOP_SUBCOMMAND: Final[str] = "stop"
BALLOON_SUBCOMMAND: Final[str] = "balloon"

# ============================================================================
# Readiness / supervision
# ============================================================================

READY_POLL_INTERVAL_SECONDS: Final[float] = 0.05
"""Fixed delay between control socket probes. Guest boot is short, so no backoff."""

READY_GRACE_PERIOD_SECONDS: Final[float] = 0.1
"""How long a launch keeps watching for a crosvm crash after the socket answered.
A failure inside this window wins over readiness."""

TERMINATE_TIMEOUT_SECONDS: Final[float] = 3.0
"""Wait after SIGTERM before escalating to SIGKILL."""

KILL_TIMEOUT_SECONDS: Final[float] = 2.0
"""Wait after SIGKILL before giving up on reaping."""

STDERR_TAIL_LINES: Final[int] = 50
"""crosvm stderr lines kept in memory for error reports."""

STDERR_PREVIEW_CHARS: Final[int] = 500
"""Characters of stderr included in exception messages."""

EXIT_POLL_INTERVAL_SECONDS: Final[float] = 0.05
"""Interval for checking crosvm's exit status while its stderr pipe is still open."""

STDERR_DRAIN_TIMEOUT_SECONDS: Final[float] = 0.5
"""How long stderr keeps draining after crosvm exits. Device helpers that
inherited the pipe can hold it open long after crosvm itself is gone."""

# ============================================================================
# Control operations
# ============================================================================

BALLOON_MIN_PAGES: Final[int] = -(2**31)
BALLOON_MAX_PAGES: Final[int] = 2**31 - 1
"""Balloon deltas are signed 32-bit page counts."""
