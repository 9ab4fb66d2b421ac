"""Runtime configuration from environment variables."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from crosvm_runner import constants


class Settings(BaseSettings):
    """Runtime configuration from environment variables.

    All settings can be overridden via environment variables with CROSVM_RUNNER_ prefix.
    Example: CROSVM_RUNNER_CROSVM_BIN=/usr/local/bin/crosvm
    """

    model_config = SettingsConfigDict(
        env_prefix="CROSVM_RUNNER_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Hypervisor binary (resolved via $PATH when not absolute)
    crosvm_bin: str = constants.DEFAULT_CROSVM_BINARY

    # Readiness
    ready_poll_interval: float = Field(default=constants.READY_POLL_INTERVAL_SECONDS, gt=0)
    ready_grace_period: float = Field(default=constants.READY_GRACE_PERIOD_SECONDS, ge=0)

    # Process teardown
    terminate_timeout: float = Field(default=constants.TERMINATE_TIMEOUT_SECONDS, gt=0)
    kill_timeout: float = Field(default=constants.KILL_TIMEOUT_SECONDS, gt=0)

    # Diagnostics
    stderr_tail_lines: int = Field(default=constants.STDERR_TAIL_LINES, ge=1)
    stderr_drain_timeout: float = Field(default=constants.STDERR_DRAIN_TIMEOUT_SECONDS, ge=0)
