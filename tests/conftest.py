"""Shared pytest fixtures for crosvm-runner tests.

Process-level tests run a generated stand-in for the crosvm binary: a small
Python script that records its argv and pid, then behaves according to a
mode baked in at creation time (bind the control socket, fail, hang, ...).
No real hypervisor is needed.
"""

import contextlib
import json
import os
import shutil
import signal
import sys
import tempfile
import textwrap
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from pathlib import Path

import pytest

from crosvm_runner.models import GuestConfig, Kernel
from crosvm_runner.settings import Settings

# ============================================================================
# Fake crosvm
# ============================================================================

_FAKE_CROSVM = """\
#!{python}
import json
import os
import socket
import subprocess
import sys
import time

MODE = {mode!r}
DELAY = {delay!r}
RECORD = {record!r}
PIDFILE = {pidfile!r}

argv = sys.argv[1:]
with open(RECORD, "a") as f:
    f.write(json.dumps(argv) + "\\n")
with open(PIDFILE, "w") as f:
    f.write(str(os.getpid()))

if argv[0] != "run":
    if MODE == "fail":
        sys.stderr.write("crosvm: failed to connect to control socket\\n")
        sys.exit(1)
    sys.exit(0)

time.sleep(DELAY)

if MODE == "fail_with_helper":
    helper = subprocess.Popen(["sleep", "10"])
    with open(PIDFILE + ".helper", "w") as f:
        f.write(str(helper.pid))
    sys.stderr.write("crosvm: device process failed\\n")
    sys.stderr.flush()
    os._exit(3)
if MODE == "fail":
    sys.stderr.write("crosvm: failed to create guest\\n")
    sys.stderr.write("crosvm: invalid rootfs image\\n")
    sys.exit(3)
if MODE == "exit0":
    sys.exit(0)
if MODE == "hang":
    time.sleep(60)
    sys.exit(0)

sock = socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)
sock.bind(argv[argv.index("-s") + 1])
if MODE == "crash_after_ready":
    sys.exit(4)
time.sleep(60)
"""


@dataclass
class FakeCrosvm:
    """Handle on a generated fake crosvm binary."""

    path: Path
    record: Path
    pidfile: Path

    def invocations(self) -> list[list[str]]:
        """argv (without binary) of every run, oldest first."""
        if not self.record.exists():
            return []
        return [json.loads(line) for line in self.record.read_text().splitlines()]

    def pid(self) -> int:
        return int(self.pidfile.read_text())

    def helper_pid(self) -> int | None:
        """pid of the stderr-holding helper started in fail_with_helper mode."""
        helper = self.pidfile.with_name(self.pidfile.name + ".helper")
        return int(helper.read_text()) if helper.exists() else None


@pytest.fixture
def short_tmp() -> Iterator[Path]:
    """Temporary directory with a short path.

    AF_UNIX socket paths are limited to ~108 bytes, which pytest's tmp_path
    can exceed.
    """
    path = Path(tempfile.mkdtemp(prefix="crv-", dir="/tmp"))
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def fake_crosvm(short_tmp: Path) -> Iterator[Callable[..., FakeCrosvm]]:
    """Factory creating fake crosvm binaries.

    Modes:
        ready: bind the control socket after ``delay`` seconds, then sleep
        fail: write to stderr and exit 3 (non-run subcommands exit 1)
        exit0: exit 0 without binding the socket
        hang: never bind the socket
        crash_after_ready: bind the socket, then exit 4 at once
        fail_with_helper: start a helper that inherits stderr, then exit 3

    Usage:
        def test_something(fake_crosvm) -> None:
            crosvm = fake_crosvm("ready", delay=0.2)
    """
    counter = 0
    made: list[FakeCrosvm] = []

    def _make(mode: str = "ready", delay: float = 0.0) -> FakeCrosvm:
        nonlocal counter
        counter += 1
        binary = short_tmp / f"crosvm{counter}"
        record = short_tmp / f"argv{counter}.jsonl"
        pidfile = short_tmp / f"pid{counter}"
        binary.write_text(
            textwrap.dedent(
                _FAKE_CROSVM.format(
                    python=sys.executable,
                    mode=mode,
                    delay=delay,
                    record=str(record),
                    pidfile=str(pidfile),
                )
            )
        )
        binary.chmod(0o755)
        fake = FakeCrosvm(path=binary, record=record, pidfile=pidfile)
        made.append(fake)
        return fake

    yield _make

    for fake in made:
        if (helper := fake.helper_pid()) is not None:
            with contextlib.suppress(ProcessLookupError):
                os.kill(helper, signal.SIGKILL)


# ============================================================================
# Config Fixtures
# ============================================================================


@pytest.fixture
def fast_settings() -> Settings:
    """Settings with short poll and teardown intervals for process tests."""
    return Settings(
        ready_poll_interval=0.01,
        ready_grace_period=0.3,
        terminate_timeout=2.0,
        kill_timeout=2.0,
        stderr_drain_timeout=0.2,
    )


@pytest.fixture
def guest_config(short_tmp: Path) -> GuestConfig:
    """Minimal valid GuestConfig with its control socket in short_tmp."""
    return GuestConfig(
        rootfs="rootfs.ext4",
        socket=str(short_tmp / "crosvm.sock"),
        kernel=Kernel(path="vmlinux"),
    )
