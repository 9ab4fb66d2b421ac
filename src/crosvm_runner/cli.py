"""Command-line interface for crosvm-runner.

Usage:
    crosvm-runner args guest.json            # Print the crosvm run arguments
    crosvm-runner launch guest.json -t 30    # Boot, report readiness, wait for exit
    crosvm-runner stop /run/crosvm.sock      # Stop one or more guests
    crosvm-runner balloon 64 /run/crosvm.sock
"""

from __future__ import annotations

import asyncio
import json
import logging
import shlex
import sys
from collections.abc import Awaitable, Callable
from typing import NoReturn

import click
from pydantic import ValidationError

from crosvm_runner import __version__
from crosvm_runner._logging import StdlibLog, configure_logging, get_logger
from crosvm_runner.control import execute_balloon, execute_stop
from crosvm_runner.crosvm_cmd import build_crosvm_args
from crosvm_runner.exceptions import (
    ConfigValidationError,
    CrosvmError,
    CrosvmProcessError,
    LaunchCancelledError,
    LaunchTimeoutError,
)
from crosvm_runner.models import GuestConfig
from crosvm_runner.supervisor import launch_crosvm_async

# Exit codes following Unix conventions
EXIT_SUCCESS = 0
EXIT_CLI_ERROR = 2
EXIT_TIMEOUT = 124  # Matches `timeout` command
EXIT_HYPERVISOR_ERROR = 125


def format_error(title: str, message: str, suggestions: list[str] | None = None) -> str:
    """Format an error message following What → Why → Fix pattern.

    Args:
        title: Short error title
        message: Detailed explanation
        suggestions: Optional list of suggestions to fix the issue

    Returns:
        Formatted error string
    """
    lines = [
        click.style(f"Error: {title}", fg="red", bold=True),
        "",
        f"  {message}",
    ]

    if suggestions:
        lines.extend(["", "  Suggestions:"])
        lines.extend(f"    • {suggestion}" for suggestion in suggestions)

    return "\n".join(lines)


def load_config(path: str) -> GuestConfig:
    """Load a GuestConfig JSON file, converting failures to click usage errors."""
    try:
        return GuestConfig.from_json_file(path)
    except OSError as e:
        raise click.UsageError(f"Cannot read config {path}: {e}") from e
    except ValidationError as e:
        raise click.UsageError(f"Invalid config {path}:\n{e}") from e


def _cli_log(ctx: click.Context) -> StdlibLog:
    return StdlibLog(get_logger("crosvm_runner.cli"), verbosity=ctx.obj["verbose"])


def report_error(error: CrosvmError) -> int:
    """Print a CrosvmError and return the matching exit code."""
    if isinstance(error, ConfigValidationError):
        click.echo(format_error("Invalid guest configuration", error.message), err=True)
        return EXIT_CLI_ERROR

    if isinstance(error, LaunchTimeoutError):
        click.echo(
            format_error(
                "Guest did not become ready",
                error.message,
                ["Increase the timeout with -t/--timeout", "Check the kernel command line and rootfs"],
            ),
            err=True,
        )
        return EXIT_TIMEOUT

    if isinstance(error, CrosvmProcessError):
        suggestions = ["Check that crosvm is installed and on $PATH (or set CROSVM_RUNNER_CROSVM_BIN)"]
        if error.cmd:
            suggestions.append(f"Try running it by hand: {shlex.join(error.cmd)}")
        click.echo(format_error("crosvm failed", error.message, suggestions), err=True)
        return EXIT_HYPERVISOR_ERROR

    click.echo(format_error("crosvm-runner error", error.message), err=True)
    return EXIT_HYPERVISOR_ERROR


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("-v", "--verbose", count=True, help="Increase log verbosity (repeatable)")
@click.option("-q", "--quiet", is_flag=True, help="Only log errors")
@click.version_option(__version__, "-V", "--version", prog_name="crosvm-runner")
@click.pass_context
def main(ctx: click.Context, verbose: int, quiet: bool) -> None:
    """Launch and control crosvm guests."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    configure_logging(
        level=logging.DEBUG if verbose > 1 else logging.INFO if verbose == 1 else None,
        quiet=quiet,
    )


@main.command("args")
@click.argument("config_path", metavar="CONFIG", type=click.Path(exists=True, dir_okay=False))
@click.option("--json", "json_output", is_flag=True, help="Print a JSON array instead of a shell line")
def args_command(config_path: str, json_output: bool) -> NoReturn:
    """Print the `crosvm run` arguments for CONFIG."""
    config = load_config(config_path)
    try:
        args = build_crosvm_args(config)
    except ConfigValidationError as e:
        sys.exit(report_error(e))

    click.echo(json.dumps(args) if json_output else shlex.join(args))
    sys.exit(EXIT_SUCCESS)


async def run_launch(config: GuestConfig, timeout: float | None, log: StdlibLog) -> int:
    """Launch a guest, report readiness and wait for it to exit.

    Returns:
        Exit code to return from CLI
    """
    try:
        guest = await launch_crosvm_async(config, timeout=timeout, logger=log)
    except (LaunchCancelledError, CrosvmProcessError, ConfigValidationError) as e:
        return report_error(e)

    click.echo(click.style(f"✓ Guest ready (pid {guest.pid})", fg="green"), err=True)
    returncode = await guest.wait()
    if returncode != 0:
        return report_error(guest.exit_error(CrosvmProcessError))
    return EXIT_SUCCESS


@main.command("launch")
@click.argument("config_path", metavar="CONFIG", type=click.Path(exists=True, dir_okay=False))
@click.option("-t", "--timeout", type=float, default=None, help="Seconds to wait for the control socket")
@click.pass_context
def launch_command(ctx: click.Context, config_path: str, timeout: float | None) -> NoReturn:
    """Launch the guest described by CONFIG and wait for it to exit."""
    config = load_config(config_path)
    sys.exit(asyncio.run(run_launch(config, timeout, _cli_log(ctx))))


async def _run_control(coro_factory: Callable[[], Awaitable[None]]) -> int:
    try:
        await coro_factory()
    except CrosvmError as e:
        return report_error(e)
    return EXIT_SUCCESS


@main.command("stop")
@click.argument("sockets", nargs=-1, required=True)
@click.option("--crosvm", "crosvm_path", default=None, help="crosvm binary (default: $PATH lookup)")
@click.pass_context
def stop_command(ctx: click.Context, sockets: tuple[str, ...], crosvm_path: str | None) -> NoReturn:
    """Stop the guests listening on SOCKETS."""
    log = _cli_log(ctx)
    sys.exit(asyncio.run(_run_control(lambda: execute_stop(list(sockets), path=crosvm_path, logger=log))))


@main.command("balloon")
@click.argument("num_pages", type=int)
@click.argument("sockets", nargs=-1, required=True)
@click.option("--crosvm", "crosvm_path", default=None, help="crosvm binary (default: $PATH lookup)")
@click.pass_context
def balloon_command(ctx: click.Context, num_pages: int, sockets: tuple[str, ...], crosvm_path: str | None) -> NoReturn:
    """Adjust the memory balloon of the guests on SOCKETS by NUM_PAGES.

    Put `--` before a negative NUM_PAGES: crosvm-runner balloon -- -64 SOCKET
    """
    log = _cli_log(ctx)
    sys.exit(
        asyncio.run(
            _run_control(lambda: execute_balloon(num_pages, list(sockets), path=crosvm_path, logger=log))
        )
    )


if __name__ == "__main__":
    main()
