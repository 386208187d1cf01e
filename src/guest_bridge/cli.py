"""Command-line interface for guest-bridge.

Usage:
    guest-bridge start riscv-qemu --log-dir qemu-logs   # pull + run container
    guest-bridge wait riscv-qemu                        # block until booted
    guest-bridge setup riscv-qemu                       # FIFO relay + self-test
    guest-bridge run riscv-qemu 'uname -a'              # framed command output
    guest-bridge send riscv-qemu 'dmesg -n 1'           # fire-and-forget input

Defaults come from GUEST_BRIDGE_* environment variables (see Settings).
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TypeVar

import click

from guest_bridge import __version__
from guest_bridge._logging import configure_logging
from guest_bridge.config import BridgeConfig
from guest_bridge.exceptions import (
    BootTimeoutError,
    BridgeError,
    ConfigError,
    SetupError,
    TargetStartError,
)
from guest_bridge.models import CaptureResult
from guest_bridge.session import GuestSession
from guest_bridge.settings import Settings
from guest_bridge.target import DockerTarget, start_container

T = TypeVar("T")

# Exit codes following Unix conventions
EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_CLI_ERROR = 2
EXIT_BOOT_TIMEOUT = 124  # Matches `timeout` command
EXIT_SETUP_ERROR = 125


def format_error(title: str, message: str, suggestions: list[str] | None = None) -> str:
    """Format an error message following What → Why → Fix pattern."""
    lines = [
        click.style(f"Error: {title}", fg="red", bold=True),
        "",
        f"  {message}",
    ]

    if suggestions:
        lines.extend(["", "  Suggestions:"])
        lines.extend(f"    • {suggestion}" for suggestion in suggestions)

    return "\n".join(lines)


def report_error(error: BridgeError) -> int:
    """Print a fatal error with its diagnostic tail; return the exit code."""
    if isinstance(error, BootTimeoutError):
        if error.reason == "target_died":
            title, suggestions = "Target stopped unexpectedly", ["Inspect the container logs below"]
        else:
            title, suggestions = "Boot timeout", ["Increase --timeout", "Check the console log for boot errors"]
        click.echo(format_error(title, error.message, suggestions), err=True)
        click.echo("\n=== Last target output ===", err=True)
        click.echo(error.diagnostics or "(empty)", err=True)
        return EXIT_BOOT_TIMEOUT

    if isinstance(error, SetupError):
        click.echo(
            format_error(
                "Command interface setup failed",
                error.message,
                ["Wait for boot completion first", "Check that the image writes /var/log/qemu/pty.path"],
            ),
            err=True,
        )
        return EXIT_SETUP_ERROR

    if isinstance(error, TargetStartError):
        click.echo(format_error("Could not start container", error.message), err=True)
        if error.stderr:
            click.echo(error.stderr, err=True)
        return EXIT_FAILURE

    if isinstance(error, ConfigError):
        click.echo(format_error("Configuration error", error.message, ["Set --log-dir"]), err=True)
        return EXIT_CLI_ERROR

    click.echo(format_error("guest-bridge error", error.message), err=True)
    return EXIT_FAILURE


def execute(coro_fn: Callable[[], Awaitable[T]]) -> T:
    """Run a coroutine, converting fatal BridgeErrors to reported exits."""

    async def _main() -> T:
        return await coro_fn()

    try:
        return asyncio.run(_main())
    except BridgeError as e:
        sys.exit(report_error(e))


def build_config(settings: Settings, log_dir: Path | None, **overrides: object) -> BridgeConfig:
    """BridgeConfig from settings, with CLI flags taking precedence."""
    if log_dir is not None:
        settings = settings.model_copy(update={"log_dir": log_dir})
    config = BridgeConfig.from_settings(settings)
    updates = {key: value for key, value in overrides.items() if value is not None}
    return BridgeConfig.model_validate({**config.model_dump(), **updates}) if updates else config


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.option("-q", "--quiet", is_flag=True, help="Only log errors")
@click.version_option(__version__, "-V", "--version", prog_name="guest-bridge")
@click.pass_context
def main(ctx: click.Context, verbose: bool, quiet: bool) -> None:
    """Drive a headless QEMU guest through its serial console."""
    configure_logging(level=logging.DEBUG if verbose else logging.INFO, quiet=quiet)
    ctx.obj = Settings()


log_dir_option = click.option(
    "--log-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Host directory mounted at /var/log/qemu",
)


@main.command()
@click.argument("name")
@click.option("--work-dir", type=click.Path(file_okay=False, path_type=Path), help="Mounted at /workspace")
@log_dir_option
@click.option("--image", help="Guest image")
@click.pass_obj
def start(settings: Settings, name: str, work_dir: Path | None, log_dir: Path | None, image: str | None) -> None:
    """Pull the guest image and start container NAME."""
    target = execute(
        lambda: start_container(
            name,
            work_dir=work_dir or settings.work_dir,
            log_dir=log_dir or settings.log_dir,
            image=image or settings.image,
        )
    )
    click.echo(f"✓ Container started: {target.name}")


@main.command()
@click.argument("name")
@log_dir_option
@click.option("-t", "--timeout", type=click.IntRange(min=1), help="Boot timeout in seconds")
@click.option("-i", "--interval", type=click.IntRange(min=1), help="Poll interval in seconds")
@click.pass_obj
def wait(settings: Settings, name: str, log_dir: Path | None, timeout: int | None, interval: int | None) -> None:
    """Wait until the guest in NAME reports it is ready."""
    try:
        config = build_config(settings, log_dir, boot_timeout_seconds=timeout, boot_interval_seconds=interval)
    except ValueError as exc:
        raise click.UsageError(str(exc)) from exc
    session = GuestSession(DockerTarget(name), config)
    result = execute(session.wait_for_boot)
    click.echo(f"System ready (matched in {result.source.replace('_', ' ')})")


@main.command()
@click.argument("name")
@log_dir_option
@click.option("--fifo", help="Command FIFO path inside the container")
@click.option("--console-log", help="Console log path inside the container")
@click.pass_obj
def setup(settings: Settings, name: str, log_dir: Path | None, fifo: str | None, console_log: str | None) -> None:
    """Create the command FIFO and relay in NAME, then self-test it."""
    config = build_config(settings, log_dir, guest_fifo=fifo, guest_console_log=console_log)
    session = GuestSession(DockerTarget(name), config)
    status = execute(session.setup_channel)
    if status.relay_active:
        click.echo("✓ Command bridge active")
    click.echo("✓ Command interface verified")


@main.command()
@click.argument("name")
@click.argument("command")
@log_dir_option
@click.option("-t", "--timeout", type=click.FloatRange(min=0, min_open=True), help="Capture timeout in seconds")
@click.option("--start/--attach", "full_start", default=False, help="Boot wait + setup, or reuse an existing relay")
@click.pass_obj
def run(
    settings: Settings,
    name: str,
    command: str,
    log_dir: Path | None,
    timeout: float | None,
    full_start: bool,
) -> None:
    """Run COMMAND in the guest of NAME and print its output."""
    config = build_config(settings, log_dir, capture_timeout_seconds=timeout)
    session = GuestSession(DockerTarget(name), config)

    async def _run() -> CaptureResult:
        if full_start:
            await session.start()
        else:
            await session.attach()
        return await session.run(command)

    click.echo(f"→ {command}")
    result = execute(_run)
    for line in result.lines:
        click.echo(line)
    click.echo()


@main.command()
@click.argument("name")
@click.argument("line")
@click.option("--fifo", help="Command FIFO path inside the container")
@click.pass_obj
def send(settings: Settings, name: str, line: str, fifo: str | None) -> None:
    """Write LINE to the guest of NAME without waiting for output."""
    config = build_config(settings, None, guest_fifo=fifo)
    session = GuestSession(DockerTarget(name), config)

    async def _send() -> None:
        await session.attach()
        await session.send(line)

    execute(_send)


if __name__ == "__main__":
    main()
