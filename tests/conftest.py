"""Shared pytest fixtures for guest-bridge tests.

No Docker or QEMU is needed: FakeGuest stands in for the container and
the guest behind it.  It keeps the console log in a real temporary file
so ConsoleStream and CaptureEngine run against the filesystem exactly as
they do in production.
"""

from __future__ import annotations

import asyncio
import re
import shlex
from collections.abc import Callable
from pathlib import Path

import pytest

from guest_bridge.config import BridgeConfig
from guest_bridge.console import ConsoleStream
from guest_bridge.models import ExecResult

PROMPT = "root@ubuntu:~# "

# Wrapped command as produced by CommandEnvelope.wrapped
_WRAPPED = re.compile(r"\{ echo (?P<start>\S+); (?P<command>.*); echo (?P<end>\S+); \} 2>&1", re.DOTALL)


class FakeGuest:
    """ExecutionTarget double: a container running a guest with a serial console.

    Understands the handful of shell commands the command channel issues
    (test -f / cat / mkfifo / pgrep / printf > FIFO / grep -q) and feeds
    lines written to the FIFO to a pretend guest shell, which appends the
    tty echo and the command's output to the console log.

    Attributes:
        responses: command text -> output lines the guest prints for it
        hang: commands that print their output but never finish
        alive: liveness reported to the boot monitor (a list is consumed per call)
    """

    def __init__(
        self,
        console_path: Path,
        *,
        name: str = "fake-guest",
        pty_path: str = "/dev/pts/3",
        has_pty_file: bool = True,
        relay_delivers: bool = True,
        relay_visible: bool = True,
        tty_echo: bool = True,
        responses: dict[str, list[str]] | None = None,
        hang: set[str] | None = None,
        output_lines: list[str] | None = None,
        alive: bool | list[bool] = True,
    ) -> None:
        self.console_path = console_path
        self._name = name
        self.pty_path = pty_path
        self.has_pty_file = has_pty_file
        self.relay_delivers = relay_delivers
        self.relay_visible = relay_visible
        self.tty_echo = tty_echo
        self.responses = responses or {}
        self.hang = hang or set()
        self.output_lines = output_lines or []
        self.alive = alive

        self.fifo_exists = False
        self.relay_running = False
        self.calls: list[str] = []
        self.detached: list[str] = []
        self.delivered: list[str] = []
        self.alive_checks = 0

    @property
    def name(self) -> str:
        return self._name

    # -- ExecutionTarget ---------------------------------------------------

    async def is_alive(self) -> bool:
        self.alive_checks += 1
        if isinstance(self.alive, list):
            return self.alive.pop(0) if len(self.alive) > 1 else self.alive[0]
        return self.alive

    async def recent_output(self, line_count: int) -> str:
        return "\n".join(self.output_lines[-line_count:])

    async def exec_detached(self, command: str) -> None:
        self.detached.append(command)
        self.relay_running = True

    async def exec_in(self, command: str) -> ExecResult:  # noqa: PLR0911
        self.calls.append(command)
        parts = shlex.split(command) if not command.startswith("[") else []

        if command.startswith("test -f "):
            return _result(self.has_pty_file)
        if command.startswith("test -p "):
            return _result(self.fifo_exists)
        if command.startswith("cat "):
            if not self.has_pty_file:
                return ExecResult(output="cat: No such file or directory\n", exit_code=1)
            return ExecResult(output=self.pty_path + "\n", exit_code=0)
        if "mkfifo" in command:
            self.fifo_exists = True
            return _result(True)
        if command.startswith("pgrep "):
            return _result(self.relay_running and self.relay_visible)
        if command.startswith("printf "):
            if self.relay_running and self.relay_delivers:
                self._deliver(parts[2])
            return _result(True)
        if command.startswith("grep -q "):
            return _result(parts[2] in self.console_text())
        return ExecResult(output=f"bash: unexpected command: {command}\n", exit_code=127)

    # -- Guest simulation --------------------------------------------------

    def console_text(self) -> str:
        return self.console_path.read_text() if self.console_path.exists() else ""

    def append_console(self, *lines: str) -> None:
        with self.console_path.open("a") as f:
            for line in lines:
                f.write(line + "\r\n")

    def _deliver(self, line: str) -> None:
        self.delivered.append(line)
        out: list[str] = []
        if self.tty_echo:
            out.append(PROMPT + line)
        wrapped = _WRAPPED.fullmatch(line)
        if wrapped:
            command = wrapped["command"]
            out.append(wrapped["start"])
            out.extend(self.responses.get(command, []))
            if command not in self.hang:
                out.append(wrapped["end"])
        elif line.startswith("echo "):
            out.append(line.removeprefix("echo "))
        self.append_console(*out)


def _result(ok: bool) -> ExecResult:
    return ExecResult(output="", exit_code=0 if ok else 1)


@pytest.fixture
def console_path(tmp_path: Path) -> Path:
    path = tmp_path / "console.log"
    path.write_text("[    0.000000] Linux version 6.8.0-riscv64\r\n")
    return path


@pytest.fixture
def console(console_path: Path) -> ConsoleStream:
    return ConsoleStream(console_path, poll_interval=0.01)


@pytest.fixture
def make_guest(console_path: Path) -> Callable[..., FakeGuest]:
    def _make(**kwargs: object) -> FakeGuest:
        return FakeGuest(console_path, **kwargs)  # type: ignore[arg-type]

    return _make


@pytest.fixture
def fast_config(console_path: Path) -> BridgeConfig:
    """Config with all waits collapsed so tests finish in milliseconds."""
    return BridgeConfig(
        host_console_log=console_path,
        boot_timeout_seconds=10,
        boot_interval_seconds=5,
        relay_grace_seconds=0,
        attach_delay_seconds=0,
        capture_timeout_seconds=2,
    )


@pytest.fixture
def no_sleep(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    """Record asyncio.sleep() durations instead of sleeping.

    Each call still yields to the event loop once.
    """
    real_sleep = asyncio.sleep
    slept: list[float] = []

    async def fake_sleep(delay: float, result: object = None) -> object:
        slept.append(delay)
        await real_sleep(0)
        return result

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    return slept
