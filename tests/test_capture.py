"""Tests for marker framing (LineScanner) and CaptureEngine.

Engine tests run the real channel and console stream against FakeGuest,
which writes the tty echo, markers and output into a temporary console log.
"""

import asyncio
import time
from collections.abc import Callable
from pathlib import Path

import pytest
from hypothesis import given, settings
from hypothesis.strategies import lists, text

from guest_bridge import capture as capture_module
from guest_bridge.capture import CaptureEngine, LineScanner, make_envelope, make_uid
from guest_bridge.channel import CommandChannel
from guest_bridge.console import ConsoleStream
from guest_bridge.exceptions import ChannelNotReadyError, TargetError
from guest_bridge.models import CaptureState
from tests.conftest import PROMPT, FakeGuest

START = "__START_123__"
END = "__END_123__"

# ============================================================================
# Envelopes
# ============================================================================


class TestEnvelope:
    def test_markers(self) -> None:
        envelope = make_envelope("uname -m", uid="123")
        assert envelope.start_marker == START
        assert envelope.end_marker == END

    def test_wrapped(self) -> None:
        envelope = make_envelope("ls /nope", uid="7")
        assert envelope.wrapped == "{ echo __START_7__; ls /nope; echo __END_7__; } 2>&1"

    def test_uids_unique(self) -> None:
        uids = {make_uid() for _ in range(1000)}
        assert len(uids) == 1000

    def test_fresh_markers_per_command(self) -> None:
        first, second = make_envelope("ls"), make_envelope("ls")
        assert first.start_marker != second.start_marker
        assert first.end_marker != second.end_marker


# ============================================================================
# Line scanner
# ============================================================================


def _scan(lines: list[str], start: str = START, end: str = END) -> LineScanner:
    scanner = LineScanner(start, end)
    for line in lines:
        if scanner.feed(line):
            break
    return scanner


class TestLineScanner:
    def test_basic_framing(self) -> None:
        scanner = _scan([START, "hello", "world", END])
        assert scanner.done
        assert scanner.lines == ["hello", "world"]

    def test_lines_before_start_ignored(self) -> None:
        scanner = _scan(["boot noise", "hello", START, "world", END])
        assert scanner.lines == ["world"]

    def test_end_before_start_ignored(self) -> None:
        scanner = _scan([END, START, "a", END])
        assert scanner.done
        assert scanner.lines == ["a"]

    def test_tty_echo_does_not_terminate(self) -> None:
        echo = f"{PROMPT}{{ echo {START}; uname -m; echo {END}; }} 2>&1"
        scanner = _scan([echo, START, "riscv64", END])
        assert scanner.lines == ["riscv64"]

    def test_echo_after_start_keeps_capturing(self) -> None:
        echo = f"{PROMPT}{{ echo {START}; true; echo {END}; }} 2>&1"
        scanner = _scan([START, echo, "x", END])
        assert scanner.lines == ["x"]

    def test_start_marker_in_output_keeps_earlier_lines(self) -> None:
        # e.g. `history` or `ps` printing the running command group
        scanner = _scan([START, "a", f"printf {START} seen", "b", END])
        assert scanner.done
        assert scanner.lines == ["a", "b"]

    def test_empty_output(self) -> None:
        scanner = _scan([START, END])
        assert scanner.done
        assert scanner.lines == []

    def test_other_markers_are_payload(self) -> None:
        scanner = _scan([START, "__START_999__", "__END_999__", END])
        assert scanner.lines == ["__START_999__", "__END_999__"]

    def test_lines_kept_verbatim(self) -> None:
        scanner = _scan([START, "  indented  ", "", "tab\tchar", END])
        assert scanner.lines == ["  indented  ", "", "tab\tchar"]

    def test_incomplete(self) -> None:
        scanner = _scan([START, "partial"])
        assert scanner.state is CaptureState.CAPTURING
        assert not scanner.done
        assert scanner.lines == ["partial"]

    def test_done_ignores_further_input(self) -> None:
        scanner = _scan([START, "a", END])
        assert scanner.feed("late") is True
        assert scanner.feed(START) is True
        assert scanner.lines == ["a"]

    @given(
        before=lists(text(alphabet="abc _-", max_size=20), max_size=10),
        payload=lists(text(alphabet="abc _-019", max_size=20), max_size=20),
        after=lists(text(alphabet="abc _-", max_size=20), max_size=10),
    )
    @settings(max_examples=200)
    def test_framing_property(self, before: list[str], payload: list[str], after: list[str]) -> None:
        """Output is exactly the lines between the marker lines, whatever surrounds them."""
        scanner = _scan([*before, START, *payload, END, *after])
        assert scanner.done
        assert scanner.lines == payload


# ============================================================================
# Engine
# ============================================================================


@pytest.fixture
async def ready_guest(make_guest: Callable[..., FakeGuest]) -> tuple[FakeGuest, CommandChannel]:
    guest = make_guest(
        responses={
            "echo hello; echo world": ["hello", "world"],
            "uname -m": ["riscv64"],
            "true": [],
            "one": ["1"],
            "two": ["2"],
            "sleep 100": ["started"],
        },
        hang={"sleep 100"},
    )
    channel = CommandChannel(guest, grace_seconds=0)
    await channel.setup()
    return guest, channel


def _engine(channel: CommandChannel, console: ConsoleStream, timeout: float = 2.0) -> CaptureEngine:
    return CaptureEngine(channel, console, attach_delay_seconds=0, default_timeout_seconds=timeout)


class TestCaptureEngine:
    async def test_captures_output(
        self,
        ready_guest: tuple[FakeGuest, CommandChannel],
        console: ConsoleStream,
    ) -> None:
        guest, channel = ready_guest
        result = await _engine(channel, console).run("echo hello; echo world")

        assert result.lines == ["hello", "world"]
        assert result.output == "hello\nworld"
        assert result.completed
        assert guest.delivered[-1] == result.envelope.wrapped

    async def test_history_not_captured(
        self,
        ready_guest: tuple[FakeGuest, CommandChannel],
        console: ConsoleStream,
    ) -> None:
        guest, channel = ready_guest
        engine = _engine(channel, console)
        await engine.run("uname -m")
        second = await engine.run("uname -m")
        assert second.lines == ["riscv64"]

    async def test_empty_output(
        self,
        ready_guest: tuple[FakeGuest, CommandChannel],
        console: ConsoleStream,
    ) -> None:
        _, channel = ready_guest
        result = await _engine(channel, console).run("true")
        assert result.lines == []
        assert result.completed

    async def test_without_tty_echo(
        self,
        make_guest: Callable[..., FakeGuest],
        console: ConsoleStream,
    ) -> None:
        guest = make_guest(tty_echo=False, responses={"uname -m": ["riscv64"]})
        channel = CommandChannel(guest, grace_seconds=0)
        await channel.setup()
        result = await _engine(channel, console).run("uname -m")
        assert result.lines == ["riscv64"]

    async def test_timeout_returns_partial_output(
        self,
        ready_guest: tuple[FakeGuest, CommandChannel],
        console: ConsoleStream,
    ) -> None:
        _, channel = ready_guest
        started = time.monotonic()

        result = await _engine(channel, console).run("sleep 100", timeout=0.3)

        assert result.timed_out
        assert not result.completed
        assert result.lines == ["started"]
        assert time.monotonic() - started < 2.0

    async def test_lost_command_times_out_empty(
        self,
        ready_guest: tuple[FakeGuest, CommandChannel],
        console: ConsoleStream,
    ) -> None:
        guest, channel = ready_guest
        guest.relay_delivers = False
        result = await _engine(channel, console).run("uname -m", timeout=0.2)
        assert result.timed_out
        assert result.lines == []

    async def test_send_failure_returns_timed_out(
        self,
        ready_guest: tuple[FakeGuest, CommandChannel],
        console: ConsoleStream,
    ) -> None:
        guest, channel = ready_guest
        original = guest.exec_in

        async def blocked_fifo(command: str):  # type: ignore[no-untyped-def]
            if command.startswith("printf "):
                raise TargetError("docker did not finish within 60.0s")
            return await original(command)

        guest.exec_in = blocked_fifo  # type: ignore[method-assign]
        engine = _engine(channel, console)

        result = await engine.run("uname -m", timeout=5)

        assert result.timed_out
        assert result.lines == []
        assert not engine.busy

    async def test_invalid_timeout(
        self,
        ready_guest: tuple[FakeGuest, CommandChannel],
        console: ConsoleStream,
    ) -> None:
        _, channel = ready_guest
        with pytest.raises(ValueError, match="timeout"):
            await _engine(channel, console).run("true", timeout=0)

    async def test_channel_not_ready(self, make_guest: Callable[..., FakeGuest], console: ConsoleStream) -> None:
        engine = _engine(CommandChannel(make_guest(), grace_seconds=0), console)
        with pytest.raises(ChannelNotReadyError):
            await engine.run("true")
        assert not engine.busy

    async def test_runs_are_serialized(
        self,
        ready_guest: tuple[FakeGuest, CommandChannel],
        console: ConsoleStream,
    ) -> None:
        _, channel = ready_guest
        engine = _engine(channel, console)
        sent_at: list[float] = []
        original_send = channel.send

        async def timed_send(line: str) -> None:
            sent_at.append(time.monotonic())
            await original_send(line)

        channel.send = timed_send  # type: ignore[method-assign]

        first, second = await asyncio.gather(
            engine.run("sleep 100", timeout=0.3),
            engine.run("two"),
        )

        assert first.timed_out
        assert first.lines == ["started"]
        assert second.lines == ["2"]
        assert sent_at[1] - sent_at[0] >= 0.25
        assert not engine.busy

    async def test_output_appended_over_time(
        self,
        ready_guest: tuple[FakeGuest, CommandChannel],
        console: ConsoleStream,
        console_path: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        guest, channel = ready_guest
        guest.relay_delivers = False  # the "guest" below writes the log itself
        monkeypatch.setattr(capture_module, "make_uid", lambda: "123")

        async def guest_output() -> None:
            for line in ["noise", START, "hello", "world", END, "after"]:
                await asyncio.sleep(0.02)
                guest.append_console(line)

        writer = asyncio.create_task(guest_output())
        result = await _engine(channel, console).run("echo hello; echo world")
        await writer

        assert result.envelope.start_marker == START
        assert result.lines == ["hello", "world"]
        assert result.completed
