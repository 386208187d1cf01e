"""Per-command output capture from the shared console log.

The console log is the guest's only response channel and it also carries
boot noise, kernel messages and the tty's echo of whatever we type.  Each
command is therefore wrapped between two unique markers:

    { echo __START_<uid>__; <command>; echo __END_<uid>__; } 2>&1

and the log is scanned from the position it had *before* the command was
sent.  Lines strictly between the start and end marker lines are the
command's output.

Framing rules (LineScanner):
- any line containing the start marker is discarded and starts capturing
  (if not already); lines collected so far are kept.  The tty echo of the
  wrapped command contains both markers and the start check wins, so the
  echo never terminates a capture
- while capturing, a line containing the end marker finishes the capture
- every other line while capturing is kept verbatim, in order

A capture that never sees its end marker is not an error: after the
timeout the caller gets whatever was collected, flagged ``timed_out``.
The same holds when the control plane fails while sending (a dead relay
leaves the FIFO write blocked until the control-plane call gives up).
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import random
import time
from typing import TYPE_CHECKING

from guest_bridge import constants
from guest_bridge._logging import get_logger
from guest_bridge.exceptions import TargetError
from guest_bridge.models import CaptureResult, CaptureState, CommandEnvelope
from guest_bridge.signals import contains_marker
from guest_bridge.subprocess_utils import log_task_exception

if TYPE_CHECKING:
    from guest_bridge.channel import CommandChannel
    from guest_bridge.console import ConsoleStream, ConsoleSubscription

logger = get_logger(__name__)

# Distinguishes envelopes created within the same clock tick
_sequence = itertools.count()


def make_uid() -> str:
    """Marker id: nanosecond timestamp, random suffix and process-local sequence."""
    return f"{time.time_ns()}-{random.randint(0, constants.MARKER_RANDOM_MAX)}-{next(_sequence)}"


def make_envelope(command: str, uid: str | None = None) -> CommandEnvelope:
    """Wrap ``command`` between fresh start/end markers."""
    uid = uid if uid is not None else make_uid()
    return CommandEnvelope(
        command=command,
        start_marker=f"{constants.START_MARKER_PREFIX}{uid}{constants.MARKER_SUFFIX}",
        end_marker=f"{constants.END_MARKER_PREFIX}{uid}{constants.MARKER_SUFFIX}",
    )


class LineScanner:
    """SEEKING_START -> CAPTURING -> DONE over a stream of console lines."""

    def __init__(self, start_marker: str, end_marker: str) -> None:
        self.start_marker = start_marker
        self.end_marker = end_marker
        self.state = CaptureState.SEEKING_START
        self.lines: list[str] = []

    @property
    def done(self) -> bool:
        return self.state is CaptureState.DONE

    def feed(self, line: str) -> bool:
        """Consume one line; returns True once the end marker has been seen."""
        if self.state is CaptureState.DONE:
            return True
        if contains_marker(line, self.start_marker):
            self.state = CaptureState.CAPTURING
            return False
        if self.state is CaptureState.CAPTURING:
            if contains_marker(line, self.end_marker):
                self.state = CaptureState.DONE
                return True
            self.lines.append(line)
        return False


class CaptureEngine:
    """Runs commands in the guest and returns their framed output.

    Single-flight: run() calls are serialized with an asyncio.Lock.  The
    guest shell and console log are shared, so overlapping commands would
    interleave output and break marker framing.
    """

    def __init__(
        self,
        channel: CommandChannel,
        console: ConsoleStream,
        *,
        attach_delay_seconds: float = constants.ATTACH_DELAY_SECONDS,
        default_timeout_seconds: float = constants.DEFAULT_CAPTURE_TIMEOUT_SECONDS,
    ) -> None:
        self._channel = channel
        self._console = console
        self._attach_delay = attach_delay_seconds
        self._default_timeout = default_timeout_seconds
        self._lock = asyncio.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def run(self, command: str, timeout: float | None = None) -> CaptureResult:
        """Execute ``command`` in the guest and capture its output lines.

        Args:
            command: Shell command for the guest
            timeout: Overall budget in seconds (default: engine default)

        Returns:
            CaptureResult; ``timed_out`` is set when the end marker never
            appeared (or the command could not be sent), with ``lines``
            holding any partial output.

        Raises:
            ChannelNotReadyError: the command channel was never set up
        """
        timeout = self._default_timeout if timeout is None else timeout
        if timeout <= 0:
            raise ValueError("timeout must be > 0")

        async with self._lock:
            envelope = make_envelope(command)
            scanner = LineScanner(envelope.start_marker, envelope.end_marker)
            started = time.monotonic()

            # Subscribe before sending: output emitted earlier would be missed
            subscription = await self._console.subscribe()
            scan_task = asyncio.create_task(self._scan(subscription, scanner), name=f"capture-{envelope.start_marker}")
            scan_task.add_done_callback(log_task_exception)

            timed_out = False
            try:
                async with asyncio.timeout(timeout):
                    await asyncio.sleep(self._attach_delay)
                    await self._channel.send(envelope.wrapped)
                    await scan_task
            except TimeoutError:
                timed_out = True
            except TargetError as e:
                # Command never reached the guest; report it like a lost command
                logger.warning(
                    "Sending command failed, returning partial output",
                    extra={"command": command, "error": e.message},
                )
                timed_out = True
            finally:
                if not scan_task.done():
                    scan_task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await scan_task

            elapsed = time.monotonic() - started
            if timed_out:
                logger.debug(
                    "End marker not seen before timeout, returning partial output",
                    extra={"command": command, "timeout": timeout, "lines": len(scanner.lines), "state": scanner.state},
                )
            return CaptureResult(
                envelope=envelope,
                lines=list(scanner.lines),
                timed_out=timed_out,
                elapsed_seconds=elapsed,
            )

    @staticmethod
    async def _scan(subscription: ConsoleSubscription, scanner: LineScanner) -> None:
        async with contextlib.aclosing(aiter(subscription)) as lines:
            async for line in lines:
                if scanner.feed(line):
                    return
