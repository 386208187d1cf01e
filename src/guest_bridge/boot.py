"""Boot readiness detection.

The guest gives no structured readiness signal; it prints one of a few
fixed phrases to its serial console once init has finished.  We poll
rather than stream because the guest may print the same lines repeatedly
and the console log may not exist yet when we start waiting.

Per tick, in order:
1. target dead            -> FAILED (a dead target never becomes ready)
2. phrase in console log  -> READY  (preferred: no unrelated chatter)
3. phrase in target output-> READY  (fallback: console log not there yet)
4. periodic heartbeat log
5. sleep one interval
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, NoReturn

from guest_bridge import constants
from guest_bridge._logging import get_logger
from guest_bridge.exceptions import BootTimeoutError, TargetError
from guest_bridge.models import BootResult, BootState
from guest_bridge.signals import match_ready
from guest_bridge.target import check_alive

if TYPE_CHECKING:
    from collections.abc import Iterable

    from guest_bridge.console import ConsoleStream
    from guest_bridge.target import ExecutionTarget

logger = get_logger(__name__)


def heartbeat_every(interval_seconds: int) -> int:
    """Ticks between progress lines, targeting one line per ~100s (never 0)."""
    return max(1, constants.BOOT_HEARTBEAT_SECONDS // interval_seconds)


class BootReadinessMonitor:
    """Polling state machine: POLLING -> READY | FAILED.

    Terminal states are final: once READY or FAILED, wait() does not poll
    again and returns (or raises) the recorded outcome.
    """

    def __init__(
        self,
        target: ExecutionTarget,
        console: ConsoleStream | None = None,
        *,
        timeout_seconds: int = constants.DEFAULT_BOOT_TIMEOUT_SECONDS,
        interval_seconds: int = constants.DEFAULT_BOOT_INTERVAL_SECONDS,
        ready_phrases: Iterable[str] = constants.READY_PHRASES,
    ) -> None:
        if interval_seconds < 1:
            raise ValueError("interval_seconds must be >= 1")
        self._target = target
        self._console = console
        self._timeout = timeout_seconds
        self._interval = interval_seconds
        self._phrases = tuple(ready_phrases)
        self._state = BootState.POLLING
        self._result: BootResult | None = None
        self._error: BootTimeoutError | None = None
        self.ticks = 0

    @property
    def state(self) -> BootState:
        return self._state

    @property
    def attempts(self) -> int:
        return self._timeout // self._interval

    async def wait(self) -> BootResult:
        """Poll until the guest is ready.

        Returns:
            BootResult naming where the ready phrase was found

        Raises:
            BootTimeoutError: target died, or no phrase within the timeout
        """
        if self._result is not None:
            return self._result
        if self._error is not None:
            raise self._error

        every = heartbeat_every(self._interval)
        started = time.monotonic()
        logger.info(
            "Waiting for guest boot completion",
            extra={"target": self._target.name, "timeout": self._timeout, "interval": self._interval},
        )

        for tick in range(1, self.attempts + 1):
            self.ticks = tick

            if not await check_alive(self._target):
                diagnostics = await self._diagnostics(constants.DEATH_DIAGNOSTIC_LINES)
                self._fail(
                    BootTimeoutError(
                        f"Target stopped unexpectedly: {self._target.name}",
                        reason="target_died",
                        diagnostics=diagnostics,
                        context={"target": self._target.name, "tick": tick},
                    )
                )

            found = await self._check_signals()
            if found is not None:
                source, phrase = found
                self._state = BootState.READY
                self._result = BootResult(
                    source=source,
                    phrase=phrase,
                    ticks=tick,
                    elapsed_seconds=time.monotonic() - started,
                )
                logger.info(
                    "System ready",
                    extra={"target": self._target.name, "source": source, "ticks": tick},
                )
                return self._result

            if tick % every == 0:
                logger.info(
                    "Still booting... %ds elapsed",
                    tick * self._interval,
                    extra={"target": self._target.name},
                )

            await asyncio.sleep(self._interval)

        diagnostics = await self._diagnostics(constants.TIMEOUT_DIAGNOSTIC_LINES)
        self._fail(
            BootTimeoutError(
                f"Boot timeout after {self._timeout}s",
                reason="timeout",
                diagnostics=diagnostics,
                context={"target": self._target.name, "ticks": self.ticks},
            )
        )

    async def _check_signals(self) -> tuple[str, str] | None:
        if self._console is not None:
            text = await self._console.tail(constants.CONSOLE_WINDOW_LINES)
            if text is not None:
                phrase = match_ready(text, self._phrases, constants.CONSOLE_WINDOW_LINES)
                if phrase is not None:
                    return "console_log", phrase

        text = await self._diagnostics(constants.TARGET_OUTPUT_WINDOW_LINES)
        phrase = match_ready(text, self._phrases, constants.TARGET_OUTPUT_WINDOW_LINES)
        if phrase is not None:
            return "target_output", phrase
        return None

    async def _diagnostics(self, line_count: int) -> str:
        try:
            return await self._target.recent_output(line_count)
        except (TargetError, OSError) as e:
            logger.debug("Could not fetch target output", extra={"target": self._target.name, "error": str(e)})
            return ""

    def _fail(self, error: BootTimeoutError) -> NoReturn:
        self._state = BootState.FAILED
        self._error = error
        logger.error(
            "%s\n=== Last target output ===\n%s",
            error.message,
            error.diagnostics or "(empty)",
            extra={"target": self._target.name, "reason": error.reason},
        )
        raise error
