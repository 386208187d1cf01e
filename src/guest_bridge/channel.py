"""Command channel into the guest's serial console.

The guest's only input is a PTY character device inside the target.  We
never write to it directly; instead a named pipe (FIFO) is created next to
the console log and a detached relay loop copies whatever is written to the
FIFO into the PTY:

    host --docker exec--> FIFO --relay (cat)--> PTY --> guest shell --> console.log

Setup fails fast at each step.  The relay-process check is advisory only;
the self-test probe (echo through the whole path, then look for it in the
console log) is the authoritative verification.

At most one relay reads the FIFO: setup() only launches one when none is
running already.

The relay is never supervised or restarted.  If it dies, later commands are
simply never delivered and captures time out.
"""

from __future__ import annotations

import asyncio
import shlex
import time
from typing import TYPE_CHECKING

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_delay, wait_fixed

from guest_bridge import constants
from guest_bridge._logging import get_logger
from guest_bridge.exceptions import ChannelNotReadyError, SetupError
from guest_bridge.models import ChannelStatus

if TYPE_CHECKING:
    from guest_bridge.target import ExecutionTarget

logger = get_logger(__name__)


class _ProbeMissingError(Exception):
    """Self-test probe not (yet) visible in the console log."""


def make_probe() -> str:
    """Self-test token, e.g. ``__TEST_1700000000__``."""
    return f"{constants.PROBE_PREFIX}{int(time.time())}{constants.MARKER_SUFFIX}"


def relay_script(fifo_path: str, pty_path_file: str) -> str:
    """Shell loop forwarding FIFO writes into the guest PTY.

    Never exits on its own: while the FIFO or PTY is unavailable it sleeps
    and tries again, and every EOF on the FIFO (one per writer) re-opens it.
    """
    fifo = shlex.quote(fifo_path)
    return (
        f"PTY=$(cat {shlex.quote(pty_path_file)})\n"
        "while true; do\n"
        f'  [ -p {fifo} ] && [ -c "$PTY" ] && cat {fifo} > "$PTY" || sleep {constants.RELAY_RETRY_SLEEP_SECONDS}\n'
        "done\n"
    )


class CommandChannel:
    """FIFO-to-PTY relay owned by one guest session."""

    def __init__(
        self,
        target: ExecutionTarget,
        *,
        fifo_path: str = constants.DEFAULT_GUEST_FIFO,
        console_log: str = constants.DEFAULT_CONSOLE_LOG,
        pty_path_file: str = constants.DEFAULT_PTY_PATH_FILE,
        grace_seconds: float = constants.RELAY_GRACE_SECONDS,
    ) -> None:
        self._target = target
        self.fifo_path = fifo_path
        self.console_log = console_log
        self.pty_path_file = pty_path_file
        self._grace = grace_seconds
        self._status: ChannelStatus | None = None

    @property
    def ready(self) -> bool:
        return self._status is not None

    @property
    def status(self) -> ChannelStatus | None:
        return self._status

    async def setup(self) -> ChannelStatus:
        """Create the FIFO, launch the relay and verify it end to end.

        Raises:
            SetupError: PTY descriptor missing or empty, FIFO creation failed,
                or the self-test probe never reached the console log
        """
        name = self._target.name
        logger.info("Setting up headless command interface", extra={"target": name})

        # 1-2. PTY descriptor
        check = await self._target.exec_in(f"test -f {shlex.quote(self.pty_path_file)}")
        if not check.ok:
            raise SetupError(
                f"PTY path file not found in {self.pty_path_file}",
                context={"target": name, "pty_path_file": self.pty_path_file},
            )
        read = await self._target.exec_in(f"cat {shlex.quote(self.pty_path_file)}")
        pty_path = read.output.strip()
        if not read.ok or not pty_path:
            raise SetupError(
                f"Could not read guest PTY path from {self.pty_path_file}",
                context={"target": name, "output": read.output[:200]},
            )
        logger.info("Guest PTY: %s", pty_path, extra={"target": name})

        # 3. FIFO (idempotent), writable by anyone
        fifo = shlex.quote(self.fifo_path)
        made = await self._target.exec_in(f"[ -p {fifo} ] || mkfifo {fifo}\nchmod 666 {fifo}")
        if not made.ok:
            raise SetupError(
                f"Could not create command FIFO {self.fifo_path}",
                context={"target": name, "output": made.output[:200]},
            )

        # 4. Detached relay, unless one already owns the FIFO
        if await self._relay_running():
            logger.info("Reusing running relay", extra={"target": name, "fifo": self.fifo_path})
        else:
            await self._target.exec_detached(relay_script(self.fifo_path, self.pty_path_file))
            await asyncio.sleep(self._grace)

        # 5. Advisory relay check
        relay_active = await self._relay_running()
        if relay_active:
            logger.info("Command bridge active", extra={"target": name})
        else:
            logger.warning(
                "Relay process not detected (commands may not work)",
                extra={"target": name, "fifo": self.fifo_path},
            )

        # 6. Authoritative self-test
        probe = make_probe()
        logger.info("Testing command interface", extra={"target": name, "probe": probe})
        await self._write(f"echo {probe}")
        if not await self._probe_seen(probe):
            raise SetupError(
                "Command interface test failed (probe not found in console log)",
                context={"target": name, "probe": probe, "console_log": self.console_log},
            )

        self._status = ChannelStatus(pty_path=pty_path, relay_active=relay_active, probe=probe)
        logger.info("Command interface verified", extra={"target": name})
        return self._status

    async def attach(self) -> ChannelStatus:
        """Reuse a relay started by an earlier setup() (e.g. another process).

        No FIFO creation, relay launch or self-test; a missing relay is only
        reported, exactly as during setup().

        Raises:
            SetupError: the PTY descriptor or the FIFO does not exist
        """
        name = self._target.name
        read = await self._target.exec_in(f"cat {shlex.quote(self.pty_path_file)}")
        pty_path = read.output.strip()
        if not read.ok or not pty_path:
            raise SetupError(
                f"PTY path file not found in {self.pty_path_file}",
                context={"target": name, "pty_path_file": self.pty_path_file},
            )
        fifo = await self._target.exec_in(f"test -p {shlex.quote(self.fifo_path)}")
        if not fifo.ok:
            raise SetupError(
                f"Command FIFO {self.fifo_path} does not exist; run setup first",
                context={"target": name},
            )
        relay_active = await self._relay_running()
        if not relay_active:
            logger.warning("Relay process not detected (commands may not work)", extra={"target": name})
        self._status = ChannelStatus(pty_path=pty_path, relay_active=relay_active, probe="")
        return self._status

    async def send(self, line: str) -> None:
        """Deliver one line of shell input to the guest (fire-and-forget).

        Raises:
            ChannelNotReadyError: setup() has not succeeded
        """
        if self._status is None:
            raise ChannelNotReadyError(
                "Command channel is not set up",
                context={"target": self._target.name},
            )
        await self._write(line)

    async def _write(self, line: str) -> None:
        # The open() blocks until the relay has the FIFO open for reading
        result = await self._target.exec_in(f"printf '%s\\n' {shlex.quote(line)} > {shlex.quote(self.fifo_path)}")
        if not result.ok:
            logger.warning(
                "Write to command FIFO failed",
                extra={"target": self._target.name, "exit_code": result.exit_code, "output": result.output[:200]},
            )

    async def _relay_running(self) -> bool:
        # [c]at keeps pgrep from matching the shell running it
        pattern = shlex.quote(f"[c]at {self.fifo_path}")
        result = await self._target.exec_in(f"pgrep -f {pattern} >/dev/null")
        return result.ok

    async def _probe_seen(self, probe: str) -> bool:
        grep = f"grep -q {shlex.quote(probe)} {shlex.quote(self.console_log)}"
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(_ProbeMissingError),
                stop=stop_after_delay(self._grace),
                wait=wait_fixed(constants.PROBE_POLL_SECONDS),
                reraise=True,
            ):
                with attempt:
                    result = await self._target.exec_in(grep)
                    if not result.ok:
                        raise _ProbeMissingError(probe)
        except _ProbeMissingError:
            return False
        return True
