"""GuestSession - one booted guest with a verified command channel.

The session is the explicit owner of everything that used to be ambient
state in shell scripts: which target we talk to, which relay is active and
which console log commands are captured from.  Callers hold the session
and pass it around instead of relying on globals.

Example:
    ```python
    async with GuestSession(DockerTarget("riscv-qemu"), config) as session:
        result = await session.run("cat /proc/cpuinfo")
        for line in result.lines:
            print(line)
    ```

Lifecycle:
    - start(): wait for boot (fatal on timeout/death), then set up the
      command channel (fatal on failed self-test)
    - run(): sequential, framed command execution
    - exiting the context manager does not stop the target or the relay;
      both belong to the execution environment
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Self

from guest_bridge._logging import get_logger
from guest_bridge.boot import BootReadinessMonitor
from guest_bridge.capture import CaptureEngine
from guest_bridge.channel import CommandChannel
from guest_bridge.config import BridgeConfig
from guest_bridge.console import ConsoleStream
from guest_bridge.exceptions import ConfigError, SessionNotReadyError

if TYPE_CHECKING:
    from types import TracebackType

    from guest_bridge.models import BootResult, CaptureResult, ChannelStatus
    from guest_bridge.target import ExecutionTarget

logger = get_logger(__name__)


class GuestSession:
    """Boot gate, command channel and capture engine for a single guest.

    Attributes:
        target: Execution environment hosting the guest.
        config: Session configuration.
        boot_result: Outcome of the boot wait (None until booted).
        channel_status: Outcome of channel setup (None until set up).
    """

    def __init__(self, target: ExecutionTarget, config: BridgeConfig | None = None) -> None:
        self.target = target
        self.config = config or BridgeConfig()
        self.console = ConsoleStream(self.config.host_console_log) if self.config.host_console_log else None
        self.channel = CommandChannel(
            target,
            fifo_path=self.config.guest_fifo,
            console_log=self.config.guest_console_log,
            pty_path_file=self.config.pty_path_file,
            grace_seconds=self.config.relay_grace_seconds,
        )
        self._engine: CaptureEngine | None = None
        if self.console is not None:
            self._engine = CaptureEngine(
                self.channel,
                self.console,
                attach_delay_seconds=self.config.attach_delay_seconds,
                default_timeout_seconds=self.config.capture_timeout_seconds,
            )
        self.boot_result: BootResult | None = None
        self.channel_status: ChannelStatus | None = None

    @property
    def ready(self) -> bool:
        return self.channel.ready

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        logger.debug("Guest session released", extra={"target": self.target.name})

    async def start(self, *, wait_for_boot: bool = True) -> ChannelStatus:
        """Wait for the guest (optional) and establish the command channel.

        Raises:
            BootTimeoutError: boot not observed or target died
            SetupError: channel setup or self-test failed
        """
        if wait_for_boot:
            await self.wait_for_boot()
        return await self.setup_channel()

    async def wait_for_boot(self) -> BootResult:
        monitor = BootReadinessMonitor(
            self.target,
            self.console,
            timeout_seconds=self.config.boot_timeout_seconds,
            interval_seconds=self.config.boot_interval_seconds,
            ready_phrases=self.config.ready_phrases,
        )
        self.boot_result = await monitor.wait()
        return self.boot_result

    async def setup_channel(self) -> ChannelStatus:
        self.channel_status = await self.channel.setup()
        return self.channel_status

    async def attach(self) -> ChannelStatus:
        """Adopt a relay set up earlier instead of creating a new one."""
        self.channel_status = await self.channel.attach()
        return self.channel_status

    async def run(self, command: str, timeout: float | None = None) -> CaptureResult:
        """Run a shell command in the guest and capture its output.

        Raises:
            SessionNotReadyError: start() has not completed
            ConfigError: no host console log configured
        """
        if self._engine is None:
            raise ConfigError(
                "Capturing output requires host_console_log",
                context={"target": self.target.name},
            )
        if not self.channel.ready:
            raise SessionNotReadyError(
                "Session not started: call start() first",
                context={"target": self.target.name},
            )
        logger.info("→ %s", command, extra={"target": self.target.name})
        return await self._engine.run(command, timeout)

    async def send(self, line: str) -> None:
        """Write one raw line to the guest without waiting for output."""
        if not self.channel.ready:
            raise SessionNotReadyError(
                "Session not started: call start() first",
                context={"target": self.target.name},
            )
        await self.channel.send(line)
