"""Session configuration for guest-bridge.

BridgeConfig carries every tunable of a guest session: guest-side paths,
the host-side console log, boot polling, relay grace and capture timing.

Example:
    ```python
    from pathlib import Path

    from guest_bridge import BridgeConfig, DockerTarget, GuestSession

    config = BridgeConfig(
        host_console_log=Path("qemu-logs/console.log"),
        boot_timeout_seconds=900,
    )
    async with GuestSession(DockerTarget("riscv-qemu"), config) as session:
        result = await session.run("uname -a")
        print(result.output)
    ```
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from guest_bridge import constants

if TYPE_CHECKING:
    from guest_bridge.settings import Settings


class BridgeConfig(BaseModel):
    """Configuration for GuestSession.

    Attributes:
        guest_fifo: Named pipe inside the target that the relay forwards to the PTY.
        guest_console_log: Console log path inside the target (used by the self-test).
        pty_path_file: File inside the target holding the guest PTY device path.
        host_console_log: Console log path on the host (bind mount of the log dir).
            Preferred boot signal source and the stream commands are captured from.
            None disables both; boot then relies on target output only and
            run() is unavailable.
        boot_timeout_seconds: Total boot wait budget. Default: 600.
        boot_interval_seconds: Seconds between boot polls. Default: 5.
        capture_timeout_seconds: Default per-command capture budget. Default: 30.
        attach_delay_seconds: Delay between subscribing and sending. Default: 0.3.
        relay_grace_seconds: Relay start-up and self-test grace window. Default: 2.
        ready_phrases: Substrings that mark the guest as ready.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )

    # Guest layout
    guest_fifo: str = Field(default=constants.DEFAULT_GUEST_FIFO, min_length=1)
    guest_console_log: str = Field(default=constants.DEFAULT_CONSOLE_LOG, min_length=1)
    pty_path_file: str = Field(default=constants.DEFAULT_PTY_PATH_FILE, min_length=1)
    host_console_log: Path | None = Field(
        default=None,
        description="Host-side console log (None disables capture)",
    )

    # Boot
    boot_timeout_seconds: int = Field(
        default=constants.DEFAULT_BOOT_TIMEOUT_SECONDS,
        ge=1,
        description="Total boot wait budget in seconds",
    )
    boot_interval_seconds: int = Field(
        default=constants.DEFAULT_BOOT_INTERVAL_SECONDS,
        ge=1,
        description="Seconds between boot polls",
    )
    ready_phrases: tuple[str, ...] = Field(default=constants.READY_PHRASES, min_length=1)

    # Channel
    relay_grace_seconds: float = Field(default=constants.RELAY_GRACE_SECONDS, ge=0)

    # Capture
    capture_timeout_seconds: float = Field(
        default=constants.DEFAULT_CAPTURE_TIMEOUT_SECONDS,
        gt=0,
        description="Default per-command capture timeout in seconds",
    )
    attach_delay_seconds: float = Field(default=constants.ATTACH_DELAY_SECONDS, ge=0)

    @model_validator(mode="after")
    def _check_boot_budget(self) -> Self:
        if self.boot_timeout_seconds < self.boot_interval_seconds:
            raise ValueError(
                f"boot_timeout_seconds ({self.boot_timeout_seconds}) must be >= "
                f"boot_interval_seconds ({self.boot_interval_seconds})"
            )
        return self

    @classmethod
    def from_settings(cls, settings: Settings) -> BridgeConfig:
        """Build a config from environment-backed Settings."""
        return cls(
            guest_fifo=settings.guest_fifo,
            guest_console_log=settings.guest_console_log,
            pty_path_file=settings.pty_path_file,
            host_console_log=settings.host_console_log,
            boot_timeout_seconds=settings.boot_timeout_seconds,
            boot_interval_seconds=settings.boot_interval_seconds,
            capture_timeout_seconds=settings.capture_timeout_seconds,
        )
