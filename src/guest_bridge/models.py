"""Data models for guest-bridge."""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class BootState(str, Enum):
    """Boot readiness monitor states."""

    POLLING = "polling"
    READY = "ready"
    FAILED = "failed"


class CaptureState(str, Enum):
    """Line scanner states while framing one command's output."""

    SEEKING_START = "seeking_start"
    CAPTURING = "capturing"
    DONE = "done"


class ExecResult(BaseModel):
    """Result of a command run inside the execution environment (not the guest)."""

    output: str = Field(description="Combined stdout/stderr")
    exit_code: int = Field(description="Process exit code (0=success)")

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class CommandEnvelope(BaseModel):
    """One command wrapped between unique start/end markers."""

    model_config = ConfigDict(frozen=True)

    command: str
    start_marker: str
    end_marker: str

    @property
    def wrapped(self) -> str:
        """Shell text sent to the guest; stderr is merged into the captured stream."""
        return f"{{ echo {self.start_marker}; {self.command}; echo {self.end_marker}; }} 2>&1"


class BootResult(BaseModel):
    """Outcome of a successful boot wait."""

    source: Literal["console_log", "target_output"] = Field(description="Where the ready phrase was found")
    phrase: str
    ticks: int = Field(ge=1, description="Poll ticks taken, including the matching one")
    elapsed_seconds: float = Field(ge=0)


class ChannelStatus(BaseModel):
    """Outcome of command channel setup."""

    pty_path: str
    relay_active: bool = Field(description="False when the relay process was not detected (degraded)")
    probe: str = Field(description="Self-test token echoed through the guest")


class CaptureResult(BaseModel):
    """Lines a command printed between its markers."""

    envelope: CommandEnvelope
    lines: list[str] = Field(default_factory=list)
    timed_out: bool = Field(default=False, description="End marker not seen before the timeout")
    elapsed_seconds: float = Field(default=0.0, ge=0)

    @property
    def output(self) -> str:
        return "\n".join(self.lines)

    @property
    def completed(self) -> bool:
        return not self.timed_out
