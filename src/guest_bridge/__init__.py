"""guest-bridge: command execution over a headless VM's serial console.

Drives a QEMU guest (RISC-V Ubuntu) running inside a container, where the
only way in is the serial console: output is appended to a log file, input
is a PTY reachable only from inside the container.

Quick Start:
    ```python
    from pathlib import Path

    from guest_bridge import BridgeConfig, DockerTarget, GuestSession

    config = BridgeConfig(host_console_log=Path("qemu-logs/console.log"))
    async with GuestSession(DockerTarget("riscv-qemu"), config) as session:
        result = await session.run("uname -m")
        print(result.lines)  # ["riscv64"]
    ```

Pieces (usable on their own):
    - BootReadinessMonitor: polls until the guest prints a ready phrase
    - CommandChannel: FIFO -> PTY relay with an end-to-end self-test
    - CaptureEngine: marker-framed, single-flight command capture
    - ConsoleStream: offset-tracked tail of the console log
"""

from guest_bridge.boot import BootReadinessMonitor
from guest_bridge.capture import CaptureEngine, LineScanner, make_envelope
from guest_bridge.channel import CommandChannel
from guest_bridge.config import BridgeConfig
from guest_bridge.console import ConsoleStream, ConsoleSubscription
from guest_bridge.exceptions import (
    BootTimeoutError,
    BridgeError,
    ChannelNotReadyError,
    ConfigError,
    PermanentError,
    SessionNotReadyError,
    SetupError,
    TargetError,
    TargetStartError,
    TransientError,
)
from guest_bridge.models import (
    BootResult,
    BootState,
    CaptureResult,
    CaptureState,
    ChannelStatus,
    CommandEnvelope,
    ExecResult,
)
from guest_bridge.session import GuestSession
from guest_bridge.target import DockerTarget, ExecutionTarget, LocalProcessTarget, check_alive, start_container

__all__ = [
    "BootReadinessMonitor",
    "BootResult",
    "BootState",
    "BootTimeoutError",
    "BridgeConfig",
    "BridgeError",
    "CaptureEngine",
    "CaptureResult",
    "CaptureState",
    "ChannelNotReadyError",
    "ChannelStatus",
    "CommandChannel",
    "CommandEnvelope",
    "ConfigError",
    "ConsoleStream",
    "ConsoleSubscription",
    "DockerTarget",
    "ExecResult",
    "ExecutionTarget",
    "GuestSession",
    "LineScanner",
    "LocalProcessTarget",
    "PermanentError",
    "SessionNotReadyError",
    "SetupError",
    "TargetError",
    "TargetStartError",
    "TransientError",
    "check_alive",
    "make_envelope",
    "start_container",
]

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("guest-bridge")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"
