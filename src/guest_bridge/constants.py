"""Constants for guest-bridge configuration and limits."""

from typing import Final

# ============================================================================
# Guest Layout (inside the execution environment)
# ============================================================================

QEMU_LOG_DIR: Final[str] = "/var/log/qemu"
"""Directory the image writes its console log and PTY descriptor to."""

DEFAULT_CONSOLE_LOG: Final[str] = f"{QEMU_LOG_DIR}/console.log"
"""Serial console log, appended by QEMU for the lifetime of the guest."""

DEFAULT_GUEST_FIFO: Final[str] = f"{QEMU_LOG_DIR}/guest.in"
"""Named pipe the relay copies into the guest PTY."""

DEFAULT_PTY_PATH_FILE: Final[str] = f"{QEMU_LOG_DIR}/pty.path"
"""File holding the path of the guest's serial PTY device."""

DEFAULT_WORKSPACE_DIR: Final[str] = "/workspace"
"""Mount point of the host work directory inside the container."""

DEFAULT_IMAGE: Final[str] = "cloudv10x/riscv-qemu-ubuntu:latest"
"""Container image running the RISC-V QEMU Ubuntu guest."""

# ============================================================================
# Boot Readiness
# ============================================================================

READY_PHRASES: Final[tuple[str, ...]] = (
    "RISC-V Ubuntu image is ready.",
    "System is ready for headless operation",
)
"""Case-sensitive substrings the guest prints once it accepts commands."""

DEFAULT_BOOT_TIMEOUT_SECONDS: Final[int] = 600
"""Total boot wait budget."""

DEFAULT_BOOT_INTERVAL_SECONDS: Final[int] = 5
"""Seconds between boot polls."""

BOOT_HEARTBEAT_SECONDS: Final[int] = 100
"""Approximate wall-clock spacing of "still booting" progress lines."""

CONSOLE_WINDOW_LINES: Final[int] = 100
"""Trailing console log lines searched for a ready phrase."""

TARGET_OUTPUT_WINDOW_LINES: Final[int] = 200
"""Trailing target output lines searched for a ready phrase (fallback)."""

DEATH_DIAGNOSTIC_LINES: Final[int] = 100
"""Diagnostic lines surfaced when the target dies during boot."""

TIMEOUT_DIAGNOSTIC_LINES: Final[int] = 200
"""Diagnostic lines surfaced when boot times out."""

# ============================================================================
# Command Channel
# ============================================================================

RELAY_GRACE_SECONDS: Final[float] = 2.0
"""Time given to the relay to start, and to the self-test probe to echo back."""

RELAY_RETRY_SLEEP_SECONDS: Final[int] = 1
"""Relay back-off while the FIFO or PTY is unavailable."""

PROBE_POLL_SECONDS: Final[float] = 0.25
"""Spacing between self-test probe checks within the grace window."""

PROBE_PREFIX: Final[str] = "__TEST_"
MARKER_SUFFIX: Final[str] = "__"

# ============================================================================
# Command Capture
# ============================================================================

DEFAULT_CAPTURE_TIMEOUT_SECONDS: Final[float] = 30.0
"""Default per-command capture budget."""

ATTACH_DELAY_SECONDS: Final[float] = 0.3
"""Delay between subscribing to the console log and sending the command."""

START_MARKER_PREFIX: Final[str] = "__START_"
END_MARKER_PREFIX: Final[str] = "__END_"

MARKER_RANDOM_MAX: Final[int] = 32767
"""Upper bound of the random marker suffix (same range as bash $RANDOM)."""

CONSOLE_POLL_SECONDS: Final[float] = 0.05
"""Console log polling period while following new output."""

CONSOLE_READ_CHUNK_BYTES: Final[int] = 64 * 1024
"""Maximum bytes read from the console log per poll."""

TAIL_CHUNK_BYTES: Final[int] = 8 * 1024
"""Block size when reading a log backwards for its last lines."""

# ============================================================================
# Control Plane
# ============================================================================

DOCKER_BIN: Final[str] = "docker"
"""Docker CLI binary used by DockerTarget."""

CONTROL_PLANE_TIMEOUT_SECONDS: Final[float] = 60.0
"""Upper bound for a single control-plane call (docker exec/ps/logs)."""

IMAGE_PULL_TIMEOUT_SECONDS: Final[float] = 1800.0
"""Upper bound for pulling the guest image."""
