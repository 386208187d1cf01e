"""Exception hierarchy for guest-bridge.

All exceptions inherit from BridgeError.

Hierarchy:
    BridgeError (base)
    ├── TransientError (retryable marker base)
    │   └── BootTimeoutError       ← ready phrase never seen / target died
    ├── PermanentError (non-retryable marker base)
    │   ├── SetupError             ← missing PTY descriptor, failed self-test
    │   ├── ChannelNotReadyError   ← send() before setup()
    │   ├── SessionNotReadyError   ← run() before start()
    │   └── ConfigError            ← missing host console log path
    └── TargetError                ← control plane (docker) failure
        └── TargetStartError       ← pull/run failed

Command capture timeouts are deliberately absent: a capture that never sees
its end marker returns partial output with ``timed_out=True`` instead.
"""

from __future__ import annotations

from typing import Any, Literal


class BridgeError(Exception):
    """Base exception for all guest-bridge errors with structured context.

    Attributes:
        message: Human-readable error message
        context: Dictionary of structured error context for logging/debugging
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


class TransientError(BridgeError):
    """Base for errors that may succeed on retry (slow boot, busy host)."""


class PermanentError(BridgeError):
    """Base for errors that won't succeed on retry without intervention."""


class BootTimeoutError(TransientError):
    """Guest never reported readiness.

    Raised when no ready phrase was observed within the boot timeout, or
    when the target stopped running while we were waiting.  A dead target
    can never become ready, so that case fails on the tick it is detected.

    Attributes:
        reason: "timeout" or "target_died"
        diagnostics: Trailing lines of the target's diagnostic output
    """

    def __init__(
        self,
        message: str,
        *,
        reason: Literal["timeout", "target_died"],
        diagnostics: str = "",
        context: dict[str, Any] | None = None,
    ):
        ctx = context or {}
        ctx.update({"reason": reason})
        super().__init__(message, ctx)
        self.reason = reason
        self.diagnostics = diagnostics


class SetupError(PermanentError):
    """Command channel could not be established.

    Raised when the guest PTY descriptor is missing, the FIFO cannot be
    created, or the relay self-test probe never reaches the console log.
    """


class ChannelNotReadyError(PermanentError):
    """Raised when writing to a command channel that was never set up."""


class SessionNotReadyError(PermanentError):
    """Raised when running commands on a session that has not been started."""


class TargetError(BridgeError):
    """Execution environment control plane failed.

    Raised when the control plane itself (e.g. the docker binary) cannot be
    invoked, as opposed to a command inside the target exiting non-zero.
    """


class TargetStartError(TargetError):
    """Pulling or starting the execution environment failed.

    Attributes:
        stderr: Output of the failing control-plane command
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None, stderr: str = ""):
        super().__init__(message, context)
        self.stderr = stderr


class ConfigError(PermanentError):
    """Invalid or incomplete configuration for the requested operation."""
