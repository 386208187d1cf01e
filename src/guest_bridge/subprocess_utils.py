"""Subprocess helpers for control-plane calls.

- run_command: run an argv to completion with merged output and a hard timeout
- log_task_exception: done-callback that surfaces background task failures
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from guest_bridge._logging import get_logger
from guest_bridge.constants import CONTROL_PLANE_TIMEOUT_SECONDS
from guest_bridge.exceptions import TargetError
from guest_bridge.models import ExecResult
from guest_bridge.platform_utils import ProcessWrapper

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = get_logger(__name__)


async def run_command(
    argv: Sequence[str],
    *,
    timeout: float = CONTROL_PLANE_TIMEOUT_SECONDS,
    context_id: str = "",
) -> ExecResult:
    """Run ``argv`` and return its combined output and exit code.

    stderr is merged into stdout (the ``2>&1`` the control plane scripts
    always used), so diagnostics and payload arrive in emission order.

    Args:
        argv: Program and arguments (no shell)
        timeout: Seconds before the process is killed
        context_id: Identifier for log correlation (e.g. container name)

    Raises:
        TargetError: The program could not be started or exceeded the timeout.
            A non-zero exit is NOT an error here; callers inspect exit_code.
    """
    try:
        proc = ProcessWrapper(
            await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        )
    except OSError as e:
        raise TargetError(
            f"Failed to start {argv[0]}: {e}",
            context={"argv": list(argv), "context_id": context_id},
        ) from e

    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except TimeoutError:
        await proc.kill()
        await proc.wait()
        raise TargetError(
            f"{argv[0]} did not finish within {timeout}s",
            context={"argv": list(argv), "context_id": context_id},
        ) from None
    except asyncio.CancelledError:
        # Caller gave up (e.g. capture timeout): don't leave the child behind
        await proc.kill()
        raise

    output = stdout.decode(errors="replace") if stdout else ""
    exit_code = proc.returncode if proc.returncode is not None else -1
    logger.debug(
        "Control-plane call finished",
        extra={"argv": list(argv), "exit_code": exit_code, "context_id": context_id},
    )
    return ExecResult(output=output, exit_code=exit_code)


def log_task_exception(task: asyncio.Task[None]) -> None:
    """Log exceptions from background tasks.

    Usage:
        task = asyncio.create_task(some_coroutine())
        task.add_done_callback(log_task_exception)
    """
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            "Background task failed",
            extra={"task_name": task.get_name()},
            exc_info=exc,
        )
