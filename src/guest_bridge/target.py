"""Execution targets: the environment the guest VM runs inside.

The core only needs four things from the control plane: is the target
alive, run a command inside it, start a detached command inside it, and
fetch its recent diagnostic output.  ExecutionTarget captures that as a
Protocol; DockerTarget and LocalProcessTarget implement it.

Provisioning (start_container) lives here too, as a thin wrapper used by
the CLI; the boot/channel/capture logic never calls it.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Protocol, runtime_checkable

import aiofiles.os

from guest_bridge import constants
from guest_bridge._logging import get_logger
from guest_bridge.console import read_tail
from guest_bridge.exceptions import TargetError, TargetStartError
from guest_bridge.models import ExecResult
from guest_bridge.platform_utils import PidWatcher
from guest_bridge.subprocess_utils import run_command

logger = get_logger(__name__)


@runtime_checkable
class ExecutionTarget(Protocol):
    """Control plane of the environment hosting the guest VM."""

    @property
    def name(self) -> str:
        """Opaque handle used in logs and error context."""
        ...

    async def is_alive(self) -> bool:
        """Whether the environment is still running. Must be cheap."""
        ...

    async def exec_in(self, command: str) -> ExecResult:
        """Run a shell command inside the environment and wait for it."""
        ...

    async def exec_detached(self, command: str) -> None:
        """Start a shell command inside the environment without waiting."""
        ...

    async def recent_output(self, line_count: int) -> str:
        """Last ``line_count`` lines of the environment's diagnostic output."""
        ...


async def check_alive(target: ExecutionTarget) -> bool:
    """Liveness check that never raises.

    A control plane that cannot even be queried is treated as a dead target:
    callers abort instead of polling something they cannot observe.
    """
    try:
        return await target.is_alive()
    except (TargetError, OSError) as e:
        logger.warning(
            "Liveness check failed, treating target as dead",
            extra={"target": target.name, "error": str(e)},
        )
        return False


class DockerTarget:
    """A container started from the RISC-V QEMU image."""

    def __init__(self, name: str, *, docker_bin: str = constants.DOCKER_BIN) -> None:
        self._name = name
        self._docker = docker_bin

    @property
    def name(self) -> str:
        return self._name

    def __repr__(self) -> str:
        return f"DockerTarget({self._name!r})"

    async def is_alive(self) -> bool:
        result = await run_command([self._docker, "ps", "--format", "{{.Names}}"], context_id=self._name)
        if not result.ok:
            raise TargetError(
                f"docker ps failed: {result.output.strip()}",
                context={"target": self._name, "exit_code": result.exit_code},
            )
        return self._name in result.output.splitlines()

    async def exec_in(self, command: str) -> ExecResult:
        return await run_command([self._docker, "exec", self._name, "bash", "-c", command], context_id=self._name)

    async def exec_detached(self, command: str) -> None:
        result = await run_command(
            [self._docker, "exec", "-d", self._name, "bash", "-c", command],
            context_id=self._name,
        )
        if not result.ok:
            raise TargetError(
                f"docker exec -d failed: {result.output.strip()}",
                context={"target": self._name, "exit_code": result.exit_code},
            )

    async def recent_output(self, line_count: int) -> str:
        result = await run_command(
            [self._docker, "logs", "--tail", str(line_count), self._name],
            context_id=self._name,
        )
        return result.output


class LocalProcessTarget:
    """A QEMU process running directly on this host.

    Commands run through the local shell, liveness follows the QEMU PID and
    diagnostics come from the log file QEMU's stdout/stderr was sent to.
    """

    def __init__(self, pid: int, diagnostic_log: Path | None = None, *, name: str | None = None) -> None:
        self._watcher = PidWatcher(pid)
        self._diagnostic_log = diagnostic_log
        self._name = name or f"pid-{pid}"
        self._detached: set[asyncio.Task[int]] = set()

    @property
    def name(self) -> str:
        return self._name

    async def is_alive(self) -> bool:
        return await self._watcher.is_running()

    async def exec_in(self, command: str) -> ExecResult:
        return await run_command(["bash", "-c", command], context_id=self._name)

    async def exec_detached(self, command: str) -> None:
        try:
            proc = await asyncio.create_subprocess_exec(
                "bash",
                "-c",
                command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
                start_new_session=True,  # Survive our process group
            )
        except OSError as e:
            raise TargetError(f"Failed to start detached command: {e}", context={"target": self._name}) from e
        # Reap in the background; the set only holds commands still running
        reaper = asyncio.create_task(proc.wait(), name=f"detached-{proc.pid}")
        self._detached.add(reaper)
        reaper.add_done_callback(self._detached.discard)

    async def recent_output(self, line_count: int) -> str:
        if self._diagnostic_log is None:
            return ""
        try:
            return await read_tail(self._diagnostic_log, line_count)
        except FileNotFoundError:
            return ""


async def start_container(
    name: str,
    *,
    work_dir: Path,
    log_dir: Path,
    image: str = constants.DEFAULT_IMAGE,
    docker_bin: str = constants.DOCKER_BIN,
) -> DockerTarget:
    """Pull the guest image and start it as a detached, privileged container.

    The work directory is mounted at /workspace and the log directory at
    /var/log/qemu, so the console log is readable from the host.

    Raises:
        TargetStartError: docker pull or docker run failed
    """
    logger.info("Pulling guest image", extra={"image": image})
    pull = await run_command(
        [docker_bin, "pull", image],
        timeout=constants.IMAGE_PULL_TIMEOUT_SECONDS,
        context_id=name,
    )
    if not pull.ok:
        raise TargetStartError(
            f"docker pull {image} failed (exit {pull.exit_code})",
            context={"image": image, "target": name},
            stderr=pull.output,
        )

    await aiofiles.os.makedirs(log_dir, exist_ok=True)
    logger.info("Starting container", extra={"target": name, "image": image})
    run = await run_command(
        [
            docker_bin,
            "run",
            "-d",
            "--name",
            name,
            "--privileged",
            "-v",
            f"{work_dir.resolve()}:{constants.DEFAULT_WORKSPACE_DIR}",
            "-v",
            f"{log_dir.resolve()}:{constants.QEMU_LOG_DIR}",
            "-e",
            "AUTO_ATTACH=0",
            "-e",
            "RUN_TESTS=0",
            image,
        ],
        context_id=name,
    )
    if not run.ok:
        raise TargetStartError(
            f"docker run failed for {name} (exit {run.exit_code})",
            context={"image": image, "target": name},
            stderr=run.output,
        )

    logger.info("Container started", extra={"target": name})
    return DockerTarget(name, docker_bin=docker_bin)
