"""PID-reuse safe process handles built on psutil.

ProcessWrapper wraps subprocesses we spawn (control-plane calls, local
relays).  PidWatcher follows a process we did not spawn, such as a QEMU
instance started by another tool, for liveness checks.
"""

import asyncio
import contextlib

import psutil


class ProcessWrapper:
    """PID-reuse safe wrapper around asyncio.subprocess.Process."""

    def __init__(self, async_proc: asyncio.subprocess.Process) -> None:
        self.async_proc = async_proc
        self.psutil_proc: psutil.Process | None = None

        if async_proc.pid:
            with contextlib.suppress(psutil.NoSuchProcess, psutil.AccessDenied):
                # Process already died or inaccessible
                self.psutil_proc = psutil.Process(async_proc.pid)

    async def is_running(self) -> bool:
        """Check if process is still running (PID-reuse safe).

        The psutil call runs in a worker thread so a hung /proc read cannot
        block the event loop.
        """
        if not self.psutil_proc:
            return self.async_proc.returncode is None
        try:
            return await asyncio.to_thread(self.psutil_proc.is_running)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return False

    @property
    def returncode(self) -> int | None:
        return self.async_proc.returncode

    async def wait(self) -> int:
        return await self.async_proc.wait()

    async def communicate(self, input: bytes | None = None) -> tuple[bytes, bytes]:
        return await self.async_proc.communicate(input)

    async def kill(self) -> None:
        """Kill process (SIGKILL) without blocking the event loop."""
        if self.psutil_proc and await self.is_running():
            with contextlib.suppress(psutil.NoSuchProcess, psutil.AccessDenied):
                await asyncio.to_thread(self.psutil_proc.kill)
        else:
            with contextlib.suppress(ProcessLookupError):
                self.async_proc.kill()


class PidWatcher:
    """Liveness of an externally started process.

    The psutil handle remembers the process creation time, so a recycled
    PID is reported as dead rather than mistaken for the original process.
    """

    def __init__(self, pid: int) -> None:
        self.pid = pid
        self._proc: psutil.Process | None = None
        with contextlib.suppress(psutil.NoSuchProcess, psutil.AccessDenied):
            self._proc = psutil.Process(pid)

    async def is_running(self) -> bool:
        if self._proc is None:
            return False
        try:
            running = await asyncio.to_thread(self._proc.is_running)
            if not running:
                return False
            status = await asyncio.to_thread(self._proc.status)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return False
        return status != psutil.STATUS_ZOMBIE
