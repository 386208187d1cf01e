"""Console log access: bounded tails and offset-tracked subscriptions.

The guest's serial console is an append-only text file shared by boot
messages, kernel logs, command echoes and command output.  Readers never
rewind: each subscription owns a byte offset that only moves forward,
starting at end-of-file unless told otherwise.

Following behaves like ``tail -n0 -F``:
- a missing file is waited for (and read from the beginning once it appears)
- a truncated file restarts the offset at 0
- a replaced file (new inode) is reopened from the beginning
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import TYPE_CHECKING

import aiofiles
import aiofiles.os

from guest_bridge import constants
from guest_bridge._logging import get_logger
from guest_bridge.signals import normalize_line, tail_lines

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = get_logger(__name__)


async def read_tail(path: Path, line_count: int, *, chunk_size: int = constants.TAIL_CHUNK_BYTES) -> str:
    """Last ``line_count`` lines of a file, like ``tail -n``.

    Reads backwards from the end in ``chunk_size`` blocks and stops once
    enough newlines are buffered, so the cost is bounded by the size of the
    tail, not of the file.

    Raises:
        FileNotFoundError: ``path`` does not exist
    """
    if line_count <= 0:
        return ""
    async with aiofiles.open(path, "rb") as f:
        position = await f.seek(0, os.SEEK_END)
        data = b""
        # One newline more than requested: the oldest block may start mid-line
        while position > 0 and data.count(b"\n") <= line_count:
            step = min(chunk_size, position)
            position -= step
            await f.seek(position)
            data = await f.read(step) + data
    return "\n".join(tail_lines(data.decode("utf-8", errors="replace"), line_count))


class ConsoleStream:
    """Read-only view of the console log file."""

    def __init__(self, path: Path, *, poll_interval: float = constants.CONSOLE_POLL_SECONDS) -> None:
        self.path = Path(path)
        self.poll_interval = poll_interval

    async def exists(self) -> bool:
        return await aiofiles.os.path.isfile(self.path)

    async def end_offset(self) -> int:
        """Current size in bytes (0 when the file does not exist yet)."""
        try:
            return (await aiofiles.os.stat(self.path)).st_size
        except FileNotFoundError:
            return 0

    async def tail(self, line_count: int) -> str | None:
        """Last ``line_count`` lines, or None when the log does not exist."""
        try:
            return await read_tail(self.path, line_count)
        except FileNotFoundError:
            return None

    async def subscribe(self, from_offset: int | None = None) -> ConsoleSubscription:
        """Start observing lines appended after ``from_offset``.

        The offset is fixed when this call returns, so anything the guest
        writes afterwards is seen even if iteration starts later.

        Args:
            from_offset: Byte offset to follow from. None means end-of-file now.
        """
        offset = await self.end_offset() if from_offset is None else from_offset
        logger.debug("Console subscription attached", extra={"path": str(self.path), "offset": offset})
        return ConsoleSubscription(self, offset)


class ConsoleSubscription:
    """Lazy, unbounded sequence of console lines after a fixed offset.

    Iterate with ``async for``; iteration only ends when the consumer stops
    (break, cancellation or timeout).  Lines are yielded without their
    newline and with carriage returns removed.  A trailing partial line is
    held back until its newline arrives.
    """

    def __init__(self, stream: ConsoleStream, offset: int) -> None:
        self._stream = stream
        self._offset = offset

    @property
    def offset(self) -> int:
        """Bytes consumed so far (including any held-back partial line)."""
        return self._offset

    def __aiter__(self) -> AsyncGenerator[str, None]:
        return self._follow()

    async def _follow(self) -> AsyncGenerator[str, None]:  # noqa: C901
        path = self._stream.path
        poll = self._stream.poll_interval
        pending = b""
        handle = None
        inode: int | None = None
        try:
            while True:
                try:
                    st = await aiofiles.os.stat(path)
                except FileNotFoundError:
                    if handle is not None:
                        await handle.close()
                        handle = None
                    await asyncio.sleep(poll)
                    continue

                if handle is None or st.st_ino != inode:
                    if handle is not None:
                        await handle.close()
                    if inode is not None and st.st_ino != inode:
                        # Replaced underneath us: the new file is all unseen output
                        self._offset = 0
                        pending = b""
                        logger.debug("Console log replaced, following new file", extra={"path": str(path)})
                    handle = await aiofiles.open(path, "rb")
                    inode = st.st_ino

                if st.st_size < self._offset:
                    logger.debug("Console log truncated, restarting at 0", extra={"path": str(path)})
                    self._offset = 0
                    pending = b""

                if st.st_size == self._offset:
                    await asyncio.sleep(poll)
                    continue

                await handle.seek(self._offset)
                chunk = await handle.read(constants.CONSOLE_READ_CHUNK_BYTES)
                if not chunk:
                    await asyncio.sleep(poll)
                    continue
                self._offset += len(chunk)

                pending += chunk
                *complete, pending = pending.split(b"\n")
                for raw in complete:
                    yield normalize_line(raw.decode("utf-8", errors="replace"))
        finally:
            if handle is not None:
                await handle.close()
