"""Text matching over trailing windows of console and target output.

Pure functions shared by boot detection and command framing.  Console
output arrives from a serial line, so every line is normalized by
stripping carriage returns before it is inspected.
"""

from collections.abc import Iterable

from guest_bridge.constants import CONSOLE_WINDOW_LINES, READY_PHRASES


def normalize_line(line: str) -> str:
    """Strip carriage returns and the trailing newline."""
    return line.replace("\r", "").rstrip("\n")


def tail_lines(text: str, count: int) -> list[str]:
    """Return the last ``count`` normalized lines of ``text``.

    A trailing newline does not produce an empty final line.
    """
    if count <= 0 or not text:
        return []
    lines = text.replace("\r", "").split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return lines[-count:]


def match_ready(
    text: str,
    phrases: Iterable[str] = READY_PHRASES,
    window: int = CONSOLE_WINDOW_LINES,
) -> str | None:
    """Return the first ready phrase contained in the trailing window, or None.

    Matching is case-sensitive substring containment per line; the window is
    scanned newest line first.
    """
    phrases = tuple(phrases)
    for line in reversed(tail_lines(text, window)):
        for phrase in phrases:
            if phrase in line:
                return phrase
    return None


def contains_marker(line: str, marker: str) -> bool:
    """Exact substring containment of a framing marker."""
    return marker in line.replace("\r", "")
