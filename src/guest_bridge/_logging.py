"""Logging for guest-bridge.

Who logs what:
- guest_bridge.boot: boot wait start, "Still booting... Ns elapsed"
  heartbeats (about one per 100s of polling), READY, and the FAILED error
  with the last lines of target output
- guest_bridge.channel: setup steps, relay reuse, a warning when no relay
  process is visible, self-test outcome
- guest_bridge.capture: debug line per capture that ends without its end
  marker, warning when a command could not be sent
- guest_bridge.target / subprocess_utils: one debug line per docker call,
  warning when the control plane cannot be queried

The library only installs a NullHandler.  GUEST_BRIDGE_LOG_LEVEL sets the
level at import time; the CLI calls configure_logging(), which hands
records to a bounded queue drained by a daemon thread through
click.echo(err=True).  Boot polling and capture scanning never block on
stderr: when the queue is full, records are dropped.

CLI output format:
    WARNING [2026-02-25 10:02:54] guest_bridge.channel - message
"""

import contextlib
import logging
import logging.handlers
import os
import queue

import click

LIBRARY_LOGGER_NAME: str = "guest_bridge"

logging.getLogger(LIBRARY_LOGGER_NAME).addHandler(logging.NullHandler())

# Honor GUEST_BRIDGE_LOG_LEVEL env var (e.g. "DEBUG", "WARNING", "ERROR")
_env_level = os.environ.get("GUEST_BRIDGE_LOG_LEVEL", "").strip().upper()
_env_level_value = logging.getLevelNamesMapping().get(_env_level)
if _env_level_value:  # excludes NOTSET (0) and missing keys (None)
    logging.getLogger(LIBRARY_LOGGER_NAME).setLevel(_env_level_value)

_FMT = "%(levelname)s [%(asctime)s] %(name)s - %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

_QUEUE_CAPACITY = 1024


class _ClickHandler(logging.Handler):
    """Writes formatted records to stderr via click.echo with dim styling.

    Runs on the QueueListener's daemon thread.  click.echo() strips ANSI
    codes when stderr is not a TTY.
    """

    def __init__(self) -> None:
        super().__init__()
        self.formatter = logging.Formatter(fmt=_FMT, datefmt=_DATEFMT)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            click.echo(click.style(msg, dim=True), err=True)
        except BlockingIOError:
            pass  # Stderr buffer full -- drop
        except Exception:  # noqa: BLE001
            self.handleError(record)


class _NonBlockingHandler(logging.handlers.QueueHandler):
    """Queue-backed handler that never blocks the caller."""

    def __init__(self) -> None:
        q: queue.Queue[logging.LogRecord] = queue.Queue(maxsize=_QUEUE_CAPACITY)
        super().__init__(q)
        self._listener = logging.handlers.QueueListener(q, _ClickHandler(), respect_handler_level=False)
        self._listener.start()

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        """Same-process queue, no pickling."""
        return record

    def enqueue(self, record: logging.LogRecord) -> None:
        with contextlib.suppress(queue.Full):
            self.queue.put_nowait(record)

    def close(self) -> None:
        self._listener.stop()
        super().close()


def get_logger(name: str) -> logging.Logger:
    """Get a logger for the given module name."""
    return logging.getLogger(name)


def configure_logging(
    *,
    level: int | str | None = None,
    quiet: bool = False,
) -> None:
    """Configure library logging for the CLI.

    Idempotent: adds at most one _NonBlockingHandler, then sets the level.

    Args:
        level: Log level (e.g. logging.DEBUG, "WARNING"). Overrides env var.
        quiet: If True, set level to ERROR. Takes precedence over level.
    """
    lib_logger = logging.getLogger(LIBRARY_LOGGER_NAME)

    if not any(isinstance(h, _NonBlockingHandler) for h in lib_logger.handlers):
        lib_logger.addHandler(_NonBlockingHandler())

    if quiet:
        lib_logger.setLevel(logging.ERROR)
    elif level is not None:
        lib_logger.setLevel(level)
