"""Tests for library logging setup."""

import logging
from collections.abc import Iterator

import pytest

from guest_bridge import _logging, boot, capture, channel, subprocess_utils, target
from guest_bridge._logging import LIBRARY_LOGGER_NAME, _NonBlockingHandler, configure_logging


@pytest.fixture(autouse=True)
def reset_library_logging() -> Iterator[None]:
    yield
    lib_logger = logging.getLogger(LIBRARY_LOGGER_NAME)
    for handler in list(lib_logger.handlers):
        if isinstance(handler, _NonBlockingHandler):
            lib_logger.removeHandler(handler)
            handler.close()
    lib_logger.setLevel(logging.NOTSET)


def _queue_handlers() -> list[logging.Handler]:
    return [h for h in logging.getLogger(LIBRARY_LOGGER_NAME).handlers if isinstance(h, _NonBlockingHandler)]


@pytest.mark.parametrize("module", [boot, channel, capture, target, subprocess_utils])
def test_module_loggers_are_documented(module: object) -> None:
    name = module.logger.name  # type: ignore[attr-defined]
    assert name.startswith(f"{LIBRARY_LOGGER_NAME}.")
    assert name.rsplit(".", 1)[1] in (_logging.__doc__ or "")


def test_library_only_has_null_handler_by_default() -> None:
    handlers = logging.getLogger(LIBRARY_LOGGER_NAME).handlers
    assert any(isinstance(h, logging.NullHandler) for h in handlers)
    assert _queue_handlers() == []


def test_configure_is_idempotent() -> None:
    configure_logging(level=logging.DEBUG)
    configure_logging(level="WARNING")
    assert len(_queue_handlers()) == 1
    assert logging.getLogger(LIBRARY_LOGGER_NAME).level == logging.WARNING


def test_quiet_wins_over_level() -> None:
    configure_logging(level=logging.DEBUG, quiet=True)
    assert logging.getLogger(LIBRARY_LOGGER_NAME).level == logging.ERROR


def test_full_queue_drops_records() -> None:
    configure_logging(level=logging.INFO)
    handler = _queue_handlers()[0]
    handler._listener.stop()  # type: ignore[attr-defined]
    record = logging.makeLogRecord({"msg": "x", "levelno": logging.INFO})
    for _ in range(_logging._QUEUE_CAPACITY + 10):
        handler.enqueue(record)  # type: ignore[attr-defined]
    assert handler.queue.qsize() == _logging._QUEUE_CAPACITY  # type: ignore[attr-defined]
    handler._listener.start()  # type: ignore[attr-defined]
