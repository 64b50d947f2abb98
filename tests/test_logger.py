"""Tests for log level mapping and terminal sanitisation."""
import io
import logging

import pytest

from reprieve.utils import logger as logger_module
from reprieve.utils.logger import configure_logging, level_for, sanitize_for_terminal


@pytest.fixture
def reprieve_logger():
    logger = logging.getLogger("reprieve")
    yield logger
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.mark.parametrize("verbosity,quiet,expected", [
    (0, False, logging.WARNING),
    (1, False, logging.INFO),
    (2, False, logging.DEBUG),
    (5, False, logging.DEBUG),
    (2, True, logging.ERROR),
])
def test_level_for(verbosity, quiet, expected):
    assert level_for(verbosity, quiet) == expected


def test_level_for_uses_configured_default():
    assert level_for(0, default="ERROR") == logging.ERROR


def test_configure_logging_replaces_previous_handler(reprieve_logger):
    first, second = io.StringIO(), io.StringIO()

    configure_logging(stream=first)
    configure_logging(verbosity=1, stream=second)
    logging.getLogger("reprieve.reaper.store").info("moved it")

    assert first.getvalue() == ""
    assert second.getvalue() == "INFO reprieve.reaper.store: moved it\n"
    assert len(reprieve_logger.handlers) == 1


def test_quiet_logging_drops_warnings(reprieve_logger):
    stream = io.StringIO()

    configure_logging(verbosity=2, quiet=True, stream=stream)
    logging.getLogger("reprieve.reaper.store").warning("skipped")

    assert stream.getvalue() == ""


def test_icons_fall_back_to_ascii(monkeypatch):
    monkeypatch.setattr(logger_module, "is_utf8_capable", lambda: False)

    assert sanitize_for_terminal("✓ done ✗ failed ⚠ skipped") == "[OK] done [FAIL] failed [WARN] skipped"


def test_icons_kept_on_utf8_terminals(monkeypatch):
    monkeypatch.setattr(logger_module, "is_utf8_capable", lambda: True)

    assert sanitize_for_terminal("✓ done") == "✓ done"
