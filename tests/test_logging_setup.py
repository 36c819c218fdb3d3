"""Tests for logging setup."""

import logging

import pytest

from folder_sync.logging_setup import (
    LOGGER_NAME,
    SeverityFilter,
    get_logger,
    parse_severities,
    setup_logging,
)


@pytest.fixture
def reset_logger():
    """Restore the package logger after each test."""
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()


def test_parse_severities():
    assert parse_severities(["info", "ERROR"]) == {logging.INFO, logging.ERROR}


def test_parse_unknown_severity():
    with pytest.raises(ValueError):
        parse_severities(["debug"])


def test_severity_filter_mutes_independently():
    """Test that muting warnings keeps both informations and errors."""
    severity_filter = SeverityFilter([logging.WARNING])

    def record(level):
        return logging.LogRecord("x", level, __file__, 1, "msg", None, None)

    assert severity_filter.filter(record(logging.INFO)) is True
    assert severity_filter.filter(record(logging.WARNING)) is False
    assert severity_filter.filter(record(logging.ERROR)) is True

    severity_filter.unmute(logging.WARNING)
    severity_filter.mute(logging.ERROR)
    assert severity_filter.filter(record(logging.WARNING)) is True
    assert severity_filter.filter(record(logging.ERROR)) is False


def test_setup_logging_writes_file(tmp_path, reset_logger):
    """Test that messages reach the log file with the muted severity dropped."""
    log_file = tmp_path / "logs" / "sync.log"
    logger = setup_logging(
        str(log_file), "INFO", console=False, muted_levels={logging.WARNING}
    )

    logger.info("service started")
    logger.warning("something odd")
    logger.error("something broke")
    for handler in logger.handlers:
        handler.flush()

    content = log_file.read_text(encoding="utf-8")
    assert "service started" in content
    assert "something broke" in content
    assert "something odd" not in content


def test_setup_logging_replaces_handlers(tmp_path, reset_logger):
    """Test that calling setup twice does not duplicate handlers."""
    setup_logging(str(tmp_path / "a.log"), console=True)
    logger = setup_logging(str(tmp_path / "a.log"), console=True, rotation_enabled=False)

    assert len(logger.handlers) == 2
    assert get_logger() is logger


def test_console_only(reset_logger):
    logger = setup_logging(None, "DEBUG")

    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0], logging.StreamHandler)
