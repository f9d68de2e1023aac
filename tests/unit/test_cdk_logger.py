"""Unit tests for the CDK logging facade."""

import logging

import pytest

from cdk_logger import CDKLogger, get_logger


@pytest.fixture(autouse=True)
def restore_level():
    level = CDKLogger.get_level()
    yield
    CDKLogger.set_level(level)


def test_get_logger_returns_same_instance() -> None:
    assert get_logger("Tests") is get_logger("Tests")


def test_set_level_applies_to_existing_loggers() -> None:
    logger = get_logger("LevelTests")
    CDKLogger.set_level("debug")
    assert logger.level == logging.DEBUG
    CDKLogger.set_level(logging.WARNING)
    assert logger.level == logging.WARNING


def test_new_loggers_inherit_current_level() -> None:
    CDKLogger.set_level("ERROR")
    assert get_logger("LateLogger").level == logging.ERROR


def test_unknown_level_is_rejected() -> None:
    with pytest.raises(ValueError, match="Unknown log level"):
        CDKLogger.set_level("chatty")
