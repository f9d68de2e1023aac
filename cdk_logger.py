"""
Logging facade for the CDK application.

Every module asks for a named logger through ``get_logger``; the level is set
once for all of them by ``CDKLogger.set_level`` from ``app.py``.
"""

import logging
import sys
from typing import Dict, Union

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_LEVEL = logging.INFO


class CDKLogger:
    """Owns the shared handler and level of every logger handed out."""

    _level: int = DEFAULT_LEVEL
    _loggers: Dict[str, logging.Logger] = {}
    _handler: logging.Handler = None

    @classmethod
    def _get_handler(cls) -> logging.Handler:
        if cls._handler is None:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
            cls._handler = handler
        return cls._handler

    @classmethod
    def set_level(cls, level: Union[str, int]) -> None:
        """Set the level of all existing and future loggers."""
        if isinstance(level, str):
            resolved = logging.getLevelName(level.upper())
            if not isinstance(resolved, int):
                raise ValueError(f"Unknown log level: {level}")
            level = resolved
        cls._level = level
        for logger in cls._loggers.values():
            logger.setLevel(level)

    @classmethod
    def get_level(cls) -> int:
        return cls._level

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        if name in cls._loggers:
            return cls._loggers[name]

        logger = logging.getLogger(f"cdk.{name}")
        logger.setLevel(cls._level)
        logger.propagate = False
        if cls._get_handler() not in logger.handlers:
            logger.addHandler(cls._get_handler())
        cls._loggers[name] = logger
        return logger


def get_logger(name: str) -> logging.Logger:
    """Return the shared CDK logger registered under ``name``."""
    return CDKLogger.get_logger(name)
