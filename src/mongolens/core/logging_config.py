"""
Mongo Lens Logging Configuration
================================
Centralized logging configuration using loguru.

Provides:
  - configure_logging(): Setup function called at application startup
  - JSON log format when MONGOLENS_LOG_FORMAT=json environment variable is set
  - Interception of stdlib logging emitted by pymongo and the mcp SDK

All output goes to stderr: stdout carries the stdio protocol transport.

Usage:
    from mongolens.core.logging_config import configure_logging

    configure_logging(level="INFO", json_format=False)
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional

from loguru import logger

# Track if logging has been configured
_CONFIGURED = False

_NOISY_LOGGERS = ["pymongo", "pymongo.topology", "pymongo.connection", "mcp", "uvicorn"]


def configure_logging(
    level: Optional[str] = "INFO",
    json_format: Optional[bool] = None,
    *,
    sink: Optional[str] = None,
) -> None:
    """
    Configure loguru logging for Mongo Lens.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_format: If True, use JSON format. If None, check MONGOLENS_LOG_FORMAT.
        sink: Optional file path for log output. If None, logs to stderr.
    """
    global _CONFIGURED

    if json_format is None:
        json_format = os.environ.get("MONGOLENS_LOG_FORMAT", "").lower() == "json"

    if level is None:
        level = os.environ.get("MONGOLENS_LOG_LEVEL", "INFO")

    logger.remove()

    log_sink = sink if sink else sys.stderr

    if json_format:
        logger.add(
            log_sink,
            level=level.upper(),
            serialize=True,
            backtrace=True,
            diagnose=False,
        )
    else:
        format_str = (
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        )
        logger.add(
            log_sink,
            level=level.upper(),
            format=format_str,
            colorize=sink is None,
            backtrace=True,
            diagnose=False,
        )

    _intercept_standard_logging(level)

    _CONFIGURED = True
    logger.debug(f"Logging configured: level={level}, json_format={json_format}")


class InterceptHandler(logging.Handler):
    """Route stdlib log records into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            log_level = logger.level(record.levelname).name
        except ValueError:
            log_level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            log_level, record.getMessage()
        )


def _intercept_standard_logging(level: str) -> None:
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    # The driver logs every heartbeat at DEBUG; keep it at WARNING unless asked.
    driver_level = level.upper() if level.upper() == "DEBUG" else "WARNING"
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(driver_level)


def is_configured() -> bool:
    return _CONFIGURED


__all__ = ["configure_logging", "is_configured", "InterceptHandler", "logger"]
