"""
Structured Logging Configuration
=================================

structlog setup for the paper trader. Level, JSON output and the
optional log file come from config.settings unless passed in.
"""

import sys
import logging
from pathlib import Path
from typing import Optional

import structlog

from config.settings import settings

# Chatty third-party loggers kept at WARNING so trade events stay readable
QUIET_LOGGERS = ("aiohttp.access", "uvicorn.access")


def configure_logging(
    level: Optional[str] = None,
    json_output: Optional[bool] = None,
    log_file: Optional[str] = None
):
    """
    Configure structured logging for the paper trader.

    Args:
        level: Logging level, defaults to settings.log_level
        json_output: JSON lines instead of console output, defaults to settings.json_logs
        log_file: Extra file receiving the logs, defaults to settings.log_file
    """
    level = level or settings.log_level
    if json_output is None:
        json_output = settings.json_logs
    log_file = log_file or settings.log_file

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper(), logging.INFO),
        handlers=handlers,
        force=True
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    processors = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso" if json_output else "%H:%M:%S", utc=json_output),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if json_output:
        # One object per line, alongside the CSV trade log
        processors += [structlog.processors.UnicodeDecoder(), structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None):
    """structlog logger bound to name."""
    return structlog.get_logger(name)
