"""
Logging setup and structured logging helpers for the scraper.
"""

import json
import logging
import logging.handlers
import os
import platform
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import psutil

from .config import LoggingConfig


class JSONFormatter(logging.Formatter):
    """Formats records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'thread': record.threadName,
        }

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        # Fields attached through ScrapeLogAdapter
        for key in ('url', 'domain', 'event_type', 'worker'):
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value

        return json.dumps(log_entry, ensure_ascii=False)


class ScrapeLogAdapter(logging.LoggerAdapter):
    """Logger adapter carrying fixed context such as a worker name."""

    def __init__(self, logger: logging.Logger, extra: Optional[Dict[str, Any]] = None):
        super().__init__(logger, extra or {})

    def process(self, msg, kwargs):
        kwargs['extra'] = {**self.extra, **kwargs.get('extra', {})}
        return msg, kwargs

    def log_url_event(self, level: int, url: str, message: str, domain: Optional[str] = None):
        """Log an event about a single URL."""
        extra = {'url': url, 'event_type': 'url_event'}
        if domain:
            extra['domain'] = domain
        self.log(level, message, extra=extra)


class NoisyLoggerFilter(logging.Filter):
    """Drops records from chatty third-party loggers."""

    def __init__(self, suppress_modules: Optional[list] = None):
        super().__init__()
        self.suppress_modules = suppress_modules or ['aiohttp.access', 'asyncio']

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.WARNING:
            return True
        return not any(record.name.startswith(module) for module in self.suppress_modules)


def setup_logging(config: Optional[LoggingConfig] = None, enable_json: bool = False) -> logging.Logger:
    """
    Configure the root logger with a console handler and a rotating file handler.

    Args:
        config: Logging configuration; defaults are used when omitted
        enable_json: Emit JSON lines instead of the configured text format

    Returns:
        The configured root logger
    """
    config = config or LoggingConfig()

    log_file = Path(config.file)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(config.level.upper())
    root_logger.handlers.clear()

    formatter = JSONFormatter() if enable_json else logging.Formatter(config.format)
    noise_filter = NoisyLoggerFilter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(noise_filter)
    root_logger.addHandler(console_handler)

    file_handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=20 * 1024 * 1024,
        backupCount=3,
        encoding='utf-8'
    )
    file_handler.setFormatter(formatter)
    file_handler.addFilter(noise_filter)
    root_logger.addHandler(file_handler)

    for logger_name in ('aiohttp', 'asyncio'):
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    root_logger.info(f"Logging initialized (level={config.level}, file={log_file}, json={enable_json})")
    return root_logger


def get_scrape_logger(name: str, **context) -> ScrapeLogAdapter:
    """Get a logger that adds `context` to every record."""
    return ScrapeLogAdapter(logging.getLogger(name), context)


def log_system_info():
    """Log host information useful when sizing the worker pool."""
    logger = logging.getLogger(__name__)

    logger.info(f"Platform: {platform.platform()}")
    logger.info(f"Python version: {sys.version.split()[0]}")
    logger.info(f"CPU cores: {psutil.cpu_count()} (os.cpu_count={os.cpu_count()})")
    logger.info(f"Memory: {psutil.virtual_memory().total / 1024**3:.1f} GB")
