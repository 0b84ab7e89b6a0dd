"""
Logging setup and crawler-specific log helpers.
"""

import logging
import logging.handlers
import json
import platform
import sys
from pathlib import Path
from typing import Dict, Any, Optional, Union
from datetime import datetime, timezone

import psutil

from .config import LoggingConfig


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
            'thread': record.threadName
        }

        # Add exception info if present
        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        # Add extra fields
        if hasattr(record, 'extra_fields'):
            log_entry.update(record.extra_fields)

        return json.dumps(log_entry, ensure_ascii=False)


class CrawlerLogAdapter(logging.LoggerAdapter):
    """Logger adapter that attaches crawler context as `extra_fields`."""

    def __init__(self, logger: logging.Logger, extra: Optional[Dict[str, Any]] = None):
        super().__init__(logger, extra or {})

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        """Merge adapter context with per-call fields."""
        extra = kwargs.pop('extra', {})
        fields = dict(self.extra)
        fields.update(extra.pop('extra_fields', {}))
        extra['extra_fields'] = fields
        kwargs['extra'] = extra
        return msg, kwargs

    def log_url_event(self, level: int, url: str, message: str, **kwargs):
        """Log URL-specific events."""
        kwargs['extra'] = {'extra_fields': {'url': url, 'event_type': 'url_event'}}
        self.log(level, message, **kwargs)

    def log_crawler_stat(self, stat_name: str, value: Any, **kwargs):
        """Log crawler statistics."""
        kwargs['extra'] = {'extra_fields': {
            'stat_name': stat_name,
            'stat_value': value,
            'event_type': 'crawler_stat'
        }}
        self.info(f"Stat: {stat_name} = {value}", **kwargs)


class PerformanceFilter(logging.Filter):
    """Filter to suppress noisy third-party logs."""

    def __init__(self, suppress_modules: Optional[list] = None):
        super().__init__()
        self.suppress_modules = suppress_modules or [
            'aiohttp.access',
            'urllib3.connectionpool',
        ]

    def filter(self, record: logging.LogRecord) -> bool:
        """Filter out noisy log records."""
        if any(record.name.startswith(module) for module in self.suppress_modules):
            return False

        if record.levelno == logging.DEBUG:
            if 'connection pool' in record.getMessage().lower():
                return False

        return True


def setup_logging(config: Union[LoggingConfig, Dict[str, Any]],
                  enable_json: Optional[bool] = None,
                  enable_performance_filtering: bool = True) -> logging.Logger:
    """
    Setup logging for the crawler.

    Args:
        config: LoggingConfig, or a dictionary with the same keys
        enable_json: Force JSON formatted logging on or off; defaults to
            the config's json_format
        enable_performance_filtering: Enable filtering of noisy logs

    Returns:
        Configured root logger
    """
    if isinstance(config, dict):
        config = LoggingConfig(**config)
    if enable_json is None:
        enable_json = config.json_format

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.level.upper()))

    # Clear existing handlers
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    if enable_json:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(config.format)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)
    if enable_performance_filtering:
        console_handler.addFilter(PerformanceFilter())
    root_logger.addHandler(console_handler)

    if config.file:
        log_file = Path(config.file)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        # File handler with rotation
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=50 * 1024 * 1024,  # 50MB
            backupCount=5,
            encoding='utf-8'
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        if enable_performance_filtering:
            file_handler.addFilter(PerformanceFilter())
        root_logger.addHandler(file_handler)

        error_log_file = log_file.parent / 'errors.log'
        error_handler = logging.handlers.RotatingFileHandler(
            error_log_file,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=3,
            encoding='utf-8'
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(formatter)
        root_logger.addHandler(error_handler)

    third_party_loggers = {
        'aiohttp': logging.WARNING,
        'urllib3': logging.WARNING,
        'asyncio': logging.WARNING,
    }

    for logger_name, level in third_party_loggers.items():
        logging.getLogger(logger_name).setLevel(level)

    root_logger.info("Logging system initialized")
    root_logger.info(f"Log file: {config.file or 'disabled'}")
    root_logger.info(f"Log level: {config.level}")

    return root_logger


def get_crawler_logger(name: str, **extra_context) -> CrawlerLogAdapter:
    """
    Get a crawler-specific logger with additional context.

    Args:
        name: Logger name
        **extra_context: Additional context fields to include in all log messages

    Returns:
        CrawlerLogAdapter instance
    """
    logger = logging.getLogger(name)
    return CrawlerLogAdapter(logger, extra_context)


def log_system_info():
    """Log platform and CPU information relevant to crawl parallelism."""
    logger = logging.getLogger(__name__)

    logger.info("=== SYSTEM INFORMATION ===")
    logger.info(f"Platform: {platform.platform()}")
    logger.info(f"Python version: {sys.version.split()[0]}")
    logger.info(f"CPU cores: {psutil.cpu_count()} logical, {psutil.cpu_count(logical=False)} physical")
    logger.info(f"Memory: {psutil.virtual_memory().total / 1024**3:.1f} GB")
