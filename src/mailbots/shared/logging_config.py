"""
Logging configuration for MailBots.

Provides structured logging with per-webhook correlation (request id, event
name and the listener currently running), centralized configuration, and
multiple output formats for different environments.
"""

import json
import logging
import sys
import traceback
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union
from uuid import uuid4

import structlog

from .config import LogFormat, Settings


# Context variables for correlation tracking
request_id: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
event_name: ContextVar[Optional[str]] = ContextVar('event_name', default=None)
listener_name: ContextVar[Optional[str]] = ContextVar('listener_name', default=None)

# LogRecord attributes that must not be copied into JSON output twice
_RESERVED_ATTRS = set(vars(logging.LogRecord('', 0, '', 0, '', (), None))) | {'message', 'asctime'}


class CorrelationFilter(logging.Filter):
    """Add webhook correlation context to log records."""

    def filter(self, record):
        record.request_id = getattr(record, 'request_id', None) or request_id.get() or 'no-request'
        record.event = getattr(record, 'event', None) or event_name.get() or 'none'
        record.listener = getattr(record, 'listener', None) or listener_name.get() or 'none'
        return True


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(self, include_extra=True):
        super().__init__()
        self.include_extra = include_extra

    def format(self, record):
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'request_id': getattr(record, 'request_id', 'no-request'),
            'event': getattr(record, 'event', 'none'),
            'listener': getattr(record, 'listener', 'none'),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if record.exc_info:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': traceback.format_exception(*record.exc_info)
            }

        if self.include_extra:
            for key, value in record.__dict__.items():
                if key in log_entry or key in _RESERVED_ATTRS or key.startswith('_'):
                    continue
                try:
                    json.dumps(value)
                    log_entry[key] = value
                except (TypeError, ValueError):
                    log_entry[key] = str(value)

        return json.dumps(log_entry, default=str)


class ColoredFormatter(logging.Formatter):
    """Colored formatter for console output."""

    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[35m',   # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        color = self.COLORS.get(record.levelname, '')
        formatted = super().format(record)
        correlation_info = f"[{str(getattr(record, 'request_id', 'no-request'))[:8]}]"
        event_info = f"[{getattr(record, 'event', 'none')}]"
        return f"{color}{formatted}{self.RESET} {correlation_info} {event_info}"


class LoggingConfig:
    """Centralized logging configuration."""

    DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    THIRD_PARTY_LEVELS = {
        'uvicorn': logging.WARNING,
        'uvicorn.access': logging.WARNING,
        'fastapi': logging.WARNING,
        'httpx': logging.WARNING,
    }

    @classmethod
    def build_formatter(cls, format_type: Union[str, LogFormat]) -> logging.Formatter:
        format_type = LogFormat(format_type)
        if format_type == LogFormat.JSON:
            return JSONFormatter()
        if format_type == LogFormat.COLORED:
            return ColoredFormatter(cls.DEFAULT_FORMAT)
        return logging.Formatter(cls.DEFAULT_FORMAT)

    @classmethod
    def setup_logging(
        cls,
        level: Union[str, int] = logging.INFO,
        format_type: Union[str, LogFormat] = LogFormat.COLORED,
        log_file: Optional[str] = None,
        console_output: bool = True,
    ):
        """
        Setup logging for stdlib and structlog loggers.

        Args:
            level: Logging level
            format_type: 'json', 'colored', or 'standard'
            log_file: Optional log file path (always JSON)
            console_output: Enable console output
        """
        if log_file:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)

        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        root_logger.handlers.clear()

        correlation_filter = CorrelationFilter()

        if console_output:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(level)
            console_handler.setFormatter(cls.build_formatter(format_type))
            console_handler.addFilter(correlation_filter)
            root_logger.addHandler(console_handler)

        if log_file:
            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(level)
            file_handler.setFormatter(JSONFormatter())
            file_handler.addFilter(correlation_filter)
            root_logger.addHandler(file_handler)

        for logger_name, logger_level in cls.THIRD_PARTY_LEVELS.items():
            logging.getLogger(logger_name).setLevel(logger_level)

        cls.configure_structlog()

        structlog.get_logger(__name__).info(
            "Logging system initialized",
            level=str(level),
            format_type=LogFormat(format_type).value,
            log_file=log_file,
        )

    @staticmethod
    def configure_structlog():
        """Send structlog events through stdlib handlers so formats stay uniform."""
        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.contextvars.merge_contextvars,
                structlog.stdlib.PositionalArgumentsFormatter(),
                structlog.processors.format_exc_info,
                structlog.stdlib.render_to_log_kwargs,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )


class CorrelationContext:
    """Context manager binding one webhook's identity to everything it logs."""

    def __init__(self, request_id_value: Optional[str] = None, event_value: Optional[str] = None):
        self.request_id_value = request_id_value or str(uuid4())
        self.event_value = event_value
        self.request_token = None
        self.event_token = None

    def __enter__(self):
        self.request_token = request_id.set(self.request_id_value)
        if self.event_value:
            self.event_token = event_name.set(self.event_value)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.request_token:
            request_id.reset(self.request_token)
        if self.event_token:
            event_name.reset(self.event_token)


def get_request_id() -> Optional[str]:
    """Get current request ID."""
    return request_id.get()


def get_event_name() -> Optional[str]:
    """Get the event of the webhook being handled."""
    return event_name.get()


def get_listener_name() -> Optional[str]:
    """Get the name of the listener currently running."""
    return listener_name.get()


def initialize_logging(settings: Settings):
    """Initialize logging from bot settings."""
    monitoring = settings.monitoring
    LoggingConfig.setup_logging(
        level=monitoring.log_level.value,
        format_type=monitoring.log_format,
        log_file=monitoring.log_file,
        console_output=True,
    )
