"""
Structured logging configuration for Notify.

This module provides logging setup with:
- JSON formatted logs for production
- Human-readable logs for development
- Request correlation IDs
- Log rotation and different log levels
- Flask request lifecycle integration
"""

import logging
import logging.handlers
import os
import sys
import uuid
from datetime import datetime, timezone
from logging import Logger
from typing import Any, Dict, Optional

import structlog
from flask import Flask, g, has_request_context, request
from pythonjsonlogger import jsonlogger

SERVICE_NAME = "notify"
SERVICE_VERSION = "1.0.0"

# LogRecord attributes that are not user supplied extras
_RESERVED_ATTRS = frozenset(
    [
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "exc_info",
        "exc_text",
        "stack_info",
        "message",
        "asctime",
    ]
)


class RequestContextFilter(logging.Filter):
    """Add request context information to log records."""

    def filter(self, record):
        if has_request_context():
            record.correlation_id = getattr(g, "correlation_id", "no-request")
            record.request_method = getattr(request, "method", "UNKNOWN")
            record.request_path = getattr(request, "path", "unknown")
            record.remote_addr = getattr(request, "remote_addr", "unknown")
        else:
            record.correlation_id = "no-request"
            record.request_method = "SYSTEM"
            record.request_path = "system"
            record.remote_addr = "system"

        return True


class CustomJSONFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that stamps service metadata on every record."""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]):
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname.upper()
        log_record["name"] = record.name
        log_record["service"] = SERVICE_NAME
        log_record["version"] = SERVICE_VERSION

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and key not in log_record:
                log_record[key] = value


class ColoredFormatter(logging.Formatter):
    """Colored formatter for development console output."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
        "RESET": "\033[0m",
    }

    def format(self, record):
        level_color = self.COLORS.get(record.levelname, self.COLORS["RESET"])
        reset_color = self.COLORS["RESET"]

        formatted = super().format(record)

        return formatted.replace(record.levelname, f"{level_color}{record.levelname}{reset_color}", 1)


class StructuredLogger:
    """Main structured logger class."""

    def __init__(self, name: str = "notify"):
        self.name = name
        self.logger: Optional[Logger] = None
        self._configured = False

    @property
    def configured(self) -> bool:
        return self._configured

    def configure(self, app: Optional[Flask] = None, **kwargs):
        """Configure the structured logger."""
        if self._configured:
            return self.logger

        if app:
            log_level = app.config.get("LOG_LEVEL", "INFO")
            log_format = app.config.get("LOG_FORMAT", "development")
            log_file = app.config.get("LOG_FILE", "logs/notify.log")
            max_bytes = app.config.get("LOG_MAX_BYTES", 10 * 1024 * 1024)
            backup_count = app.config.get("LOG_BACKUP_COUNT", 5)
            enable_console = app.config.get("LOG_ENABLE_CONSOLE", True)
        else:
            log_level = kwargs.get("log_level", os.getenv("LOG_LEVEL", "INFO"))
            log_format = kwargs.get("log_format", os.getenv("LOG_FORMAT", "development"))
            log_file = kwargs.get("log_file", os.getenv("LOG_FILE", "logs/notify.log"))
            max_bytes = kwargs.get("max_bytes", int(os.getenv("LOG_MAX_BYTES", "10485760")))
            backup_count = kwargs.get("backup_count", int(os.getenv("LOG_BACKUP_COUNT", "5")))
            enable_console = kwargs.get("enable_console", os.getenv("LOG_ENABLE_CONSOLE", "true").lower() == "true")

        self.logger = logging.getLogger(self.name)
        self.logger.setLevel(getattr(logging, log_level.upper()))
        self.logger.handlers.clear()

        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir, exist_ok=True)

        context_filter = RequestContextFilter()

        if log_format.lower() == "json":
            self._configure_json_logging(log_file, max_bytes, backup_count, enable_console, context_filter)
        else:
            self._configure_development_logging(log_file, max_bytes, backup_count, enable_console, context_filter)

        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.stdlib.PositionalArgumentsFormatter(),
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.UnicodeDecoder(),
                structlog.processors.JSONRenderer()
                if log_format.lower() == "json"
                else structlog.dev.ConsoleRenderer(colors=False),
            ],
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

        self._configured = True

        self.logger.info(
            "Structured logging configured successfully",
            extra={
                "log_level": log_level,
                "log_format": log_format,
                "log_file": log_file,
                "enable_console": enable_console,
            },
        )

        return self.logger

    def _configure_json_logging(
        self,
        log_file: str,
        max_bytes: int,
        backup_count: int,
        enable_console: bool,
        context_filter: RequestContextFilter,
    ):
        """Configure JSON logging for production."""
        json_formatter = CustomJSONFormatter("%(message)s")

        file_handler = logging.handlers.RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count)
        file_handler.setFormatter(json_formatter)
        file_handler.addFilter(context_filter)
        assert self.logger is not None
        self.logger.addHandler(file_handler)

        if enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setFormatter(json_formatter)
            console_handler.addFilter(context_filter)
            self.logger.addHandler(console_handler)

    def _configure_development_logging(
        self,
        log_file: str,
        max_bytes: int,
        backup_count: int,
        enable_console: bool,
        context_filter: RequestContextFilter,
    ):
        """Configure human-readable logging for development."""
        dev_format = (
            "%(asctime)s [%(levelname)s] %(name)s:%(lineno)d "
            "[%(correlation_id)s] %(request_method)s %(request_path)s - %(message)s"
        )

        file_handler = logging.handlers.RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count)
        file_handler.setFormatter(logging.Formatter(dev_format))
        file_handler.addFilter(context_filter)
        assert self.logger is not None
        self.logger.addHandler(file_handler)

        if enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setFormatter(ColoredFormatter(dev_format))
            console_handler.addFilter(context_filter)
            self.logger.addHandler(console_handler)

    def get_logger(self, name: Optional[str] = None) -> logging.Logger:
        """Get a logger instance."""
        if not self._configured:
            raise RuntimeError("Logger not configured. Call configure() first.")

        if name:
            return logging.getLogger(f"{self.name}.{name}")

        if self.logger is None:
            raise RuntimeError("Logger not properly initialized.")
        return self.logger


# Global logger instance
structured_logger = StructuredLogger()


def setup_flask_logging(app: Flask):
    """Set up Flask application logging with request correlation."""
    logger = structured_logger.configure(app)

    app.logger.handlers.clear()
    app.logger.addHandler(logger.handlers[0] if logger.handlers else logging.NullHandler())
    app.logger.setLevel(logger.level)

    @app.before_request
    def before_request():
        """Generate correlation ID for each request."""
        g.correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())[:8]
        g.request_start_time = datetime.now(timezone.utc)

        logger.info(
            "Request started",
            extra={
                "event": "request_start",
                "method": request.method,
                "path": request.path,
                "remote_addr": request.remote_addr,
                "content_length": request.content_length,
            },
        )

    @app.after_request
    def after_request(response):
        """Log request completion."""
        start_time = getattr(g, "request_start_time", None)
        duration = (datetime.now(timezone.utc) - start_time).total_seconds() * 1000 if start_time else 0.0

        logger.info(
            "Request completed",
            extra={
                "event": "request_end",
                "status_code": response.status_code,
                "duration_ms": round(duration, 2),
            },
        )

        response.headers["X-Correlation-ID"] = getattr(g, "correlation_id", "no-request")
        return response

    @app.teardown_request
    def teardown_logging(exception=None):
        if exception:
            logger.error(
                "Request failed with exception",
                extra={
                    "event": "request_exception",
                    "exception_type": type(exception).__name__,
                    "exception_message": str(exception),
                },
                exc_info=(type(exception), exception, exception.__traceback__),
            )


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Get a logger instance."""
    # Auto-configure with defaults if not already configured
    if not structured_logger.configured:
        structured_logger.configure()
    return structured_logger.get_logger(name)


def log_store_operation(operation: str, kind: Optional[str] = None, **kwargs):
    """Helper function to log entity store operations."""
    get_logger("store").debug(
        f"Store operation: {operation}",
        extra={"event": "store_operation", "operation": operation, "kind": kind, **kwargs},
    )


def log_security_event(event_type: str, details: Dict[str, Any]):
    """Helper function to log security events."""
    get_logger("security").warning(
        f"Security event: {event_type}", extra={"event": "security_event", "event_type": event_type, **details}
    )


def log_provider_call(provider: str, operation: str, success: bool, **kwargs):
    """Log the outcome of a call to an external provider."""
    logger = get_logger("providers")
    level = logging.INFO if success else logging.WARNING
    logger.log(
        level,
        f"Provider call: {provider}.{operation} {'ok' if success else 'failed'}",
        extra={"event": "provider_call", "provider": provider, "operation": operation, "success": success, **kwargs},
    )


def log_business_event(event_type: str, entity_type: Optional[str] = None, entity_id: Optional[str] = None, **kwargs):
    """Helper function to log business events."""
    get_logger("business").info(
        f"Business event: {event_type}",
        extra={
            "event": "business_event",
            "event_type": event_type,
            "entity_type": entity_type,
            "entity_id": entity_id,
            **kwargs,
        },
    )
