"""Structured logging configuration."""

import logging
import sys
from typing import Any

import structlog
from pythonjsonlogger import jsonlogger

from moai.config import Settings, get_settings


def setup_logging(settings: Settings | None = None) -> None:
    """Configure structured logging for the application."""
    settings = settings or get_settings()

    # Configure standard library logging
    log_level = getattr(logging, settings.log_level)

    if settings.log_format == "json":
        # JSON logging for production
        handler = logging.StreamHandler(sys.stdout)
        formatter = jsonlogger.JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"levelname": "level", "asctime": "timestamp"},
        )
        handler.setFormatter(formatter)
    else:
        # Human-readable logging for development
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    # Configure structlog
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer() if settings.log_format == "json"
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


class RequestLogger:
    """Specialized logger for the HTTP surface."""

    def __init__(self, component: str = "http"):
        self.component = component
        self.logger = get_logger(component)

    def log_request(
        self,
        method: str,
        path: str,
        status_code: int,
        duration_ms: float,
        client_ip: str | None = None,
        **kwargs: Any,
    ) -> None:
        """Log a completed request with timing."""
        log_data = {
            "component": self.component,
            "method": method,
            "path": path,
            "status_code": status_code,
            "duration_ms": round(duration_ms, 2),
        }

        if client_ip is not None:
            log_data["client_ip"] = client_ip

        log_data.update(kwargs)
        self.logger.info("http_request", **log_data)

    def log_rate_limited(
        self,
        tier: str,
        key: str,
        retry_after: int,
        **kwargs: Any,
    ) -> None:
        """Log a request rejected by the rate limiter."""
        self.logger.warning(
            "rate_limit_exceeded",
            component=self.component,
            tier=tier,
            key=key,
            retry_after=retry_after,
            **kwargs,
        )

    def log_error(
        self,
        error: str,
        path: str,
        **kwargs: Any,
    ) -> None:
        """Log an error raised while serving a request."""
        self.logger.error(
            "http_error",
            component=self.component,
            path=path,
            error=error,
            **kwargs,
        )
