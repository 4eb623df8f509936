"""
Centralized logging configuration.
Structured logging for audit trails, request timing and debugging.
"""
import logging
import logging.config
import json
import sys
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from pathlib import Path

LOGGER_NAMESPACE = "adplatform"

# Context keys whose values never reach a log sink in clear
SENSITIVE_KEYS = frozenset({"api_key", "authorization", "stripe_signature", "signature", "secret_key", "webhook_secret"})
SLOW_OPERATION_MS = 1000.0


def redact(data: Dict[str, Any]) -> Dict[str, Any]:
    """Mask sensitive values, keeping a short prefix so keys stay identifiable."""
    masked = {}
    for key, value in data.items():
        if key.lower() in SENSITIVE_KEYS and value:
            text = str(value)
            masked[key] = f"{text[:4]}***" if len(text) > 8 else "***"
        else:
            masked[key] = value
    return masked


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for the rotating file handler.
    One object per line so log shippers can parse without a grammar.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        log_entry.update(getattr(record, "extra_data", None) or {})
        log_entry["thread"] = record.threadName

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class StructuredLogger:
    """
    Thin wrapper over a stdlib logger that takes keyword context.

        logger.info("Payment marked paid", payment_id=12, session_id="cs_...")
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _log_with_extra(self, level: int, message: str, exc_info: bool = False, **kwargs):
        extra_data = redact({k: v for k, v in kwargs.items() if v is not None})
        self.logger.log(level, message, exc_info=exc_info, extra={"extra_data": extra_data})

    def info(self, message: str, **kwargs):
        self._log_with_extra(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._log_with_extra(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        self._log_with_extra(logging.ERROR, message, **kwargs)

    def debug(self, message: str, **kwargs):
        self._log_with_extra(logging.DEBUG, message, **kwargs)


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    enable_console: bool = True
) -> None:
    """
    Setup application logging configuration.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path for JSON log output
        enable_console: Whether to log to stdout
    """
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    handled_loggers = [LOGGER_NAMESPACE, "uvicorn", "sqlalchemy.engine"]
    config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": JSONFormatter,
            },
            "standard": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S"
            }
        },
        "handlers": {},
        "loggers": {
            LOGGER_NAMESPACE: {"level": log_level, "handlers": [], "propagate": False},
            "uvicorn": {"level": "INFO", "handlers": [], "propagate": False},
            # SQL echo is noise outside of debugging sessions
            "sqlalchemy.engine": {"level": "WARNING", "handlers": [], "propagate": False},
        },
        "root": {
            "level": log_level,
            "handlers": []
        }
    }

    if enable_console:
        config["handlers"]["console"] = {
            "class": "logging.StreamHandler",
            "stream": sys.stdout,
            "formatter": "standard",
            "level": log_level
        }

    if log_file:
        config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": log_file,
            "maxBytes": 10 * 1024 * 1024,  # 10MB
            "backupCount": 5,
            "formatter": "json",
            "level": log_level
        }

    for handler_name in config["handlers"]:
        for logger_name in handled_loggers:
            config["loggers"][logger_name]["handlers"].append(handler_name)
        config["root"]["handlers"].append(handler_name)

    logging.config.dictConfig(config)


def get_logger(name: str) -> StructuredLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)
    """
    if name.startswith(LOGGER_NAMESPACE):
        return StructuredLogger(name)
    return StructuredLogger(f"{LOGGER_NAMESPACE}.{name}")


def log_business_event(
    event_type: str,
    details: Dict[str, Any],
    user_id: Optional[int] = None,
    request_id: Optional[str] = None
) -> None:
    """
    Log business events for audit trails.

    Args:
        event_type: e.g. 'campaign_status_changed', 'checkout_opened', 'payment_refunded'
        details: Event-specific context, redacted like any other log call
        user_id: Acting user, None for processor-driven events
        request_id: Request ID for tracing
    """
    get_logger("audit").info(
        f"Business event: {event_type}",
        event_type=event_type,
        user_id=user_id,
        request_id=request_id,
        **details,
    )


def log_performance(
    operation: str,
    duration_ms: float,
    additional_data: Optional[Dict[str, Any]] = None
) -> None:
    """Log an operation timing; anything slower than SLOW_OPERATION_MS is a warning."""
    perf_logger = get_logger("performance")
    data = dict(additional_data or {})
    data["duration_ms"] = round(duration_ms, 2)
    if duration_ms >= SLOW_OPERATION_MS:
        perf_logger.warning(f"Slow operation: {operation}", operation=operation, **data)
    else:
        perf_logger.info(f"Performance: {operation}", operation=operation, **data)
