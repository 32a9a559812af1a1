"""Logging configuration for the Checkout domain.

Structured logging via structlog on top of the standard library root logger.
Level and renderer follow the deployment environment. Checkout log lines carry
money and gateway details, so two checkout processors run before rendering:
secrets (merchant keys, API tokens) are masked and enum values (session
states, capture outcomes) are flattened to their wire strings.
"""

import logging
import logging.handlers
import os
import sys
from enum import Enum
from pathlib import Path

import structlog

_LEVELS = {
    "production": "INFO",
    "staging": "INFO",
    "development": "DEBUG",
    "test": "WARNING",
}

_SECRET_FIELDS = frozenset({"merchant_key", "api_token", "authorization", "razorpay_signature"})

_QUIET_LOGGERS = ("httpx", "httpcore", "asyncio", "protean")

_MAX_BYTES = 10 * 1024 * 1024


def _environment() -> str:
    return (os.getenv("ENV") or os.getenv("ENVIRONMENT") or os.getenv("PROTEAN_ENV") or "development").lower()


def get_log_level() -> str:
    """Get log level based on environment. ``LOG_LEVEL`` wins when set."""
    return os.getenv("LOG_LEVEL", _LEVELS.get(_environment(), "INFO"))


def _rotating_handler(path: Path, level) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        filename=path,
        maxBytes=_MAX_BYTES,
        backupCount=5,
        encoding="utf-8",
    )
    handler.setLevel(level)
    return handler


def setup_stdlib_logging() -> None:
    """Route everything through the root logger: stdout plus rotating files.

    File output goes to ``LOG_DIR`` (default ``logs``) and is skipped when
    ``LOG_TO_FILE`` is ``false``.
    """
    log_level = get_log_level()

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    root_logger.addHandler(console_handler)

    if os.getenv("LOG_TO_FILE", "true").lower() != "false":
        log_dir = Path(os.getenv("LOG_DIR", "logs"))
        log_dir.mkdir(exist_ok=True)
        root_logger.addHandler(_rotating_handler(log_dir / "checkout.log", log_level))
        root_logger.addHandler(_rotating_handler(log_dir / "checkout_error.log", logging.ERROR))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def mask_secrets(logger, method_name, event_dict):
    """Keep the last four characters of merchant keys and tokens, hide the rest."""
    for key in _SECRET_FIELDS.intersection(event_dict):
        value = event_dict[key]
        if value:
            text = str(value)
            event_dict[key] = f"***{text[-4:]}" if len(text) > 8 else "***"
    return event_dict


def flatten_enums(logger, method_name, event_dict):
    for key, value in event_dict.items():
        if isinstance(value, Enum):
            event_dict[key] = value.value
    return event_dict


def setup_structlog() -> None:
    """Configure structlog for structured logging."""
    processors = [
        structlog.stdlib.filter_by_level,
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        mask_secrets,
        flatten_enums,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.CallsiteParameterAdder(
            parameters=[
                structlog.processors.CallsiteParameter.FILENAME,
                structlog.processors.CallsiteParameter.LINENO,
                structlog.processors.CallsiteParameter.FUNC_NAME,
            ]
        ),
    ]

    if _environment() in ("production", "staging"):
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.RichTracebackFormatter(
                    show_locals=True,
                    max_frames=2,
                ),
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_logging() -> None:
    """Configure all logging for the checkout service."""
    setup_stdlib_logging()
    setup_structlog()


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_session(session_id: str, **context) -> None:
    """Attach the checkout session id (and any extra context) to every log line of the current request."""
    structlog.contextvars.bind_contextvars(checkout_session_id=session_id, **context)
