"""
Structured logging setup for the digest delivery service.
Provides JSON-formatted logs with consistent fields for production monitoring.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import LoggerFactory


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging with JSON output for production.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            _mask_phone_numbers,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    # Suppress noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


PHONE_FIELDS = ("phone", "phone_number", "destination")


def mask_phone(value: str | None) -> str | None:
    """Keep the country prefix and last two digits of a phone number."""
    if not value:
        return value
    if len(value) <= 5:
        return "***"
    return f"{value[:2]}***{value[-2:]}"


def _mask_phone_numbers(logger, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Never write a full destination number to the logs."""
    for field in PHONE_FIELDS:
        value = event_dict.get(field)
        if isinstance(value, str):
            event_dict[field] = mask_phone(value)
    return event_dict


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


# Convenience functions for common log patterns
def log_dispatch(
    user_id: str,
    channel: str,
    status: str,
    provider_ref: str | None = None,
    error: str | None = None,
):
    """Log a dispatch attempt with consistent fields."""
    logger = get_logger("dispatch")

    log_data = {
        "user_id": user_id,
        "channel": channel,
        "status": status,
        "event_type": "digest_dispatch",
    }

    if provider_ref:
        log_data["provider_ref"] = provider_ref

    if error:
        log_data["error"] = error
        logger.error("Digest dispatch failed", **log_data)
    else:
        logger.info("Digest dispatch accepted", **log_data)


def log_verification(user_id: str, phone: str, outcome: str, attempts: int | None = None):
    """Log a verification state transition with consistent fields."""
    logger = get_logger("verification")

    log_data = {
        "user_id": user_id,
        "phone": phone,
        "outcome": outcome,
        "event_type": "phone_verification",
    }

    if attempts is not None:
        log_data["attempts"] = attempts

    if outcome in ("verified", "code_sent"):
        logger.info("Phone verification step", **log_data)
    else:
        logger.warning("Phone verification rejected", **log_data)
