"""Logging configuration and structured logging helpers."""

import logging
import re
import sys
from datetime import datetime, timezone
from typing import Any

import structlog

_SENSITIVE_KEY = re.compile(r"password|token|secret|key", re.IGNORECASE)
_SENSITIVE_INLINE = [
    (re.compile(r'password["\s]*[:=]["\s]*[^"\s,}]+', re.IGNORECASE), 'password="***"'),
    (re.compile(r'token["\s]*[:=]["\s]*[^"\s,}]+', re.IGNORECASE), 'token="***"'),
    (re.compile(r'secret["\s]*[:=]["\s]*[^"\s,}]+', re.IGNORECASE), 'secret="***"'),
    (re.compile(r'key["\s]*[:=]["\s]*[^"\s,}]+', re.IGNORECASE), 'key="***"'),
]


def configure_logging(log_level: str = "INFO", log_format: str = "console") -> None:
    """
    Configure structlog to write to stderr only.

    stdout carries JSON-RPC frames for the stdio transport, so nothing else
    may be printed there.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level)

    renderer: Any
    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def log_operation(operation: str, resource: str, **fields: Any) -> None:
    """Log a Kubernetes operation."""
    structlog.get_logger().info(
        "kubernetes_operation",
        operation=operation,
        resource=resource,
        timestamp=datetime.now(timezone.utc).isoformat(),
        **fields,
    )


def log_audit(action: str, resource: str, user: str | None = None, **fields: Any) -> None:
    """Log an audit record."""
    structlog.get_logger().info(
        "audit",
        action=action,
        resource=resource,
        user=user,
        timestamp=datetime.now(timezone.utc).isoformat(),
        **fields,
    )


def mask_sensitive_data(data: Any) -> Any:
    """Mask password/token/secret/key values in strings and nested mappings."""
    if isinstance(data, str):
        for pattern, replacement in _SENSITIVE_INLINE:
            data = pattern.sub(replacement, data)
        return data

    if isinstance(data, dict):
        masked = {}
        for key, value in data.items():
            if _SENSITIVE_KEY.search(str(key)):
                masked[key] = "***"
            elif isinstance(value, (dict, list)):
                masked[key] = mask_sensitive_data(value)
            else:
                masked[key] = value
        return masked

    if isinstance(data, list):
        return [mask_sensitive_data(item) if isinstance(item, (dict, list)) else item for item in data]

    return data
