"""Logging helpers for the cache.

All cache modules log through the ``tiercache`` logger. Keyword context is
serialized as JSON and appended to the message so log lines stay greppable.
Handlers and levels are left to the host application.
"""
import json
import logging
from typing import Any

logger = logging.getLogger("tiercache")


def safe_json(obj: Any, max_length: int = 1000) -> str:
    """Serialize log context to JSON, truncating long output.

    Args:
        obj: Object to serialize
        max_length: Maximum length of output string

    Returns:
        JSON string, or a placeholder if the object can't be serialized
    """
    try:
        json_str = json.dumps(obj, ensure_ascii=False, default=str)
        if len(json_str) > max_length:
            json_str = json_str[:max_length] + "... [truncated]"
        return json_str
    except Exception:
        return "<unable to serialize>"


def _format(message: str, context: dict) -> str:
    if context:
        return f"{message} | Context: {safe_json(context)}"
    return message


def log_info(message: str, **kwargs) -> None:
    """Log info message with optional context."""
    if logger.isEnabledFor(logging.INFO):
        logger.info(_format(message, kwargs))


def log_warning(message: str, **kwargs) -> None:
    """Log warning message with optional context."""
    if logger.isEnabledFor(logging.WARNING):
        logger.warning(_format(message, kwargs))


def log_debug(message: str, **kwargs) -> None:
    """Log debug message with optional context."""
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(_format(message, kwargs))
