"""Logging configuration.

Every module gets its logger from ``setup_logging(__name__)``; request-scoped
fields are attached with ``bind_logger``.
"""
import logging
import sys
from typing import Any, Optional

from workshop_chat.core.config import get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(name: Optional[str] = None, level: Optional[str] = None) -> logging.Logger:
    """
    Get a logger writing to stdout in the shared format.

    Calling it again for the same name only updates the level, so modules
    imported more than once never duplicate their output.

    Args:
        name: Logger name (default: the application name)
        level: Level name (default: APP_LOG_LEVEL)

    Returns:
        Configured logger
    """
    settings = get_settings()
    log_level = getattr(logging, (level or settings.app_log_level).upper())

    logger = logging.getLogger(name or settings.app_name)
    logger.setLevel(log_level)

    handler = next((h for h in logger.handlers if getattr(h, "_workshop_chat", False)), None)
    if handler is None:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        handler._workshop_chat = True
        logger.addHandler(handler)
    handler.setLevel(log_level)

    return logger


class ContextLogger(logging.LoggerAdapter):
    """Child logger that prefixes every message with its bound fields.

    Example::

        log = bind_logger(logger, conversation_id="abc")
        log.info("Assistant message saved")
        # ... - INFO - [conversation_id=abc] Assistant message saved
    """

    def process(self, msg: Any, kwargs: Any):
        if not self.extra:
            return msg, kwargs
        context = " ".join(f"{key}={value}" for key, value in self.extra.items())
        return f"[{context}] {msg}", kwargs

    def bind(self, **fields: Any) -> "ContextLogger":
        """Return a new child logger with additional bound fields."""
        return ContextLogger(self.logger, {**self.extra, **fields})


def bind_logger(logger: logging.Logger, **fields: Any) -> ContextLogger:
    """Create a child logger carrying request-scoped context."""
    return ContextLogger(logger, fields)
