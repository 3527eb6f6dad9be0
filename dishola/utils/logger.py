"""
Logging for the Dishola search service.

One ``dishola`` logger writes to stdout (and to ``logs/app.log`` in
production). API handlers log through ``create_logger`` so every line of a
request carries ``[handler:requestId]``.
"""
import logging
import os
import sys
import uuid
from typing import List, Optional

from dishola.utils.config import get_settings

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _handlers(environment: str) -> List[logging.Handler]:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if environment == "production":
        try:
            os.makedirs("logs", exist_ok=True)
            handlers.append(logging.FileHandler("logs/app.log"))
        except OSError as e:
            print(f"⚠️ File logging disabled: {e}", file=sys.stderr)
    return handlers


def setup_logger() -> logging.Logger:
    """Configure and return the shared application logger."""
    settings = get_settings()
    level = logging.getLevelName(str(settings.log_level).upper())
    if not isinstance(level, int):
        level = logging.INFO

    logger = logging.getLogger("dishola")
    logger.setLevel(level)
    logger.handlers.clear()
    logger.propagate = False

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    for handler in _handlers(settings.environment):
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger


class RequestLogger(logging.LoggerAdapter):
    """Prefix every message with the handler name and a per-request id."""

    def process(self, msg, kwargs):
        return f"[{self.extra['handler']}:{self.extra['request_id']}] {msg}", kwargs


def create_logger(handler_name: str, request_id: Optional[str] = None) -> RequestLogger:
    request_id = request_id or uuid.uuid4().hex[:12]
    return RequestLogger(
        app_logger.getChild(handler_name),
        {"handler": handler_name, "request_id": request_id},
    )


app_logger = setup_logger()
