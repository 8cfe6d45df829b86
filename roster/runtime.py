from __future__ import annotations

import logging
import os
import re
from pathlib import Path

_API_KEY_RE = re.compile(r"(key=)[^&\s]+")


class _RedactApiKeyFilter(logging.Filter):
    """Mask ``key=...`` query parameters (urllib3 logs full request URLs)."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        if "key=" in message:
            record.msg = _API_KEY_RE.sub(r"\1***", message)
            record.args = None
        return True


def configure_logging(name: str, level: str | None = None) -> logging.Logger:
    log_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(
            level=getattr(logging, log_level, logging.INFO),
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )
    for handler in root_logger.handlers:
        if not any(isinstance(existing, _RedactApiKeyFilter) for existing in handler.filters):
            handler.addFilter(_RedactApiKeyFilter())
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, log_level, logging.INFO))
    return logger


def env_path(name: str, default: str) -> Path:
    return Path(os.getenv(name, default)).expanduser().resolve()
