"""
Shared logging utilities for the Police Personnel Records Service

SECURITY: request data (names, codes, file names) is user controlled and
must pass through sanitize_for_logging before it reaches a log record.
"""

import logging
import re
from pathlib import Path
from typing import Optional

from config_manager import LoggingConfig

logger = logging.getLogger(__name__)


def sanitize_for_logging(text: str) -> str:
    """Sanitize user input for safe logging, preventing log injection

    Removes newlines, carriage returns, and other control characters
    that could be used to inject fake log entries.

    Args:
        text: User input text

    Returns:
        Sanitized text safe for logging
    """
    if not text:
        return ''
    # Remove newlines, carriage returns, and other control characters
    sanitized = re.sub(r'[\r\n\x00-\x1f\x7f-\x9f]', ' ', str(text))
    # Collapse multiple spaces
    sanitized = re.sub(r'\s+', ' ', sanitized).strip()
    # Truncate to reasonable length
    return sanitized[:500] if len(sanitized) > 500 else sanitized


def setup_logging(config: Optional[LoggingConfig] = None) -> None:
    """Configure the root logger from LoggingConfig.

    Safe to call more than once; handlers installed by a previous call
    are replaced.
    """
    config = config or LoggingConfig()
    root = logging.getLogger()
    root.setLevel(config.level.upper())

    for handler in list(root.handlers):
        if getattr(handler, "_records_service", False):
            root.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(config.format)
    handlers = []

    if config.console:
        handlers.append(logging.StreamHandler())

    if config.file:
        log_path = Path(config.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    for handler in handlers:
        handler.setFormatter(formatter)
        handler._records_service = True
        root.addHandler(handler)

    logger.debug("Logging configured: level=%s file=%s", config.level, config.file or "-")
