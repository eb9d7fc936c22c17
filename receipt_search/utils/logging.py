"""
Logging utilities for the receipt search backend.

Provides standardized logger configuration following security and privacy rules.

CRITICAL SECURITY RULES:
- NEVER log embedding vectors (large, and they leak content)
- NEVER log full receipt text, notes or line items (PII and financial data)
- NEVER log Supabase Auth tokens, worker tokens, webhook secrets or API keys

Acceptable logging:
- High-level events (e.g., "Task claimed", "Embedding upserted")
- Source identity (source_type, source_id, content_type)
- Content lengths, counts, scores and durations
- Error codes and sanitized error messages
"""

import logging
from typing import Optional

from receipt_search.config import settings


def get_logger(name: str, level: Optional[int] = None) -> logging.Logger:
    """
    Get a configured logger for the specified module.

    Args:
        name: Module name (typically __name__)
        level: Optional logging level (defaults to settings.LOG_LEVEL)

    Returns:
        Configured logger instance

    Usage:
        >>> from receipt_search.utils.logging import get_logger
        >>> logger = get_logger(__name__)
        >>> logger.info("Worker batch finished")
    """
    logger = logging.getLogger(name)

    if level is None:
        level = logging.getLevelName(settings.LOG_LEVEL.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logger.setLevel(level)

    # Add handler if not already configured (avoid duplicate handlers)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger
