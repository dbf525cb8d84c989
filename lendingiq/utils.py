"""
Shared helpers for LendingIQ: logging setup and value normalisation.
"""

from __future__ import annotations

import logging
import os
import re
from typing import Any, Optional

LOGGER_NAME = "lendingiq"

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# First numeric token, allowing thousands separators and an optional sign
_NUMBER_PATTERN = re.compile(r"-?\d[\d,]*(?:\.\d+)?")


def setup_logging() -> logging.Logger:
    """Configure the package logger once and return it.

    The level comes from ``LOG_LEVEL`` (default INFO). Calling this from
    several modules is safe; the handler is only attached the first time.
    """
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        logger.addHandler(handler)
        level = os.getenv("LOG_LEVEL", "INFO").upper()
        logger.setLevel(getattr(logging, level, logging.INFO))
    return logger


def normalize_value(value: Any) -> str:
    """Lowercase, collapse internal whitespace and trim, dropping trailing periods and commas."""
    if value is None:
        return ""
    text = re.sub(r"\s+", " ", str(value).lower())
    return text.strip().rstrip(".,").rstrip()


def first_number(value: Any) -> Optional[float]:
    """
    Extract the first numeric token from a value.

    Handles formats like: $125,000.00, "Revenue: 1,200,000", 4500
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        return float(value)

    match = _NUMBER_PATTERN.search(str(value))
    if not match:
        return None
    try:
        return float(match.group(0).replace(",", ""))
    except ValueError:
        return None


def clamp(value: float, low: float, high: float) -> float:
    """Clamp value into [low, high]."""
    return max(low, min(high, value))
