"""
Success-or-degraded wrapper for fault-tolerant sub-calls.

The risk scorer gathers several independent analyses. Each one is awaited
through ``gather_outcome`` so a failure becomes an explicit degraded value
instead of an exception.
"""

from dataclasses import dataclass
from typing import Awaitable, Generic, Optional, TypeVar

from ..utils import setup_logging
from .errors import IntelligenceError

logger = setup_logging()

T = TypeVar("T")


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Value of a sub-call plus whether it is a stand-in."""
    value: T
    degraded: bool = False
    reason: Optional[str] = None

    @classmethod
    def ok(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def fallback(cls, value: T, reason: str) -> "Outcome[T]":
        return cls(value=value, degraded=True, reason=reason)

    @property
    def succeeded(self) -> bool:
        return not self.degraded


async def gather_outcome(awaitable: Awaitable[T], fallback: T, label: str) -> Outcome[T]:
    """
    Await a sub-call, replacing any failure with ``fallback``.

    Pipeline errors are expected and logged as warnings. Anything else is
    logged with a traceback but still degraded.
    """
    try:
        return Outcome.ok(await awaitable)
    except IntelligenceError as e:
        logger.warning("%s unavailable: %s", label, e)
        return Outcome.fallback(fallback, str(e))
    except Exception as e:  # noqa: BLE001
        logger.exception("%s failed unexpectedly", label)
        return Outcome.fallback(fallback, f"{type(e).__name__}: {e}")
