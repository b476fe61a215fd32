"""Explicit success/failure values returned at upstream boundaries."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a call that must not raise past its boundary.

    A failure may still carry a usable ``value`` (a fallback), so callers can
    keep going while knowing the value is degraded.
    """

    value: Optional[T] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value, error=None)

    @classmethod
    def failure(cls, error: Exception, fallback: Optional[T] = None) -> "Result[T]":
        return cls(value=fallback, error=error)

    def value_or(self, default: T) -> T:
        return self.value if self.value is not None else default
