"""Success/failure result returned by aggregate commands instead of raising."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")
U = TypeVar("U")


@dataclass(frozen=True, slots=True)
class Result(Generic[T]):
    """Outcome of a command: either a value or a human-readable failure reason."""

    value: Optional[T] = None
    failure_reason: Optional[str] = None

    @classmethod
    def ok(cls, value: Optional[T] = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, reason: str) -> "Result[T]":
        if not reason:
            raise ValueError("A failure result requires a reason.")
        return cls(failure_reason=reason)

    @property
    def is_success(self) -> bool:
        return self.failure_reason is None

    @property
    def is_failure(self) -> bool:
        return self.failure_reason is not None

    def map(self, transform: Callable[[Optional[T]], U]) -> "Result[U]":
        if self.is_failure:
            return Result(failure_reason=self.failure_reason)
        return Result(value=transform(self.value))

    def unwrap(self) -> Optional[T]:
        """Return the value or raise ``ValueError`` carrying the failure reason."""
        if self.is_failure:
            raise ValueError(self.failure_reason)
        return self.value


__all__ = ["Result"]
