"""Result type for explicit success/failure returns.

Used where a failure is an expected outcome the caller must branch on
(reasoning calls, state machine transitions) rather than an exception.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class Result(ABC, Generic[T]):
    """Base class for Ok and Err."""

    @abstractmethod
    def is_ok(self) -> bool:
        pass

    def is_err(self) -> bool:
        return not self.is_ok()

    @abstractmethod
    def unwrap(self) -> T:
        pass

    def unwrap_or(self, default: T) -> T:
        return self.unwrap() if self.is_ok() else default


class Ok(Result[T]):
    """Successful result wrapping a value."""

    __slots__ = ("value",)

    def __init__(self, value: T) -> None:
        self.value = value

    def is_ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Ok) and other.value == self.value

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


class Err(Result[T]):
    """Failed result carrying an error message and optional machine-readable code."""

    __slots__ = ("error", "code")

    def __init__(self, error: str, code: Optional[str] = None) -> None:
        self.error = error
        self.code = code

    def is_ok(self) -> bool:
        return False

    def unwrap(self) -> T:
        raise ValueError(f"Called unwrap() on Err: {self.error}")

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Err) and (other.error, other.code) == (self.error, self.code)

    def __repr__(self) -> str:
        return f"Err(error={self.error!r}, code={self.code!r})"
