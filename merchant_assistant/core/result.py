"""
Result values for fallible LLM calls.

Callers pattern-match on the returned value instead of catching exceptions:

    match await call_llm(client, messages):
        case Ok(value=content):
            ...
        case Err(reason=reason):
            ...
"""

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    value: T

    @property
    def is_ok(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class Err:
    reason: str
    error: Exception | None = None

    @property
    def is_ok(self) -> bool:
        return False


Result = Ok[T] | Err
