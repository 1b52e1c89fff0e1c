"""
Tagged results for calls that are expected to fail in normal operation.

Metadata lookups and strategy runners return ``Ok(value)`` or ``Err(kind)``
instead of raising, so callers decide explicitly what a failure means.
"""
import enum
from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class ErrorKind(str, enum.Enum):
    NETWORK = "network"
    HTTP = "http"
    RATE_LIMITED = "rate_limited"
    NOT_CONFIGURED = "not_configured"
    INVALID_RESPONSE = "invalid_response"
    UNEXPECTED = "unexpected"


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    message: str = ""

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]
