"""Result and error models for the Explainer Relay.

Fallible operations return a ``Result`` holding either a value or a
``GenerationError`` tagged with an ``ErrorKind``; callers branch on
``result.ok`` instead of unwinding through the streaming loop.
"""

from datetime import datetime
from typing import Any, Dict, Generic, Optional, TypeVar

from pydantic import BaseModel, Field

from .enums import ErrorKind

T = TypeVar("T")

# Default HTTP status for each kind; upstream rejections override it.
DEFAULT_STATUS_CODES: Dict[ErrorKind, int] = {
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.QUOTA_EXHAUSTED: 429,
    ErrorKind.UPSTREAM_TIMEOUT: 502,
    ErrorKind.UPSTREAM_REJECTED: 500,
    ErrorKind.PROTOCOL_ANOMALY: 502,
    ErrorKind.BACKING_STORE_UNAVAILABLE: 503,
    ErrorKind.SERVER_MISCONFIGURED: 500,
}


class GenerationError(BaseModel):
    """A caller-visible failure."""

    kind: ErrorKind = Field(..., description="Taxonomy tag")
    message: str = Field(..., description="Human readable message")
    status_code: int = Field(default=500, ge=400, le=599)
    retry_at: Optional[datetime] = Field(
        default=None, description="When the caller may try again, if known"
    )

    @classmethod
    def of(
        cls,
        kind: ErrorKind,
        message: str,
        status_code: Optional[int] = None,
        retry_at: Optional[datetime] = None,
    ) -> "GenerationError":
        return cls(
            kind=kind,
            message=message,
            status_code=status_code or DEFAULT_STATUS_CODES[kind],
            retry_at=retry_at,
        )

    def to_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "error": self.message,
            "type": self.kind.value,
            "status": self.status_code,
        }
        if self.retry_at is not None:
            body["retryAt"] = self.retry_at.isoformat().replace("+00:00", "Z")
        return body


class Result(Generic[T]):
    """Either a value or a ``GenerationError``."""

    __slots__ = ("value", "error")

    def __init__(self, value: Optional[T] = None, error: Optional[GenerationError] = None) -> None:
        self.value = value
        self.error = error

    @classmethod
    def success(cls, value: Optional[T] = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: GenerationError) -> "Result[T]":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def __repr__(self) -> str:
        if self.ok:
            return f"Result.success({self.value!r})"
        return f"Result.failure({self.error!r})"
