from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import ValidationError as PydanticValidationError


class TaskerError(Exception):
    """Base class for errors raised by the task store and its adapters."""


class ValidationError(TaskerError):
    """Bad caller input. Carries field-level details as ``{"field", "message"}`` dicts."""

    def __init__(self, message: str, details: Iterable[Mapping[str, str]] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: list[dict[str, str]] = [dict(d) for d in (details or [])]

    @classmethod
    def for_field(cls, field: str, message: str) -> ValidationError:
        return cls(message, [{"field": field, "message": message}])

    @classmethod
    def from_pydantic(
        cls, exc: PydanticValidationError, message: str = "validation failed"
    ) -> ValidationError:
        details: list[dict[str, str]] = []
        for err in exc.errors():
            loc: tuple[Any, ...] = tuple(err.get("loc") or ())
            field = ".".join(str(part) for part in loc) or "__root__"
            details.append({"field": field, "message": str(err.get("msg", "invalid value"))})
        return cls(message, details)


class NotFoundError(TaskerError):
    def __init__(self, kind: str, ident: str) -> None:
        super().__init__(f"{kind} not found: {ident}")
        self.kind = kind
        self.ident = ident


class PersistenceError(TaskerError):
    """A durable read or write failed."""


class AuthorizationError(TaskerError):
    """Missing, invalid or expired session."""


__all__ = [
    "TaskerError",
    "ValidationError",
    "NotFoundError",
    "PersistenceError",
    "AuthorizationError",
]
