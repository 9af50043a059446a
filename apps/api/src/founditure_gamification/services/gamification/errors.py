"""Error taxonomy for the points ledger and achievement engine."""

from __future__ import annotations

from typing import Any


class GamificationError(RuntimeError):
    """Base exception for gamification failures."""


class ValidationError(GamificationError):
    """Raised when input is malformed or outside the operation's contract.

    Validation always runs before any write, so a ``ValidationError`` never
    leaves partial state behind.
    """

    def __init__(self, message: str, *, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.errors = errors or []

    @classmethod
    def for_field(cls, field: str, message: str, *, code: str = "INVALID_VALUE") -> "ValidationError":
        return cls(message, errors=[{"field": field, "message": message, "code": code}])

    def as_detail(self) -> dict[str, Any]:
        return {"message": self.message, "errors": list(self.errors)}


class StorageError(GamificationError):
    """Raised when the ledger store is unavailable or exceeds its time budget."""


class ConsistencyWarning(UserWarning):
    """Non-fatal signal attached to awards that need monitoring review."""

    def __init__(self, code: str, message: str, **details: Any) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details

    def as_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.details}
