"""Exception types and typed failure records shared by the feed services."""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:  # pragma: no cover
    from .schemas.entities import Entity


class WallError(RuntimeError):
    """Base class for errors raised by the wall feed client."""


class DraftValidationError(WallError):
    """Raised when a draft or patch is rejected before any mutation is applied."""


class EntityNotFoundError(WallError):
    """Raised when a canonical id is not present in the feed store."""


class EntityBusyError(WallError):
    """Raised when an entity still has a mutation in flight."""


class RemoteCallError(WallError):
    """Raised by the remote API client when a call fails."""

    def __init__(self, message: str, *, status_code: int | None = None, detail: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


@dataclass(frozen=True)
class MutationFailure:
    """A rolled-back mutation, handed to the presentation layer for a retry prompt."""

    operation: str
    canonical_id: str | None
    message: str
    status_code: int | None = None
    draft: Any = None

    @classmethod
    def from_error(
        cls,
        operation: str,
        canonical_id: str | None,
        error: RemoteCallError,
        *,
        draft: Any = None,
    ) -> "MutationFailure":
        return cls(
            operation=operation,
            canonical_id=canonical_id,
            message=str(error),
            status_code=error.status_code,
            draft=draft,
        )


@dataclass(frozen=True)
class MutationResult:
    operation: str
    entity: "Entity | None" = None
    failure: MutationFailure | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None


__all__ = [
    "WallError",
    "DraftValidationError",
    "EntityNotFoundError",
    "EntityBusyError",
    "RemoteCallError",
    "MutationFailure",
    "MutationResult",
]
