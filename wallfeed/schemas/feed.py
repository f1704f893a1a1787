"""Pydantic schemas for drafts, patches and pagination state."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field

from ..errors import RemoteCallError


class EntityDraft(BaseModel):
    """Payload used by the presentation layer when composing a post, comment or reply."""

    content: str = ""
    tags: list[Any] = Field(default_factory=list)
    media: list[Any] = Field(default_factory=list)
    mentions: list[Any] = Field(default_factory=list)


class EntityPatch(BaseModel):
    """Fields an edit may change; ``None`` leaves the field untouched."""

    content: str | None = None
    tags: list[Any] | None = None
    media: list[Any] | None = None
    mentions: list[Any] | None = None

    def changed_fields(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class PaginationState(BaseModel):
    next_cursor: str | None = None
    has_more: bool = True
    is_loading_more: bool = False
    pages_loaded: int = 0


@dataclass(frozen=True)
class PageEnvelope:
    """One unwrapped ``list`` response."""

    entities: list[dict[str, Any]]
    next_cursor: str | None
    server_has_more: bool | None = None


@dataclass(frozen=True)
class PageLoadResult:
    added: int = 0
    has_more: bool = False
    skipped: bool = False
    failure: RemoteCallError | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None


__all__ = [
    "EntityDraft",
    "EntityPatch",
    "PaginationState",
    "PageEnvelope",
    "PageLoadResult",
]
