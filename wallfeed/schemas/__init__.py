"""Convenience exports for schema models."""
from .entities import (
    PENDING_STATES,
    ActingUser,
    Author,
    Entity,
    EntityKind,
    LifecycleState,
    MediaItem,
    MediaKind,
    Mention,
    ReactionBucket,
    ReactionMap,
)
from .feed import EntityDraft, EntityPatch, PageEnvelope, PageLoadResult, PaginationState

__all__ = [
    "PENDING_STATES",
    "ActingUser",
    "Author",
    "Entity",
    "EntityKind",
    "LifecycleState",
    "MediaItem",
    "MediaKind",
    "Mention",
    "ReactionBucket",
    "ReactionMap",
    "EntityDraft",
    "EntityPatch",
    "PageEnvelope",
    "PageLoadResult",
    "PaginationState",
]
