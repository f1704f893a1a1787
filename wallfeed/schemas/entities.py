"""Pydantic models for the canonical entity shape held by the feed store."""
from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from ..constants import DEFAULT_AVATAR_URL, PLACEHOLDER_AUTHOR_NAME, PLACEHOLDER_AUTHOR_TITLE


class EntityKind(str, Enum):
    POST = "post"
    COMMENT = "comment"
    REPLY = "reply"


class LifecycleState(str, Enum):
    OPTIMISTIC = "optimistic"
    CONFIRMED = "confirmed"
    UPDATING = "updating"
    FAILED = "failed"


PENDING_STATES = frozenset({LifecycleState.OPTIMISTIC, LifecycleState.UPDATING})


class MediaKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    DOCUMENT = "document"
    LINK = "link"


class Author(BaseModel):
    """Denormalized author snapshot taken at normalization time."""

    model_config = ConfigDict(frozen=True)

    id: str | None = None
    display_name: str = PLACEHOLDER_AUTHOR_NAME
    avatar_url: str | None = DEFAULT_AVATAR_URL
    title: str | None = PLACEHOLDER_AUTHOR_TITLE


class ActingUser(BaseModel):
    """The signed-in user, as supplied by the session collaborator."""

    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    avatar_url: str | None = None
    title: str | None = None

    def as_author(self) -> Author:
        return Author(
            id=self.id,
            display_name=self.display_name,
            avatar_url=self.avatar_url or DEFAULT_AVATAR_URL,
            title=self.title or PLACEHOLDER_AUTHOR_TITLE,
        )


class MediaItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    name: str
    kind: MediaKind


class Mention(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    username: str | None = None


class ReactionBucket(BaseModel):
    """Count and known reacting users for one reaction type.

    ``user_ids`` may be empty while ``count`` is positive when the server only
    reported aggregate counts.
    """

    model_config = ConfigDict(frozen=True)

    count: int = Field(default=0, ge=0)
    user_ids: tuple[str, ...] = ()


ReactionMap = dict[str, ReactionBucket]


class Entity(BaseModel):
    """A post, comment or reply in canonical form."""

    model_config = ConfigDict(frozen=True)

    kind: EntityKind = EntityKind.POST
    canonical_id: str
    server_id: str | None = None
    parent_id: str | None = None
    author: Author = Field(default_factory=Author)
    content: str = ""
    tags: tuple[str, ...] = ()
    images: tuple[MediaItem, ...] = ()
    videos: tuple[MediaItem, ...] = ()
    documents: tuple[MediaItem, ...] = ()
    links: tuple[MediaItem, ...] = ()
    mentions: tuple[Mention, ...] = ()
    created_at: datetime | None = None
    updated_at: datetime | None = None
    reactions: ReactionMap = Field(default_factory=dict)
    comments: tuple["Entity", ...] = ()
    is_pinned: bool = False
    is_comments_allowed: bool = True
    is_broadcast: bool = False
    lifecycle_state: LifecycleState = LifecycleState.CONFIRMED

    @property
    def is_pending(self) -> bool:
        return self.lifecycle_state in PENDING_STATES

    @property
    def media(self) -> tuple[MediaItem, ...]:
        return self.images + self.videos + self.documents + self.links

    def reaction_count(self, reaction_type: str) -> int:
        bucket = self.reactions.get(reaction_type)
        return bucket.count if bucket else 0


Entity.model_rebuild()


__all__ = [
    "EntityKind",
    "LifecycleState",
    "PENDING_STATES",
    "MediaKind",
    "Author",
    "ActingUser",
    "MediaItem",
    "Mention",
    "ReactionBucket",
    "ReactionMap",
    "Entity",
]
