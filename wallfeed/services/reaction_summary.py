"""Read-only reaction aggregates for rendering a post's reaction bar."""
from __future__ import annotations

from ..constants import DEFAULT_REACTION_EMOJI, EXCLUSIVE_REACTION_FAMILIES, LIKE, REACTION_CATALOG
from ..schemas.entities import Entity
from .mutation_service import ReactionDetector
from .reaction_ledger import ReactionLedger, ledger_key


def reaction_emoji(reaction_type: str) -> str:
    return REACTION_CATALOG.get(reaction_type, DEFAULT_REACTION_EMOJI)


def total_likes(entity: Entity) -> int:
    return entity.reaction_count(LIKE)


def total_reactions(entity: Entity) -> int:
    """Sum of every reaction except ``like``, which is shown as the heart counter."""

    return sum(bucket.count for reaction_type, bucket in entity.reactions.items() if reaction_type != LIKE)


def top_reactions(entity: Entity, limit: int = 3) -> list[tuple[str, str, int]]:
    """``(type, emoji, count)`` for the most used non-like reactions, highest first."""

    ranked = sorted(
        ((reaction_type, bucket.count) for reaction_type, bucket in entity.reactions.items()),
        key=lambda item: item[1],
        reverse=True,
    )
    return [
        (reaction_type, reaction_emoji(reaction_type), count)
        for reaction_type, count in ranked
        if reaction_type != LIKE and count > 0
    ][:limit]


def comment_total_reactions(comment: Entity) -> int:
    return sum(bucket.count for bucket in comment.reactions.values())


def total_comments(entity: Entity) -> int:
    """Comments plus all of their replies."""

    return sum(1 + total_comments(child) for child in entity.comments)


def is_heart_filled(entity: Entity, ledger: ReactionLedger) -> bool:
    key = ledger_key(entity)
    return ledger.has_reacted(key, LIKE, entity)


def current_user_reaction(entity: Entity, ledger: ReactionLedger) -> str | None:
    """First non-like reaction the acting user is judged to hold on ``entity``."""

    key = ledger_key(entity)
    candidates = list(REACTION_CATALOG) + [name for name in entity.reactions if name not in REACTION_CATALOG]
    for reaction_type in candidates:
        if reaction_type != LIKE and ledger.has_reacted(key, reaction_type, entity):
            return reaction_type
    return None


def default_reaction_detector(ledger: ReactionLedger) -> ReactionDetector:
    """Build a detector that replaces the user's other reaction from the same exclusive family."""

    def detect(entity: Entity, reaction_type: str) -> str | None:
        key = ledger_key(entity)
        for family in EXCLUSIVE_REACTION_FAMILIES:
            if reaction_type not in family:
                continue
            for other in sorted(family - {reaction_type}):
                if ledger.has_reacted(key, other, entity):
                    return other
        return None

    return detect


__all__ = [
    "reaction_emoji",
    "total_likes",
    "total_reactions",
    "top_reactions",
    "comment_total_reactions",
    "total_comments",
    "is_heart_filled",
    "current_user_reaction",
    "default_reaction_detector",
]
