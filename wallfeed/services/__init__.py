"""Convenience exports for the feed service layer."""
from .entity_normalizer import (
    classify_media,
    normalize,
    normalize_many,
    normalize_to_raw,
    resolve_author,
    resolve_identifiers,
)
from .feed_queries import (
    entities_with_tag,
    filter_entities,
    pinned_first,
    search_entities,
    tag_choices,
    without_broadcasts,
)
from .feed_store import FeedStore, Removal
from .mutation_service import MutationManager, ReactionDetector
from .pagination_service import PaginationController, parse_page
from .reaction_ledger import ReactionLedger, ledger_key
from .reaction_normalizer import detect_reaction_shape, normalize_reactions, reactions_from_payload
from .reaction_summary import (
    comment_total_reactions,
    current_user_reaction,
    default_reaction_detector,
    is_heart_filled,
    reaction_emoji,
    top_reactions,
    total_comments,
    total_likes,
    total_reactions,
)

__all__ = [
    "classify_media",
    "normalize",
    "normalize_many",
    "normalize_to_raw",
    "resolve_author",
    "resolve_identifiers",
    "entities_with_tag",
    "filter_entities",
    "pinned_first",
    "search_entities",
    "tag_choices",
    "without_broadcasts",
    "FeedStore",
    "Removal",
    "MutationManager",
    "ReactionDetector",
    "PaginationController",
    "parse_page",
    "ReactionLedger",
    "ledger_key",
    "detect_reaction_shape",
    "normalize_reactions",
    "reactions_from_payload",
    "comment_total_reactions",
    "current_user_reaction",
    "default_reaction_detector",
    "is_heart_filled",
    "reaction_emoji",
    "top_reactions",
    "total_comments",
    "total_likes",
    "total_reactions",
]
