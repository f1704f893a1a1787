"""Convert the server's reaction encodings into one canonical reaction map.

The backend has emitted reactions in several shapes over time:

* an aggregate count map ``{"like": 3, "love": 1}`` (current, authoritative),
* a flat array of ``{"reaction_type": ..., "user_id": ...}`` records,
* an already-canonical map ``{"like": {"count": 3, "user_ids": [...]}}``,
* a legacy ``likes`` array holding the ids of users who liked the post.

Shape detection lives in the ordered rule tables below so that a new wire
shape only needs a new rule.
"""
from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from numbers import Number
from typing import Any

from ..constants import LIKE
from ..schemas.entities import ReactionBucket, ReactionMap

_Rule = tuple[str, Callable[[Any], bool], Callable[[Any], ReactionMap]]


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, Number):
        try:
            return int(value)  # type: ignore[arg-type]
        except (OverflowError, ValueError):
            return None
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _user_id_of(record: Any) -> str | None:
    if isinstance(record, Mapping):
        candidate = record.get("user_id", record.get("userId", record.get("id")))
    else:
        candidate = record
    if candidate is None or isinstance(candidate, (Mapping, list, tuple, bool)):
        return None
    text = str(candidate).strip()
    return text or None


def _is_count_map(value: Any) -> bool:
    return isinstance(value, Mapping) and all(_as_int(count) is not None for count in value.values())


def _is_record_array(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def _is_bucket_map(value: Any) -> bool:
    return isinstance(value, Mapping)


def from_count_map(counts: Mapping[str, Any]) -> ReactionMap:
    reactions: ReactionMap = {}
    for reaction_type, raw_count in counts.items():
        count = _as_int(raw_count)
        if count is None or count <= 0:
            continue
        reactions[str(reaction_type)] = ReactionBucket(count=count)
    return reactions


def from_record_array(records: Iterable[Any]) -> ReactionMap:
    """Group ``{reaction_type, user_id}`` records, counting distinct users."""

    users: dict[str, list[str]] = {}
    anonymous: dict[str, int] = {}
    for record in records:
        if not isinstance(record, Mapping):
            continue
        reaction_type = record.get("reaction_type") or record.get("type")
        if not reaction_type:
            continue
        reaction_type = str(reaction_type)
        seen = users.setdefault(reaction_type, [])
        user_id = _user_id_of(record)
        if user_id is None:
            anonymous[reaction_type] = anonymous.get(reaction_type, 0) + 1
        elif user_id not in seen:
            seen.append(user_id)

    reactions: ReactionMap = {}
    for reaction_type, user_ids in users.items():
        count = len(user_ids) + anonymous.get(reaction_type, 0)
        if count == 0:
            continue
        reactions[reaction_type] = ReactionBucket(count=count, user_ids=tuple(user_ids))
    return reactions


def _bucket_from(value: Any) -> ReactionBucket | None:
    if isinstance(value, ReactionBucket):
        return value if value.count > 0 else None

    if isinstance(value, (list, tuple)):
        user_ids = _dedupe(_user_id_of(item) for item in value)
        return ReactionBucket(count=len(user_ids), user_ids=user_ids) if user_ids else None

    if isinstance(value, Mapping):
        raw_users = value.get("user_ids", value.get("users")) or ()
        user_ids = _dedupe(_user_id_of(item) for item in raw_users) if isinstance(raw_users, (list, tuple)) else ()
        count = max(_as_int(value.get("count")) or 0, len(user_ids))
        return ReactionBucket(count=count, user_ids=user_ids) if count > 0 else None

    count = _as_int(value)
    if count is not None and count > 0:
        return ReactionBucket(count=count)
    return None


def from_bucket_map(buckets: Mapping[str, Any]) -> ReactionMap:
    reactions: ReactionMap = {}
    for reaction_type, value in buckets.items():
        bucket = _bucket_from(value)
        if bucket is not None:
            reactions[str(reaction_type)] = bucket
    return reactions


def from_likes(likes: Iterable[Any]) -> ReactionMap:
    user_ids = _dedupe(_user_id_of(item) for item in likes)
    if not user_ids:
        return {}
    return {LIKE: ReactionBucket(count=len(user_ids), user_ids=user_ids)}


def _dedupe(values: Iterable[str | None]) -> tuple[str, ...]:
    seen: list[str] = []
    for value in values:
        if value is not None and value not in seen:
            seen.append(value)
    return tuple(seen)


# Bare reaction values, most authoritative first.
_VALUE_RULES: tuple[_Rule, ...] = (
    ("count_map", _is_count_map, from_count_map),
    ("record_array", _is_record_array, from_record_array),
    ("bucket_map", _is_bucket_map, from_bucket_map),
)

# Entity payloads: the aggregate map wins over a legacy array carried alongside it.
_PAYLOAD_RULES: tuple[_Rule, ...] = (
    (
        "reaction_counts",
        lambda payload: isinstance(payload.get("reaction_counts"), Mapping),
        lambda payload: from_count_map(payload["reaction_counts"]),
    ),
    (
        "reactions",
        lambda payload: isinstance(payload.get("reactions"), (Mapping, list, tuple)),
        lambda payload: normalize_reactions(payload["reactions"]),
    ),
    (
        "likes",
        lambda payload: isinstance(payload.get("likes"), (list, tuple)),
        lambda payload: from_likes(payload["likes"]),
    ),
)


def normalize_reactions(raw: Any) -> ReactionMap:
    """Return the canonical reaction map for a bare reaction value.

    Unknown shapes produce an empty map rather than an error.
    """

    if raw is None:
        return {}
    for _name, matches, convert in _VALUE_RULES:
        if matches(raw):
            return convert(raw)
    return {}


def reactions_from_payload(payload: Mapping[str, Any]) -> ReactionMap:
    """Pick the reaction field of an entity payload by priority and normalize it."""

    for _name, matches, convert in _PAYLOAD_RULES:
        if matches(payload):
            return convert(payload)
    return {}


def detect_reaction_shape(payload: Mapping[str, Any]) -> str | None:
    """Name of the payload rule that would be applied; ``None`` when no reaction data is present."""

    for name, matches, _convert in _PAYLOAD_RULES:
        if matches(payload):
            return name
    return None


__all__ = [
    "normalize_reactions",
    "reactions_from_payload",
    "detect_reaction_shape",
    "from_count_map",
    "from_record_array",
    "from_bucket_map",
    "from_likes",
]
