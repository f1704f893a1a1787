"""Filtering helpers applied to a feed snapshot before rendering."""
from __future__ import annotations

from collections.abc import Iterable

from ..constants import DEFAULT_TAGS
from ..schemas.entities import Entity

ALL_TAGS = "all"


def _matches(entity: Entity, needle: str) -> bool:
    if needle in entity.content.lower():
        return True
    if needle in entity.author.display_name.lower():
        return True
    return any(needle in tag.lower() for tag in entity.tags)


def search_entities(entities: Iterable[Entity], query: str | None) -> list[Entity]:
    needle = (query or "").strip().lower()
    if not needle:
        return list(entities)
    return [entity for entity in entities if _matches(entity, needle)]


def entities_with_tag(entities: Iterable[Entity], tag: str) -> list[Entity]:
    wanted = tag.strip().lower()
    return [entity for entity in entities if any(item.lower() == wanted for item in entity.tags)]


def without_broadcasts(entities: Iterable[Entity]) -> list[Entity]:
    return [entity for entity in entities if not entity.is_broadcast]


def pinned_first(entities: Iterable[Entity]) -> list[Entity]:
    """Stable sort that lifts pinned entities to the top."""

    return sorted(entities, key=lambda entity: not entity.is_pinned)


def tag_choices(entities: Iterable[Entity] = ()) -> list[str]:
    """Filter options: ``all``, the default tags, then any other tag seen in ``entities``."""

    choices = [ALL_TAGS, *DEFAULT_TAGS]
    seen = {choice.lower() for choice in choices}
    for entity in entities:
        for tag in entity.tags:
            if tag.lower() not in seen:
                seen.add(tag.lower())
                choices.append(tag)
    return choices


def filter_entities(
    entities: Iterable[Entity],
    tag: str | None = None,
    search: str | None = None,
) -> list[Entity]:
    selected = list(entities)
    if tag and tag.strip().lower() != ALL_TAGS:
        selected = entities_with_tag(selected, tag)
    return search_entities(selected, search)


__all__ = [
    "ALL_TAGS",
    "search_entities",
    "entities_with_tag",
    "without_broadcasts",
    "pinned_first",
    "tag_choices",
    "filter_entities",
]
