"""In-memory collection of canonical entities, one ordered list per feed view.

The store is the only state presentation code observes. Every writer goes
through the methods below, which keep each feed free of duplicate canonical
ids. Comments and replies live inside their parent's ``comments`` tuple, so
lookups and rewrites walk the entity tree.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from ..schemas.entities import Entity

logger = logging.getLogger(__name__)

Listener = Callable[[str], None]
_Transform = Callable[[Entity], "Entity | None"]


@dataclass(frozen=True)
class Removal:
    """Where an entity sat before it was removed, so it can be put back."""

    feed: str
    parent_id: str | None
    index: int
    entity: Entity


def _rewrite(
    entities: Iterable[Entity], canonical_id: str, transform: _Transform
) -> tuple[list[Entity], bool]:
    rewritten: list[Entity] = []
    changed = False
    for entity in entities:
        if entity.canonical_id == canonical_id:
            changed = True
            replacement = transform(entity)
            if replacement is not None:
                rewritten.append(replacement)
            continue
        if entity.comments:
            children, child_changed = _rewrite(entity.comments, canonical_id, transform)
            if child_changed:
                entity = entity.model_copy(update={"comments": tuple(_dedupe(children))})
                changed = True
        rewritten.append(entity)
    return rewritten, changed


def _locate(
    entities: Iterable[Entity], canonical_id: str, parent_id: str | None = None
) -> tuple[str | None, int, Entity] | None:
    for index, entity in enumerate(entities):
        if entity.canonical_id == canonical_id:
            return parent_id, index, entity
        if entity.comments:
            found = _locate(entity.comments, canonical_id, entity.canonical_id)
            if found is not None:
                return found
    return None


def _dedupe(entities: Iterable[Entity]) -> list[Entity]:
    unique: dict[str, Entity] = {}
    for entity in entities:
        unique.setdefault(entity.canonical_id, entity)
    return list(unique.values())


class FeedStore:
    def __init__(self) -> None:
        self._feeds: dict[str, list[Entity]] = {}
        self._listeners: list[Listener] = []

    # -- observation -------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener(feed)`` after every change; returns an unsubscribe callable."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, feeds: Iterable[str]) -> None:
        for feed in dict.fromkeys(feeds):
            for listener in list(self._listeners):
                listener(feed)

    # -- reads -------------------------------------------------------

    def feeds(self) -> tuple[str, ...]:
        return tuple(self._feeds)

    def entities(self, feed: str) -> tuple[Entity, ...]:
        return tuple(self._feeds.get(feed, ()))

    def ids(self, feed: str) -> list[str]:
        return [entity.canonical_id for entity in self._feeds.get(feed, ())]

    def snapshot(self) -> dict[str, tuple[Entity, ...]]:
        return {feed: tuple(entities) for feed, entities in self._feeds.items()}

    def get(self, canonical_id: str, feed: str | None = None) -> Entity | None:
        feeds = [feed] if feed is not None else list(self._feeds)
        for name in feeds:
            found = _locate(self._feeds.get(name, ()), canonical_id)
            if found is not None:
                return found[2]
        return None

    def contains(self, canonical_id: str, feed: str | None = None) -> bool:
        return self.get(canonical_id, feed) is not None

    def feeds_containing(self, canonical_id: str) -> list[str]:
        return [name for name, entities in self._feeds.items() if _locate(entities, canonical_id) is not None]

    def parent_of(self, canonical_id: str) -> Entity | None:
        for entities in self._feeds.values():
            found = _locate(entities, canonical_id)
            if found is not None and found[0] is not None:
                return self.get(found[0])
        return None

    # -- writes ------------------------------------------------------

    def replace_all(self, feed: str, entities: Iterable[Entity], *, keep_pending: bool = True) -> list[Entity]:
        """Replace a feed's contents, dropping duplicates.

        With ``keep_pending`` entities still in optimistic/updating transit
        survive: unsent creates stay at the front and in-flight edits shadow
        the server copy.
        """

        incoming = _dedupe(entities)
        if keep_pending:
            current = self._feeds.get(feed, [])
            pending = {entity.canonical_id: entity for entity in current if entity.is_pending}
            incoming_ids = {entity.canonical_id for entity in incoming}
            leading = [entity for entity in current if entity.is_pending and entity.canonical_id not in incoming_ids]
            incoming = leading + [pending.get(entity.canonical_id, entity) for entity in incoming]
        self._feeds[feed] = incoming
        self._notify([feed])
        return list(incoming)

    def extend(self, feed: str, entities: Iterable[Entity]) -> list[Entity]:
        """Append entities whose canonical id is not already in the feed; returns those appended."""

        current = self._feeds.setdefault(feed, [])
        known = {entity.canonical_id for entity in current}
        appended: list[Entity] = []
        for entity in entities:
            if entity.canonical_id in known:
                continue
            known.add(entity.canonical_id)
            appended.append(entity)
        if appended:
            current.extend(appended)
            self._notify([feed])
        return appended

    def prepend(self, feed: str, entity: Entity) -> None:
        current = self._feeds.setdefault(feed, [])
        self._feeds[feed] = [entity] + [item for item in current if item.canonical_id != entity.canonical_id]
        self._notify([feed])

    def insert(self, feed: str, index: int, entity: Entity) -> None:
        current = [item for item in self._feeds.get(feed, []) if item.canonical_id != entity.canonical_id]
        current.insert(max(0, min(index, len(current))), entity)
        self._feeds[feed] = current
        self._notify([feed])

    def update(self, canonical_id: str, transform: _Transform) -> list[str]:
        """Apply ``transform`` to every copy of an entity; returns the feeds touched."""

        touched: list[str] = []
        for feed, entities in self._feeds.items():
            rewritten, changed = _rewrite(entities, canonical_id, transform)
            if changed:
                self._feeds[feed] = _dedupe(rewritten)
                touched.append(feed)
        self._notify(touched)
        return touched

    def replace(self, canonical_id: str, entity: Entity) -> list[str]:
        """Swap the entity stored under ``canonical_id`` for ``entity`` (whose id may differ)."""

        return self.update(canonical_id, lambda _current: entity)

    def remove(self, canonical_id: str) -> list[Removal]:
        removals: list[Removal] = []
        for feed, entities in self._feeds.items():
            found = _locate(entities, canonical_id)
            if found is None:
                continue
            parent_id, index, entity = found
            removals.append(Removal(feed=feed, parent_id=parent_id, index=index, entity=entity))
            self._feeds[feed], _changed = _rewrite(entities, canonical_id, lambda _entity: None)
        self._notify(removal.feed for removal in removals)
        return removals

    def add_child(self, parent_id: str, child: Entity, *, index: int | None = None) -> list[str]:
        """Attach ``child`` to every copy of the parent; ``index=None`` appends."""

        def _attach(parent: Entity) -> Entity:
            siblings = [item for item in parent.comments if item.canonical_id != child.canonical_id]
            position = len(siblings) if index is None else max(0, min(index, len(siblings)))
            siblings.insert(position, child)
            return parent.model_copy(update={"comments": tuple(siblings)})

        return self.update(parent_id, _attach)

    def restore(self, removals: Iterable[Removal]) -> None:
        """Put removed entities back at their original positions."""

        for removal in removals:
            if removal.parent_id is None:
                if not self.contains(removal.entity.canonical_id, removal.feed):
                    self.insert(removal.feed, removal.index, removal.entity)
            elif self.contains(removal.parent_id, removal.feed):
                self._restore_child(removal)
            else:
                logger.warning(
                    "Cannot restore %s: parent %s is gone from feed %s",
                    removal.entity.canonical_id,
                    removal.parent_id,
                    removal.feed,
                )

    def _restore_child(self, removal: Removal) -> None:
        assert removal.parent_id is not None

        def _attach(parent: Entity) -> Entity:
            siblings = [item for item in parent.comments if item.canonical_id != removal.entity.canonical_id]
            siblings.insert(max(0, min(removal.index, len(siblings))), removal.entity)
            return parent.model_copy(update={"comments": tuple(siblings)})

        entities = self._feeds.get(removal.feed, [])
        rewritten, changed = _rewrite(entities, removal.parent_id, _attach)
        if changed:
            self._feeds[removal.feed] = rewritten
            self._notify([removal.feed])

    def clear(self, feed: str | None = None) -> None:
        if feed is None:
            feeds = list(self._feeds)
            self._feeds.clear()
        else:
            feeds = [feed]
            self._feeds.pop(feed, None)
        self._notify(feeds)


__all__ = ["FeedStore", "Removal"]
