"""Local record of which reactions the signed-in user has applied.

Read endpoints often return only aggregate counts, so they cannot say whether
*this* user's heart should be filled. The ledger remembers every toggle the
user made, persisted under the user's namespace so it survives restarts.
When the ledger has no entry for a pair, :meth:`ReactionLedger.has_reacted`
falls back to an approximation: the user is treated as having reacted when
the server listed them among the reacting users, or when the entity is their
own and carries a nonzero count of that reaction. The second rule can be
wrong (someone else may have reacted to the user's post) and is kept only
because nothing better is available from count-only payloads.

Two processes sharing one store directory overwrite each other's ledger;
the last writer wins.
"""
from __future__ import annotations

import json
import logging
from collections.abc import Mapping

from ..config import Settings, get_settings
from ..constants import COMMENT_LEDGER_PREFIX
from ..local_store import LocalStore
from ..schemas.entities import Entity, EntityKind

logger = logging.getLogger(__name__)


def ledger_key(entity: Entity) -> str:
    """Ledger key for an entity; comments and replies share the ``comment_`` space."""

    if entity.kind is EntityKind.POST:
        return entity.canonical_id
    return f"{COMMENT_LEDGER_PREFIX}{entity.canonical_id}"


def _namespace(user_id: str) -> str:
    return f"user_{user_id}"


class ReactionLedger:
    """Persistent ``(entity id, reaction type) -> bool`` overlay for one user."""

    def __init__(
        self,
        store: LocalStore,
        user_id: str | None,
        *,
        settings: Settings | None = None,
    ) -> None:
        self._store = store
        self._key = (settings or get_settings()).ledger_key
        self._user_id: str | None = None
        self._entries: dict[str, dict[str, bool]] = {}
        self.switch_user(user_id)

    @property
    def user_id(self) -> str | None:
        return self._user_id

    def switch_user(self, user_id: str | None) -> None:
        """Load the ledger belonging to ``user_id`` (``None`` for signed out)."""

        self._user_id = user_id
        self._entries = self._load() if user_id else {}

    def _load(self) -> dict[str, dict[str, bool]]:
        assert self._user_id is not None
        blob = self._store.get(_namespace(self._user_id), self._key)
        if blob is None:
            return {}
        try:
            data = json.loads(blob.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            logger.warning("Discarding unreadable reaction ledger for user %s", self._user_id)
            return {}
        if not isinstance(data, Mapping):
            logger.warning("Discarding malformed reaction ledger for user %s", self._user_id)
            return {}

        entries: dict[str, dict[str, bool]] = {}
        for entity_id, reactions in data.items():
            if not isinstance(reactions, Mapping):
                continue
            entries[str(entity_id)] = {
                str(reaction_type): bool(present)
                for reaction_type, present in reactions.items()
                if isinstance(present, bool)
            }
        return entries

    def _persist(self) -> None:
        if self._user_id is None:
            return
        blob = json.dumps(self._entries, sort_keys=True).encode("utf-8")
        self._store.set(_namespace(self._user_id), self._key, blob)

    def entry(self, entity_id: str, reaction_type: str) -> bool | None:
        """The recorded toggle state, or ``None`` when the user never toggled this pair."""

        return self._entries.get(entity_id, {}).get(reaction_type)

    def has_reacted(self, entity_id: str, reaction_type: str, entity: Entity | None = None) -> bool:
        recorded = self.entry(entity_id, reaction_type)
        if recorded is not None:
            return recorded
        if entity is None or self._user_id is None:
            return False
        bucket = entity.reactions.get(reaction_type)
        if bucket is None:
            return False
        if self._user_id in bucket.user_ids:
            return True
        return entity.author.id == self._user_id and bucket.count > 0

    def record(self, entity_id: str, reaction_type: str, present: bool) -> None:
        """Record a toggle and write the ledger back immediately."""

        self._entries.setdefault(entity_id, {})[reaction_type] = bool(present)
        self._persist()

    def discard(self, entity_id: str, reaction_type: str) -> None:
        """Drop one recorded toggle so the pair falls back to the heuristic again."""

        reactions = self._entries.get(entity_id)
        if reactions is None or reactions.pop(reaction_type, None) is None:
            return
        if not reactions:
            del self._entries[entity_id]
        self._persist()

    def reacted_types(self, entity_id: str) -> list[str]:
        return [reaction_type for reaction_type, present in self._entries.get(entity_id, {}).items() if present]

    def forget(self, entity_id: str) -> None:
        if self._entries.pop(entity_id, None) is not None:
            self._persist()

    def clear(self) -> None:
        """Wipe the current user's ledger (explicit logout)."""

        self._entries = {}
        if self._user_id is not None:
            self._store.delete(_namespace(self._user_id), self._key)

    def snapshot(self) -> dict[str, dict[str, bool]]:
        return {entity_id: dict(reactions) for entity_id, reactions in self._entries.items()}


__all__ = ["ReactionLedger", "ledger_key"]
