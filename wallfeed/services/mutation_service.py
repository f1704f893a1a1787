"""Optimistic create/edit/delete/react for posts, comments and replies.

Every operation applies its change to the :class:`FeedStore` first, then
calls the remote API, then either reconciles with the server response or
rolls the local change back. Remote failures never escape as exceptions;
they come back as a :class:`MutationResult` carrying a
:class:`MutationFailure` so the caller can offer a retry. Validation and
"entity busy" problems are raised before anything is touched.
"""
from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from ..clients.wall_api import FeedAPI
from ..config import Settings, get_settings
from ..constants import HOME_FEED
from ..errors import (
    DraftValidationError,
    EntityBusyError,
    EntityNotFoundError,
    MutationFailure,
    MutationResult,
    RemoteCallError,
)
from ..schemas.entities import (
    ActingUser,
    Entity,
    EntityKind,
    LifecycleState,
    MediaKind,
    ReactionBucket,
    ReactionMap,
)
from ..schemas.feed import EntityDraft, EntityPatch
from .entity_normalizer import media_field, normalize, normalize_to_raw
from .feed_store import FeedStore
from .pagination_service import PaginationController
from .reaction_ledger import ReactionLedger, ledger_key

logger = logging.getLogger(__name__)

ReactionDetector = Callable[[Entity, str], "str | None"]
"""Given an entity and the reaction about to be added, name an existing reaction to replace."""

# When the server answers with any key of a group, the local value for the
# whole group is dropped before merging so the server copy wins.
_MERGE_GROUPS: tuple[tuple[str, ...], ...] = (
    ("author", "author_id", "authorId", "authorName", "author_name", "username", "user_id"),
    ("authorAvatar", "author_avatar", "avatar"),
    ("authorPosition", "author_position", "position"),
    ("content", "post_content", "comment", "text"),
    ("created_at", "createdAt", "timestamp"),
    ("updated_at", "updatedAt"),
    ("media", "images", "videos", "documents", "links"),
    ("reaction_counts", "reactions", "likes"),
    ("comments", "replies"),
    ("is_pinned", "isPinned"),
    ("is_comments_allowed", "allow_comments"),
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _coerce_draft(draft: EntityDraft | Mapping[str, Any] | str, *, allow_media_only: bool = True) -> EntityDraft:
    if isinstance(draft, str):
        draft = EntityDraft(content=draft)
    elif not isinstance(draft, EntityDraft):
        try:
            draft = EntityDraft.model_validate(draft)
        except ValidationError as exc:
            raise DraftValidationError(f"Invalid draft: {exc}") from exc
    if not draft.content.strip() and not (allow_media_only and draft.media):
        raise DraftValidationError("Content cannot be empty")
    return draft


def _coerce_patch(patch: EntityPatch | Mapping[str, Any] | str) -> EntityPatch:
    if isinstance(patch, str):
        patch = EntityPatch(content=patch)
    elif not isinstance(patch, EntityPatch):
        try:
            patch = EntityPatch.model_validate(patch)
        except ValidationError as exc:
            raise DraftValidationError(f"Invalid patch: {exc}") from exc
    if not patch.changed_fields():
        raise DraftValidationError("Nothing to update")
    return patch


def _keep_children(entity: Entity) -> Callable[[Entity], Entity]:
    """Swap in ``entity`` but keep the children the store holds at write time."""

    return lambda current: entity.model_copy(update={"comments": current.comments})


def _descendant_ids(entity: Entity) -> list[str]:
    ids: list[str] = []
    for child in entity.comments:
        ids.append(child.canonical_id)
        ids.extend(_descendant_ids(child))
    return ids


def _toggle_bucket(reactions: ReactionMap, reaction_type: str, user_id: str, *, present: bool) -> ReactionMap:
    updated = dict(reactions)
    bucket = updated.get(reaction_type, ReactionBucket())
    if present:
        users = bucket.user_ids if user_id in bucket.user_ids else bucket.user_ids + (user_id,)
        count = bucket.count + 1
    else:
        users = tuple(uid for uid in bucket.user_ids if uid != user_id)
        count = max(0, bucket.count - 1)
    if count:
        updated[reaction_type] = ReactionBucket(count=count, user_ids=users)
    else:
        updated.pop(reaction_type, None)
    return updated


class MutationManager:
    """Applies user mutations optimistically and reconciles them with the server."""

    def __init__(
        self,
        api: FeedAPI,
        store: FeedStore,
        ledger: ReactionLedger,
        acting_user: ActingUser,
        *,
        controllers: Mapping[str, PaginationController] | None = None,
        settings: Settings | None = None,
        reaction_detector: ReactionDetector | None = None,
    ) -> None:
        self._api = api
        self._store = store
        self._ledger = ledger
        self._acting_user = acting_user
        self._controllers: dict[str, PaginationController] = dict(controllers or {})
        self._temp_prefix = (settings or get_settings()).temp_id_prefix
        self._reaction_detector = reaction_detector
        self._in_flight: set[str] = set()
        # Outcomes of child mutations that finished while their parent was
        # out of the store, keyed by the child id the parent still holds.
        self._settled: dict[str, Entity] = {}

    def register_controller(self, controller: PaginationController) -> None:
        self._controllers[controller.feed] = controller

    def is_temporary(self, canonical_id: str) -> bool:
        return canonical_id.startswith(self._temp_prefix)

    def is_busy(self, canonical_id: str) -> bool:
        entity = self._store.get(canonical_id)
        return canonical_id in self._in_flight or (entity is not None and entity.is_pending)

    # -- helpers -----------------------------------------------------

    def _temp_id(self) -> str:
        return f"{self._temp_prefix}{uuid.uuid4().hex}"

    def _require(self, canonical_id: str) -> Entity:
        entity = self._store.get(canonical_id)
        if entity is None:
            raise EntityNotFoundError(f"No entity with id {canonical_id} in the feed store")
        if self.is_busy(canonical_id):
            raise EntityBusyError(f"Entity {canonical_id} has a mutation in flight")
        return entity

    @staticmethod
    def _server_id(entity: Entity) -> str:
        if entity.server_id is None:
            raise EntityNotFoundError(f"Entity {entity.canonical_id} is not known to the server yet")
        return entity.server_id

    def _local_entity(
        self,
        draft: EntityDraft,
        *,
        kind: EntityKind,
        canonical_id: str,
        parent_id: str | None = None,
    ) -> Entity:
        raw = {
            "canonical_id": canonical_id,
            "kind": kind.value,
            "parent_id": parent_id,
            "author": self._acting_user.as_author().model_dump(),
            "content": draft.content.strip(),
            "tags": draft.tags,
            "media": draft.media,
            "mentions": draft.mentions,
            "created_at": _now(),
            "lifecycle_state": LifecycleState.OPTIMISTIC.value,
        }
        return normalize(raw, self._acting_user, kind=kind, parent_id=parent_id)

    def _apply_patch(self, entity: Entity, patch: EntityPatch) -> Entity:
        raw = normalize_to_raw(entity)
        changes = patch.changed_fields()
        if "content" in changes:
            raw["content"] = changes["content"].strip()
        for key in ("tags", "mentions"):
            if key in changes:
                raw[key] = changes[key]
        if "media" in changes:
            for kind in MediaKind:
                raw.pop(media_field(kind), None)
            raw["media"] = changes["media"]
        raw["updated_at"] = _now()
        raw["lifecycle_state"] = LifecycleState.UPDATING.value
        return normalize(raw, self._acting_user, kind=entity.kind, parent_id=entity.parent_id)

    def _confirm(self, local: Entity, response: Any, *, keep_identity: bool) -> Entity:
        """Merge a server response over the local entity and mark it confirmed."""

        server_raw = dict(response) if isinstance(response, Mapping) else {}
        base = normalize_to_raw(local)
        for key in ("canonical_id", "server_id", "lifecycle_state"):
            base.pop(key, None)
        for group in _MERGE_GROUPS:
            if any(key in server_raw for key in group):
                for key in group:
                    base.pop(key, None)

        merged = {**base, **server_raw, "kind": local.kind.value}
        merged["lifecycle_state"] = LifecycleState.CONFIRMED.value
        if local.parent_id is not None:
            merged["parent_id"] = local.parent_id
        confirmed = normalize(merged, self._acting_user, kind=local.kind, parent_id=local.parent_id)

        if not keep_identity and confirmed.server_id is None:
            logger.warning("Server response for %s carried no id; keeping the local id", local.canonical_id)
            keep_identity = True
        if keep_identity:
            confirmed = confirmed.model_copy(
                update={"canonical_id": local.canonical_id, "server_id": local.server_id}
            )
        return confirmed

    def _failure(
        self,
        operation: str,
        canonical_id: str | None,
        error: RemoteCallError,
        *,
        draft: Any = None,
    ) -> MutationResult:
        failure = MutationFailure.from_error(operation, canonical_id, error, draft=draft)
        return MutationResult(operation, failure=failure)

    def _write_back(self, canonical_id: str, entity: Entity) -> None:
        if not self._store.update(canonical_id, _keep_children(entity)):
            self._settled[canonical_id] = entity

    def _settle_children(self, entity: Entity) -> Entity:
        """Bring a removed subtree up to date before it goes back into the store.

        Children whose mutation finished while the subtree was out of the
        store take their settled version; pending children with nothing in
        flight and no settled version are dropped (creates) or confirmed
        (edits).
        """

        children: list[Entity] = []
        for child in entity.comments:
            settled = self._settled.pop(child.canonical_id, None)
            if settled is not None:
                child = settled.model_copy(update={"comments": child.comments})
            elif child.is_pending and child.canonical_id not in self._in_flight:
                if child.lifecycle_state is LifecycleState.OPTIMISTIC:
                    logger.info("Dropping stale optimistic child %s of %s", child.canonical_id, entity.canonical_id)
                    continue
                child = child.model_copy(update={"lifecycle_state": LifecycleState.CONFIRMED})
            children.append(self._settle_children(child))
        return entity.model_copy(update={"comments": tuple(children)})

    # -- create ------------------------------------------------------

    async def create(self, draft: EntityDraft | Mapping[str, Any] | str, *, feed: str = HOME_FEED) -> MutationResult:
        """Insert a post optimistically at the front of ``feed`` and confirm it with the server."""

        draft = _coerce_draft(draft)
        temp_id = self._temp_id()
        optimistic = self._local_entity(draft, kind=EntityKind.POST, canonical_id=temp_id)
        self._store.prepend(feed, optimistic)

        self._in_flight.add(temp_id)
        try:
            response = await self._api.create(draft)
        except RemoteCallError as exc:
            logger.exception("Creating post %s failed; rolling back", temp_id)
            self._store.remove(temp_id)
            return self._failure("create", temp_id, exc, draft=draft)
        finally:
            self._in_flight.discard(temp_id)

        confirmed = self._confirm(optimistic, response, keep_identity=False)
        if not self._store.replace(temp_id, confirmed):
            # A reset while the call was in flight may have replaced the feed.
            self._store.prepend(feed, confirmed)
        logger.info("Post %s confirmed as %s", temp_id, confirmed.canonical_id)
        return MutationResult("create", entity=confirmed)

    async def _create_child(
        self,
        operation: str,
        parent: Entity,
        kind: EntityKind,
        draft: EntityDraft,
        call: Callable[[], Awaitable[Any]],
    ) -> MutationResult:
        temp_id = self._temp_id()
        optimistic = self._local_entity(draft, kind=kind, canonical_id=temp_id, parent_id=parent.canonical_id)
        self._store.add_child(parent.canonical_id, optimistic)

        self._in_flight.add(temp_id)
        try:
            response = await call()
        except RemoteCallError as exc:
            logger.exception("%s on %s failed; rolling back", operation, parent.canonical_id)
            self._store.remove(temp_id)
            return self._failure(operation, temp_id, exc, draft=draft)
        finally:
            self._in_flight.discard(temp_id)

        confirmed = self._confirm(optimistic, response, keep_identity=False)
        if not self._store.replace(temp_id, confirmed) and not self._store.add_child(parent.canonical_id, confirmed):
            # The parent is out of the store, e.g. while its own delete is in flight.
            self._settled[temp_id] = confirmed
        return MutationResult(operation, entity=confirmed)

    async def add_comment(self, post_id: str, draft: EntityDraft | Mapping[str, Any] | str) -> MutationResult:
        draft = _coerce_draft(draft, allow_media_only=False)
        post = self._require(post_id)
        if post.kind is not EntityKind.POST:
            raise DraftValidationError("Comments can only be added to posts")
        if not post.is_comments_allowed:
            raise DraftValidationError("Comments are disabled for this post")
        post_sid = self._server_id(post)
        return await self._create_child(
            "add_comment", post, EntityKind.COMMENT, draft, lambda: self._api.add_comment(post_sid, draft)
        )

    async def add_reply(self, comment_id: str, draft: EntityDraft | Mapping[str, Any] | str) -> MutationResult:
        draft = _coerce_draft(draft, allow_media_only=False)
        comment = self._require(comment_id)
        if comment.kind is not EntityKind.COMMENT:
            raise DraftValidationError("Replies can only be added to comments")
        post = self._store.parent_of(comment_id)
        if post is None:
            raise EntityNotFoundError(f"Comment {comment_id} has no parent post in the feed store")
        post_sid, comment_sid = self._server_id(post), self._server_id(comment)
        return await self._create_child(
            "add_reply",
            comment,
            EntityKind.REPLY,
            draft,
            lambda: self._api.add_reply(post_sid, comment_sid, draft),
        )

    # -- edit --------------------------------------------------------

    async def edit(self, canonical_id: str, patch: EntityPatch | Mapping[str, Any] | str) -> MutationResult:
        """Patch a post, comment or reply in place and confirm it with the server."""

        patch = _coerce_patch(patch)
        snapshot = self._require(canonical_id)
        server_id = self._server_id(snapshot)
        patched = self._apply_patch(snapshot, patch)
        if not patched.content.strip() and (snapshot.kind is not EntityKind.POST or not patched.media):
            raise DraftValidationError("Content cannot be empty")

        self._store.replace(canonical_id, patched)
        self._in_flight.add(canonical_id)
        try:
            if snapshot.kind is EntityKind.POST:
                response = await self._api.update(server_id, patch)
            else:
                response = await self._api.edit_comment(server_id, patch)
        except RemoteCallError as exc:
            logger.exception("Editing %s failed; restoring the previous version", canonical_id)
            self._write_back(canonical_id, snapshot.model_copy(update={"lifecycle_state": LifecycleState.CONFIRMED}))
            return self._failure("edit", canonical_id, exc, draft=patch)
        finally:
            self._in_flight.discard(canonical_id)

        confirmed = self._confirm(patched, response, keep_identity=True)
        self._write_back(canonical_id, confirmed)
        return MutationResult("edit", entity=self._store.get(canonical_id) or confirmed)

    async def edit_comment(self, comment_id: str, content: str) -> MutationResult:
        return await self.edit(comment_id, EntityPatch(content=content))

    # -- delete ------------------------------------------------------

    def _delete_call(self, entity: Entity) -> Callable[[], Awaitable[Any]]:
        server_id = self._server_id(entity)
        if entity.kind is EntityKind.POST:
            return lambda: self._api.delete(server_id)
        if entity.kind is EntityKind.COMMENT:
            return lambda: self._api.delete_comment(server_id)

        comment = self._store.parent_of(entity.canonical_id)
        post = self._store.parent_of(comment.canonical_id) if comment is not None else None
        if comment is None or post is None:
            raise EntityNotFoundError(f"Reply {entity.canonical_id} is detached from its comment thread")
        post_sid, comment_sid = self._server_id(post), self._server_id(comment)
        return lambda: self._api.delete_reply(post_sid, comment_sid, server_id)

    async def delete(self, canonical_id: str) -> MutationResult:
        """Remove an entity immediately; put it back where it was if the server refuses."""

        entity = self._require(canonical_id)
        call = self._delete_call(entity)
        removals = self._store.remove(canonical_id)
        self._in_flight.add(canonical_id)
        try:
            await call()
        except RemoteCallError as exc:
            logger.exception("Deleting %s failed; re-inserting it", canonical_id)
            self._store.restore(
                [replace(removal, entity=self._settle_children(removal.entity)) for removal in removals]
            )
            return self._failure("delete", canonical_id, exc)
        finally:
            self._in_flight.discard(canonical_id)

        # A reset page load may have brought the server copy back meanwhile.
        self._store.remove(canonical_id)
        for child_id in _descendant_ids(entity):
            self._settled.pop(child_id, None)
        self._ledger.forget(ledger_key(entity))
        return MutationResult("delete", entity=entity)

    async def delete_comment(self, comment_id: str) -> MutationResult:
        return await self.delete(comment_id)

    async def delete_reply(self, reply_id: str) -> MutationResult:
        return await self.delete(reply_id)

    # -- reactions ---------------------------------------------------

    async def react(
        self,
        canonical_id: str,
        reaction_type: str,
        *,
        detector: ReactionDetector | None = None,
    ) -> MutationResult:
        """Toggle ``reaction_type`` for the acting user.

        ``detector`` (or the manager's default) may name another reaction
        the user already holds that the server would replace; it is removed
        first. The feeds holding the entity are re-fetched afterwards either
        way, since the server owns the counts.
        """

        entity = self._require(canonical_id)
        server_id = self._server_id(entity)
        key = ledger_key(entity)
        user_id = self._acting_user.id
        is_post = entity.kind is EntityKind.POST
        add_call = self._api.add_reaction if is_post else self._api.add_comment_reaction
        remove_call = self._api.remove_reaction if is_post else self._api.remove_comment_reaction

        reacted = self._ledger.has_reacted(key, reaction_type, entity)
        replaced: str | None = None
        detector = detector or self._reaction_detector
        if not reacted and detector is not None:
            candidate = detector(entity, reaction_type)
            if candidate and candidate != reaction_type:
                replaced = candidate

        previous = {name: self._ledger.entry(key, name) for name in (reaction_type, replaced) if name}
        reactions = _toggle_bucket(entity.reactions, reaction_type, user_id, present=not reacted)
        if replaced is not None:
            reactions = _toggle_bucket(reactions, replaced, user_id, present=False)
        self._store.update(canonical_id, lambda current: current.model_copy(update={"reactions": reactions}))
        self._ledger.record(key, reaction_type, not reacted)
        if replaced is not None:
            self._ledger.record(key, replaced, False)

        feeds = self._store.feeds_containing(canonical_id)
        replaced_removed = False
        failure: MutationResult | None = None
        self._in_flight.add(canonical_id)
        try:
            if reacted:
                await remove_call(server_id, reaction_type)
            else:
                if replaced is not None:
                    await remove_call(server_id, replaced)
                    replaced_removed = True
                await add_call(server_id, reaction_type)
        except RemoteCallError as exc:
            logger.exception("Toggling %s on %s failed; reverting", reaction_type, canonical_id)
            for name, value in previous.items():
                if name == replaced and replaced_removed:
                    continue
                if value is None:
                    self._ledger.discard(key, name)
                else:
                    self._ledger.record(key, name, value)
            self._store.update(
                canonical_id, lambda current: current.model_copy(update={"reactions": entity.reactions})
            )
            failure = self._failure("react", canonical_id, exc)
        finally:
            self._in_flight.discard(canonical_id)

        await self._reconcile(feeds)
        if failure is not None:
            return failure
        return MutationResult("react", entity=self._store.get(canonical_id))

    async def _reconcile(self, feeds: list[str]) -> None:
        for feed in feeds:
            controller = self._controllers.get(feed)
            if controller is None:
                continue
            outcome = await controller.reload()
            if outcome.failure is not None:
                logger.warning("Reconciling feed %s after a reaction failed: %s", feed, outcome.failure)
            else:
                logger.info("Reconciled feed %s with the server", feed)

    # -- local-only --------------------------------------------------

    def toggle_pin(self, canonical_id: str) -> Entity:
        """Flip ``is_pinned`` locally; pinning has no remote endpoint."""

        entity = self._require(canonical_id)
        if entity.kind is not EntityKind.POST:
            raise DraftValidationError("Only posts can be pinned")
        pinned = entity.model_copy(update={"is_pinned": not entity.is_pinned})
        self._store.replace(canonical_id, pinned)
        return pinned


__all__ = ["MutationManager", "ReactionDetector"]
