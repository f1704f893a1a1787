"""Cursor-based page loading for one feed view."""
from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from ..clients.wall_api import FeedAPI
from ..config import Settings, get_settings
from ..errors import RemoteCallError
from ..schemas.entities import ActingUser
from ..schemas.feed import PageEnvelope, PageLoadResult, PaginationState
from .entity_normalizer import normalize_many
from .feed_store import FeedStore

logger = logging.getLogger(__name__)

_ENTITY_KEYS = ("posts", "entities", "items", "results")
_CURSOR_KEYS = ("nextCursor", "next_cursor", "cursor", "lastPostId", "last_post_id")
_HAS_MORE_KEYS = ("hasMore", "has_more")


def _pick(sources: list[Mapping[str, Any]], keys: tuple[str, ...]) -> Any:
    for source in sources:
        for key in keys:
            if source.get(key) is not None:
                return source[key]
    return None


def parse_page(raw: Any) -> PageEnvelope:
    """Unwrap the list envelopes the backend has used (``data.posts``, ``posts``, bare ``data`` ...)."""

    if isinstance(raw, list):
        return PageEnvelope(entities=[item for item in raw if isinstance(item, Mapping)], next_cursor=None)
    if not isinstance(raw, Mapping):
        return PageEnvelope(entities=[], next_cursor=None)

    data = raw.get("data")
    sources = [data, raw] if isinstance(data, Mapping) else [raw]

    entities = _pick(sources, _ENTITY_KEYS)
    if entities is None and isinstance(data, list):
        entities = data
    if not isinstance(entities, list):
        entities = []

    cursor = _pick(sources, _CURSOR_KEYS)
    cursor = str(cursor).strip() if cursor is not None and not isinstance(cursor, bool) else None
    has_more = _pick(sources, _HAS_MORE_KEYS)

    return PageEnvelope(
        entities=[item for item in entities if isinstance(item, Mapping)],
        next_cursor=cursor or None,
        server_has_more=has_more if isinstance(has_more, bool) else None,
    )


def _page_has_more(page: PageEnvelope) -> bool:
    # An empty page is the end of the feed even when a cursor came back.
    return bool(page.next_cursor) and bool(page.entities) and page.server_has_more is not False


class PaginationController:
    """Loads pages of one feed view into the store without duplicating entities."""

    def __init__(
        self,
        feed: str,
        api: FeedAPI,
        store: FeedStore,
        *,
        acting_user: ActingUser | None = None,
        settings: Settings | None = None,
        page_size: int | None = None,
    ) -> None:
        self.feed = feed
        self._api = api
        self._store = store
        self._acting_user = acting_user
        self.page_size = page_size or (settings or get_settings()).page_size
        self.state = PaginationState()

    @property
    def has_more(self) -> bool:
        return self.state.has_more

    @property
    def is_loading(self) -> bool:
        return self.state.is_loading_more

    async def load_page(self, reset: bool = False) -> PageLoadResult:
        """Fetch the first page (``reset``) or the next one and merge it into the store.

        A call made while another load for this feed is in flight does nothing,
        as does a non-reset call once the feed is exhausted.
        """

        if self.state.is_loading_more:
            logger.debug("Load for feed %s already in flight; ignoring", self.feed)
            return PageLoadResult(has_more=self.state.has_more, skipped=True)
        if not reset and not self.state.has_more:
            logger.debug("Feed %s is exhausted; nothing to load", self.feed)
            return PageLoadResult(has_more=False, skipped=True)

        cursor = None if reset else self.state.next_cursor
        self.state.is_loading_more = True
        try:
            try:
                raw = await self._api.list(self.feed, cursor, self.page_size)
            except RemoteCallError as exc:
                logger.exception("Loading feed %s (cursor=%s) failed", self.feed, cursor)
                return PageLoadResult(has_more=self.state.has_more, failure=exc)

            page = parse_page(raw)
            entities = normalize_many(page.entities, self._acting_user)
            if reset:
                added = len(self._store.replace_all(self.feed, entities))
            else:
                added = len(self._store.extend(self.feed, entities))

            has_more = _page_has_more(page)
            self.state.next_cursor = page.next_cursor if has_more else None
            self.state.has_more = has_more
            self.state.pages_loaded = 1 if reset else self.state.pages_loaded + 1
            logger.info(
                "Loaded %d entities into feed %s (%d new, has_more=%s)",
                len(page.entities),
                self.feed,
                added,
                has_more,
            )
            return PageLoadResult(added=added, has_more=has_more)
        finally:
            self.state.is_loading_more = False

    async def refresh(self) -> PageLoadResult:
        return await self.load_page(reset=True)

    async def reload(self) -> PageLoadResult:
        """Re-fetch every page loaded so far and swap them in together.

        Unlike :meth:`refresh` the window keeps its size: entities past the
        first page stay in the store with the server's current values.
        """

        if self.state.is_loading_more:
            logger.debug("Load for feed %s already in flight; ignoring", self.feed)
            return PageLoadResult(has_more=self.state.has_more, skipped=True)

        window = max(1, self.state.pages_loaded)
        self.state.is_loading_more = True
        try:
            collected: list[Mapping[str, Any]] = []
            cursor: str | None = None
            has_more = False
            fetched = 0
            while fetched < window:
                try:
                    raw = await self._api.list(self.feed, cursor, self.page_size)
                except RemoteCallError as exc:
                    logger.exception("Reloading feed %s (cursor=%s) failed", self.feed, cursor)
                    return PageLoadResult(has_more=self.state.has_more, failure=exc)
                page = parse_page(raw)
                fetched += 1
                collected.extend(page.entities)
                has_more = _page_has_more(page)
                cursor = page.next_cursor if has_more else None
                if not has_more:
                    break

            entities = normalize_many(collected, self._acting_user)
            added = len(self._store.replace_all(self.feed, entities))
            self.state.next_cursor = cursor
            self.state.has_more = has_more
            self.state.pages_loaded = fetched
            logger.info("Reloaded %d pages of feed %s (%d entities)", fetched, self.feed, added)
            return PageLoadResult(added=added, has_more=has_more)
        finally:
            self.state.is_loading_more = False


__all__ = ["PaginationController", "parse_page"]
