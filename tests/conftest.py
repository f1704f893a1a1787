"""Shared fixtures: an in-memory wall API and the engine wired around it."""
from __future__ import annotations

from typing import Any, Callable

import pytest

from wallfeed.config import Settings
from wallfeed.constants import HOME_FEED
from wallfeed.errors import RemoteCallError
from wallfeed.local_store import FileLocalStore
from wallfeed.schemas import ActingUser, EntityDraft, EntityPatch
from wallfeed.services import FeedStore, MutationManager, PaginationController, ReactionLedger, normalize_many


class FakeWallAPI:
    """Records every call; ``fail_on`` makes an operation raise until ``recover`` is called."""

    def __init__(self) -> None:
        self.calls: list[tuple[Any, ...]] = []
        self.pages: dict[tuple[str, str | None], Any] = {}
        self.failures: dict[str, RemoteCallError] = {}
        self.reactions: dict[tuple[str, str], int] = {}
        self.responses: dict[str, Any] = {}
        self._next_id = 100

    def fail_on(self, operation: str, message: str = "Network error", status_code: int | None = None) -> None:
        self.failures[operation] = RemoteCallError(message, status_code=status_code)

    def recover(self, operation: str) -> None:
        self.failures.pop(operation, None)

    def add_page(self, feed: str, cursor: str | None, page: Any) -> None:
        self.pages[(feed, cursor)] = page

    def count(self, operation: str) -> int:
        return sum(1 for call in self.calls if call[0] == operation)

    def _record(self, operation: str, *args: Any) -> None:
        self.calls.append((operation, *args))
        error = self.failures.get(operation)
        if error is not None:
            raise error

    def _new_id(self) -> str:
        self._next_id += 1
        return str(self._next_id)

    async def create(self, draft: EntityDraft) -> dict[str, Any]:
        self._record("create", draft)
        if "create" in self.responses:
            return self.responses["create"]
        return {"post_id": self._new_id(), "content": draft.content, "author_id": "u1", "reaction_counts": {}}

    async def update(self, post_id: str, patch: EntityPatch) -> dict[str, Any] | None:
        self._record("update", post_id, patch)
        return self.responses.get("update")

    async def delete(self, post_id: str) -> None:
        self._record("delete", post_id)

    async def list(self, feed: str, cursor: str | None, page_size: int) -> Any:
        self._record("list", feed, cursor, page_size)
        page = self.pages.get((feed, cursor), {"posts": [], "nextCursor": None})
        return page() if callable(page) else page

    def _bump(self, target: str, reaction_type: str, delta: int) -> None:
        key = (target, reaction_type)
        self.reactions[key] = max(0, self.reactions.get(key, 0) + delta)

    async def add_reaction(self, post_id: str, reaction_type: str) -> None:
        self._record("add_reaction", post_id, reaction_type)
        self._bump(post_id, reaction_type, 1)

    async def remove_reaction(self, post_id: str, reaction_type: str) -> None:
        self._record("remove_reaction", post_id, reaction_type)
        self._bump(post_id, reaction_type, -1)

    async def add_comment(self, post_id: str, draft: EntityDraft) -> dict[str, Any]:
        self._record("add_comment", post_id, draft)
        return {"comment_id": self._new_id(), "post_id": post_id, "content": draft.content, "author_id": "u1"}

    async def edit_comment(self, comment_id: str, patch: EntityPatch) -> dict[str, Any] | None:
        self._record("edit_comment", comment_id, patch)
        return self.responses.get("edit_comment")

    async def delete_comment(self, comment_id: str) -> None:
        self._record("delete_comment", comment_id)

    async def add_reply(self, post_id: str, comment_id: str, draft: EntityDraft) -> dict[str, Any]:
        self._record("add_reply", post_id, comment_id, draft)
        return {"reply_id": self._new_id(), "content": draft.content, "author_id": "u1"}

    async def delete_reply(self, post_id: str, comment_id: str, reply_id: str) -> None:
        self._record("delete_reply", post_id, comment_id, reply_id)

    async def add_comment_reaction(self, comment_id: str, reaction_type: str) -> None:
        self._record("add_comment_reaction", comment_id, reaction_type)
        self._bump(f"comment:{comment_id}", reaction_type, 1)

    async def remove_comment_reaction(self, comment_id: str, reaction_type: str) -> None:
        self._record("remove_comment_reaction", comment_id, reaction_type)
        self._bump(f"comment:{comment_id}", reaction_type, -1)


def post_payload(post_id: str, content: str = "", **extra: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "post_id": post_id,
        "content": content or f"post {post_id}",
        "author_id": extra.pop("author_id", "u2"),
        "username": extra.pop("username", "Sam Ortiz"),
        "created_at": "2024-05-01T09:00:00+00:00",
    }
    payload.update(extra)
    return payload


@pytest.fixture
def make_post() -> Callable[..., dict[str, Any]]:
    return post_payload


@pytest.fixture
def acting_user() -> ActingUser:
    return ActingUser(id="u1", display_name="Dana Reyes", avatar_url="https://cdn.example.com/dana.png")


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(state_dir=tmp_path / "state", page_size=2, api_base_url="https://wall.example.com/api")


@pytest.fixture
def api() -> FakeWallAPI:
    return FakeWallAPI()


@pytest.fixture
def store() -> FeedStore:
    return FeedStore()


@pytest.fixture
def ledger(settings: Settings) -> ReactionLedger:
    return ReactionLedger(FileLocalStore(settings.state_dir), "u1", settings=settings)


@pytest.fixture
def controller(api: FakeWallAPI, store: FeedStore, acting_user: ActingUser, settings: Settings) -> PaginationController:
    return PaginationController(HOME_FEED, api, store, acting_user=acting_user, settings=settings)


@pytest.fixture
def manager(
    api: FakeWallAPI,
    store: FeedStore,
    ledger: ReactionLedger,
    acting_user: ActingUser,
    controller: PaginationController,
    settings: Settings,
) -> MutationManager:
    return MutationManager(
        api,
        store,
        ledger,
        acting_user,
        controllers={HOME_FEED: controller},
        settings=settings,
    )


@pytest.fixture
def seed(store: FeedStore, acting_user: ActingUser) -> Callable[..., None]:
    def _seed(*payloads: dict[str, Any], feed: str = HOME_FEED) -> None:
        store.replace_all(feed, normalize_many(payloads, acting_user))

    return _seed
