"""Async client for the community wall REST API."""
from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Protocol

import httpx

from ..config import Settings, get_settings
from ..constants import HOME_FEED, OWN_FEED
from ..errors import RemoteCallError
from ..schemas.feed import EntityDraft, EntityPatch

logger = logging.getLogger(__name__)

_USER_FEED_PREFIX = "user:"


class FeedAPI(Protocol):
    """Remote operations the feed engine depends on. Ids are server ids."""

    async def create(self, draft: EntityDraft) -> Mapping[str, Any]: ...

    async def update(self, post_id: str, patch: EntityPatch) -> Mapping[str, Any] | None: ...

    async def delete(self, post_id: str) -> None: ...

    async def list(self, feed: str, cursor: str | None, page_size: int) -> Mapping[str, Any]: ...

    async def add_reaction(self, post_id: str, reaction_type: str) -> None: ...

    async def remove_reaction(self, post_id: str, reaction_type: str) -> None: ...

    async def add_comment(self, post_id: str, draft: EntityDraft) -> Mapping[str, Any]: ...

    async def edit_comment(self, comment_id: str, patch: EntityPatch) -> Mapping[str, Any] | None: ...

    async def delete_comment(self, comment_id: str) -> None: ...

    async def add_reply(self, post_id: str, comment_id: str, draft: EntityDraft) -> Mapping[str, Any]: ...

    async def delete_reply(self, post_id: str, comment_id: str, reply_id: str) -> None: ...

    async def add_comment_reaction(self, comment_id: str, reaction_type: str) -> None: ...

    async def remove_comment_reaction(self, comment_id: str, reaction_type: str) -> None: ...


def tag_names(tags: list[Any]) -> list[str]:
    names: list[str] = []
    for tag in tags:
        if isinstance(tag, Mapping):
            tag = tag.get("tag_name") or tag.get("name")
        if tag is not None and str(tag).strip():
            names.append(str(tag).strip())
    return names


def mention_ids(mentions: list[Any]) -> list[str]:
    ids: list[str] = []
    for mention in mentions:
        if isinstance(mention, Mapping):
            mention = mention.get("employee_id") or mention.get("user_id") or mention.get("id")
        if mention is not None and str(mention).strip():
            ids.append(str(mention).strip())
    return ids


def _error_message(response: httpx.Response, data: Any) -> str:
    if isinstance(data, Mapping):
        message = data.get("message") or data.get("error") or data.get("detail")
        if isinstance(message, str) and message.strip():
            return message.strip()
    return f"HTTP error! status: {response.status_code}"


class WallAPIClient:
    """:class:`FeedAPI` implementation over ``httpx.AsyncClient``."""

    def __init__(
        self,
        user_id: str,
        *,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._user_id = user_id
        headers = {"Accept": "application/json"}
        if self._settings.api_token:
            headers["Authorization"] = f"Bearer {self._settings.api_token}"
        self._client = httpx.AsyncClient(
            base_url=self._settings.api_base_url.rstrip("/") + "/",
            headers=headers,
            timeout=self._settings.api_timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "WallAPIClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        body: Mapping[str, Any] | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        try:
            response = await self._client.request(method, path, json=body, params=params)
        except httpx.TimeoutException as exc:
            raise RemoteCallError("Request timeout - please check your connection") from exc
        except httpx.HTTPError as exc:
            raise RemoteCallError(f"Request to {path} failed: {exc}") from exc

        try:
            data = response.json() if response.content else None
        except ValueError:
            data = {"message": "Invalid response format"}

        if response.is_error:
            logger.warning("Wall API %s %s returned %s", method, path, response.status_code)
            raise RemoteCallError(_error_message(response, data), status_code=response.status_code, detail=data)
        return data

    def _entity_body(self, draft: EntityDraft | EntityPatch) -> dict[str, Any]:
        fields = draft.model_dump(exclude_none=True)
        body: dict[str, Any] = {"author_id": self._user_id}
        if "content" in fields:
            body["content"] = fields["content"]
        if "tags" in fields:
            body["tags"] = tag_names(fields["tags"])
        if "mentions" in fields:
            body["mentions"] = mention_ids(fields["mentions"])
        if fields.get("media"):
            body["media"] = fields["media"]
        return body

    @staticmethod
    def _as_record(data: Any) -> Mapping[str, Any]:
        if isinstance(data, Mapping):
            inner = data.get("data")
            if isinstance(inner, Mapping) and not any(key in data for key in ("post_id", "comment_id", "id")):
                return inner
            return data
        return {}

    # -- posts -------------------------------------------------------

    async def create(self, draft: EntityDraft) -> Mapping[str, Any]:
        return self._as_record(await self._request("POST", "posts/create_post", body=self._entity_body(draft)))

    async def update(self, post_id: str, patch: EntityPatch) -> Mapping[str, Any] | None:
        body = self._entity_body(patch)
        if "content" in body:
            body["post_content"] = body["content"]
        data = await self._request("POST", f"posts/edit/{post_id}", body=body)
        return self._as_record(data) or None

    async def delete(self, post_id: str) -> None:
        await self._request("POST", f"posts/delete/{post_id}", body={"author_id": self._user_id})

    async def list(self, feed: str, cursor: str | None, page_size: int) -> Mapping[str, Any]:
        params: dict[str, Any] = {"limit": page_size}
        if cursor:
            params["lastPostId"] = cursor
        if feed == HOME_FEED:
            path = "posts"
        elif feed == OWN_FEED:
            path = "posts/me"
        elif feed.startswith(_USER_FEED_PREFIX):
            path = f"posts/user/{feed[len(_USER_FEED_PREFIX):]}"
        else:
            raise ValueError(f"Unknown feed view: {feed}")
        data = await self._request("GET", path, params=params)
        if isinstance(data, list):
            return {"posts": data}
        return data if isinstance(data, Mapping) else {}

    async def add_reaction(self, post_id: str, reaction_type: str) -> None:
        body = {"user_id": self._user_id, "reaction_type": reaction_type}
        await self._request("POST", f"posts/{post_id}/reactions", body=body)

    async def remove_reaction(self, post_id: str, reaction_type: str) -> None:
        body = {"user_id": self._user_id, "reaction_type": reaction_type}
        await self._request("POST", f"posts/{post_id}/reactions/delete", body=body)

    # -- comments and replies ----------------------------------------

    async def add_comment(self, post_id: str, draft: EntityDraft) -> Mapping[str, Any]:
        data = await self._request("POST", f"posts/{post_id}/comments", body=self._entity_body(draft))
        return self._as_record(data)

    async def edit_comment(self, comment_id: str, patch: EntityPatch) -> Mapping[str, Any] | None:
        body = self._entity_body(patch)
        if "content" in body:
            body["comment"] = body["new_content"] = body["content"]
        data = await self._request("POST", f"comments/{comment_id}/edit", body=body)
        return self._as_record(data) or None

    async def delete_comment(self, comment_id: str) -> None:
        await self._request("POST", f"comments/{comment_id}/delete", body={"author_id": self._user_id})

    async def add_reply(self, post_id: str, comment_id: str, draft: EntityDraft) -> Mapping[str, Any]:
        data = await self._request(
            "POST", f"posts/{post_id}/comments/{comment_id}/replies", body=self._entity_body(draft)
        )
        return self._as_record(data)

    async def delete_reply(self, post_id: str, comment_id: str, reply_id: str) -> None:
        await self._request("DELETE", f"posts/{post_id}/comments/{comment_id}/replies/{reply_id}")

    async def add_comment_reaction(self, comment_id: str, reaction_type: str) -> None:
        body = {"user_id": self._user_id, "reaction_type": reaction_type}
        await self._request("POST", f"comments/{comment_id}/reactions", body=body)

    async def remove_comment_reaction(self, comment_id: str, reaction_type: str) -> None:
        body = {"user_id": self._user_id, "reaction_type": reaction_type}
        await self._request("POST", f"comments/{comment_id}/reactions/delete", body=body)


__all__ = ["FeedAPI", "WallAPIClient", "tag_names", "mention_ids"]
