"""Map server-shaped post/comment/reply payloads onto the canonical :class:`Entity`.

Normalization is pure: it never reads the clock, never generates random ids
and never touches the feed store. Feeding an :class:`Entity` (or the dict
produced by :func:`normalize_to_raw`) back in yields the same entity.
"""
from __future__ import annotations

import hashlib
import json
import logging
import re
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlsplit

from ..constants import (
    DOCUMENT_EXTENSIONS,
    IMAGE_EXTENSIONS,
    LOCAL_ID_PREFIX,
    VIDEO_EXTENSIONS,
)
from ..schemas.entities import (
    ActingUser,
    Author,
    Entity,
    EntityKind,
    LifecycleState,
    MediaItem,
    MediaKind,
    Mention,
)
from .reaction_normalizer import reactions_from_payload

logger = logging.getLogger(__name__)

_ID_KEYS: dict[EntityKind, tuple[str, ...]] = {
    EntityKind.POST: ("post_id", "id"),
    EntityKind.COMMENT: ("comment_id", "id"),
    EntityKind.REPLY: ("reply_id", "comment_id", "id"),
}
_CHILD_KIND = {
    EntityKind.POST: EntityKind.COMMENT,
    EntityKind.COMMENT: EntityKind.REPLY,
    EntityKind.REPLY: EntityKind.REPLY,
}

_SPLIT_MEDIA_KEYS: tuple[tuple[str, MediaKind], ...] = (
    ("images", MediaKind.IMAGE),
    ("videos", MediaKind.VIDEO),
    ("documents", MediaKind.DOCUMENT),
    ("links", MediaKind.LINK),
)
_MEDIA_FIELD = {kind: key for key, kind in _SPLIT_MEDIA_KEYS}

_DECLARED_KINDS = {
    "image": MediaKind.IMAGE,
    "images": MediaKind.IMAGE,
    "photo": MediaKind.IMAGE,
    "video": MediaKind.VIDEO,
    "videos": MediaKind.VIDEO,
    "document": MediaKind.DOCUMENT,
    "documents": MediaKind.DOCUMENT,
    "doc": MediaKind.DOCUMENT,
    "file": MediaKind.DOCUMENT,
    "pdf": MediaKind.DOCUMENT,
    "link": MediaKind.LINK,
    "links": MediaKind.LINK,
    "url": MediaKind.LINK,
}
_DOCUMENT_MIME_MARKERS = ("pdf", "msword", "officedocument", "ms-excel", "ms-powerpoint")

_URL_PATTERN = re.compile(r"https?://[^\s'\"}]+")
_SERIALIZED_MEDIA_PATTERN = re.compile(r"\{[^{}]*['\"](?:url|link)['\"]\s*:\s*['\"]https?://[^{}]*\}")
_TRUTHY = {"1", "true", "yes", "on"}


def _first(source: Mapping[str, Any], keys: Iterable[str], *, strip: bool = True) -> Any:
    for key in keys:
        value = source.get(key)
        if value is None:
            continue
        if isinstance(value, str):
            if not value.strip():
                continue
            if strip:
                value = value.strip()
        return value
    return None


def _as_text(value: Any) -> str | None:
    if value is None or isinstance(value, (Mapping, list, tuple)):
        return None
    text = str(value).strip()
    return text or None


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    return bool(value)


def _as_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            logger.debug("Ignoring out-of-range timestamp %r", value)
            return None
    if isinstance(value, str) and value.strip():
        try:
            return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


def _local_id(raw: Mapping[str, Any], kind: EntityKind) -> str:
    digest = hashlib.sha1(
        json.dumps({"kind": kind.value, "payload": raw}, sort_keys=True, default=str).encode("utf-8")
    ).hexdigest()
    return f"{LOCAL_ID_PREFIX}{digest[:16]}"


def _resolve_kind(raw: Mapping[str, Any], default: EntityKind) -> EntityKind:
    declared = raw.get("kind")
    if isinstance(declared, EntityKind):
        return declared
    if isinstance(declared, str):
        try:
            return EntityKind(declared)
        except ValueError:
            pass
    return default


def resolve_identifiers(raw: Mapping[str, Any], kind: EntityKind) -> tuple[str, str | None]:
    """Return ``(canonical_id, server_id)``.

    The semantic key (``post_id``/``comment_id``) is preferred over a generic
    ``id`` because it is what edit/delete/react calls expect.
    """

    canonical = _as_text(raw.get("canonical_id"))
    if canonical is not None:
        return canonical, _as_text(raw.get("server_id"))

    server_id = _as_text(_first(raw, _ID_KEYS[kind]))
    if server_id is not None:
        return server_id, server_id
    return _local_id(raw, kind), None


def resolve_author(raw: Mapping[str, Any], acting_user: ActingUser | None = None) -> Author:
    """Build the author snapshot from whichever source fields the payload supplies."""

    nested = raw.get("author")
    nested_name = None
    if isinstance(nested, str):
        nested_name, nested = nested, {}
    elif not isinstance(nested, Mapping):
        nested = {}

    author_id = _as_text(_first(nested, ("user_id", "id")) or _first(raw, ("author_id", "authorId", "user_id")))
    name = _as_text(
        _first(nested, ("username", "display_name", "name"))
        or nested_name
        or _first(raw, ("authorName", "author_name", "username"))
    )
    avatar = _as_text(_first(nested, ("avatar", "avatar_url")) or _first(raw, ("authorAvatar", "author_avatar", "avatar")))
    title = _as_text(
        _first(nested, ("position", "title")) or _first(raw, ("authorPosition", "author_position", "position"))
    )

    fallback = Author()
    if acting_user is not None:
        anonymous = author_id is None and name is None and avatar is None and title is None
        if anonymous or author_id == acting_user.id:
            fallback = acting_user.as_author()

    return Author(
        id=author_id or fallback.id,
        display_name=name or fallback.display_name,
        avatar_url=avatar or fallback.avatar_url,
        title=title or fallback.title,
    )


def classify_media(url: str, declared_type: Any = None) -> MediaKind:
    """Classify a media URL as image, video, document or link.

    An explicit type (MIME type or bare kind) wins; otherwise the file
    extension is checked against the image, video and document sets in that
    order, falling back to a plain link.
    """

    declared = _as_text(declared_type)
    if declared:
        declared = declared.lower()
        if "/" in declared:
            major, _, minor = declared.partition("/")
            if major == "image":
                return MediaKind.IMAGE
            if major == "video":
                return MediaKind.VIDEO
            if major == "text" or any(marker in minor for marker in _DOCUMENT_MIME_MARKERS):
                return MediaKind.DOCUMENT
        elif declared in _DECLARED_KINDS:
            return _DECLARED_KINDS[declared]

    path = urlsplit(url).path.lower()
    extension = path.rsplit(".", 1)[-1] if "." in path.rsplit("/", 1)[-1] else ""
    if extension in IMAGE_EXTENSIONS:
        return MediaKind.IMAGE
    if extension in VIDEO_EXTENSIONS:
        return MediaKind.VIDEO
    if extension in DOCUMENT_EXTENSIONS:
        return MediaKind.DOCUMENT
    return MediaKind.LINK


def _media_name(url: str, candidate: Any = None) -> str:
    name = _as_text(candidate)
    if name:
        return name
    tail = urlsplit(url).path.rstrip("/").rsplit("/", 1)[-1]
    return tail or "Media file"


def _decode_legacy_link(link: str) -> dict[str, Any] | None:
    """Decode a media record that the backend stored as a stringified dict."""

    try:
        decoded = json.loads(link.replace("'", '"'))
    except ValueError:
        match = _URL_PATTERN.search(link)
        if match is None:
            return None
        return {"url": match.group(0)}
    if not isinstance(decoded, Mapping):
        return None
    url = _as_text(decoded.get("url") or decoded.get("link"))
    if url is None:
        return None
    return {"url": url, "type": decoded.get("type"), "name": decoded.get("name")}


def _flat_media_item(item: Any, legacy_texts: list[str]) -> MediaItem | None:
    if isinstance(item, str):
        record: Mapping[str, Any] = {"link": item}
    elif isinstance(item, Mapping):
        record = item
    else:
        return None

    declared = record.get("type") or record.get("media_type") or record.get("kind")
    name = record.get("name")
    url = _as_text(record.get("url"))
    link = _as_text(record.get("link"))

    if url is None and link is not None:
        if link.startswith("{'") or link.startswith('{"'):
            legacy_texts.append(link)
            decoded = _decode_legacy_link(link)
            if decoded is None:
                logger.warning("Skipping unreadable legacy media link %.80s", link)
                return None
            url = decoded["url"]
            declared = declared or decoded.get("type")
            name = name or decoded.get("name")
        elif link.startswith("http"):
            url = link
    if url is None:
        logger.warning("Skipping media item without a usable URL: %.80r", item)
        return None
    return MediaItem(url=url, name=_media_name(url, name), kind=classify_media(url, declared))


def _split_media_item(item: Any, kind: MediaKind) -> MediaItem | None:
    if isinstance(item, MediaItem):
        return item
    if isinstance(item, str):
        url, name = _as_text(item), None
    elif isinstance(item, Mapping):
        url = _as_text(item.get("url") or item.get("link") or item.get("href"))
        name = item.get("name") or item.get("title") or item.get("filename")
    else:
        return None
    if url is None:
        return None
    return MediaItem(url=url, name=_media_name(url, name), kind=kind)


def normalize_media(raw: Mapping[str, Any]) -> tuple[dict[MediaKind, tuple[MediaItem, ...]], list[str]]:
    """Return media grouped by kind plus any legacy serialized-dict strings found.

    Already-split ``images``/``videos``/``documents``/``links`` arrays win; the
    flat ``media`` array is only classified when none of them carries items.
    """

    grouped: dict[MediaKind, list[MediaItem]] = {kind: [] for _key, kind in _SPLIT_MEDIA_KEYS}
    legacy_texts: list[str] = []

    split_present = any(
        isinstance(raw.get(key), (list, tuple)) and raw.get(key) for key, _kind in _SPLIT_MEDIA_KEYS
    )
    if split_present:
        for key, kind in _SPLIT_MEDIA_KEYS:
            for item in raw.get(key) or ():
                media_item = _split_media_item(item, kind)
                if media_item is not None:
                    grouped[kind].append(media_item)
    else:
        flat = raw.get("media")
        if isinstance(flat, (list, tuple)):
            for item in flat:
                media_item = _flat_media_item(item, legacy_texts)
                if media_item is not None:
                    grouped[media_item.kind].append(media_item)

    deduped = {kind: tuple(dict.fromkeys(items)) for kind, items in grouped.items()}
    return deduped, legacy_texts


def scrub_media_text(content: str, legacy_texts: Iterable[str]) -> str:
    """Remove stringified media dicts that older posts leaked into their content."""

    cleaned = content
    for text in legacy_texts:
        cleaned = cleaned.replace(text, "")
    cleaned = _SERIALIZED_MEDIA_PATTERN.sub("", cleaned)
    if cleaned == content:
        return content
    cleaned = re.sub(r"\s*,\s*,\s*", " ", cleaned)
    cleaned = re.sub(r"[ \t]{2,}", " ", cleaned)
    return cleaned.strip()


def normalize_tags(values: Any) -> tuple[str, ...]:
    if not isinstance(values, (list, tuple)):
        return ()
    tags: list[str] = []
    for value in values:
        if isinstance(value, Mapping):
            value = value.get("tag_name") or value.get("name")
        tag = _as_text(value)
        if tag and tag not in tags:
            tags.append(tag)
    return tuple(tags)


def normalize_mentions(values: Any) -> tuple[Mention, ...]:
    if not isinstance(values, (list, tuple)):
        return ()
    mentions: dict[str, Mention] = {}
    for value in values:
        if isinstance(value, Mention):
            mention = value
        elif isinstance(value, Mapping):
            user_id = _as_text(_first(value, ("user_id", "employee_id", "id")))
            if user_id is None:
                continue
            mention = Mention(
                user_id=user_id,
                username=_as_text(_first(value, ("username", "name", "display_name"))),
            )
        else:
            user_id = _as_text(value)
            if user_id is None:
                continue
            mention = Mention(user_id=user_id)
        mentions.setdefault(mention.user_id, mention)
    return tuple(mentions.values())


def _is_broadcast(raw: Mapping[str, Any]) -> bool:
    return (
        _as_bool(raw.get("is_broadcast"), False)
        or _as_bool(raw.get("isBroadcast"), False)
        or raw.get("type") == "broadcast"
        or raw.get("post_type") == "broadcast"
    )


def _lifecycle(raw: Mapping[str, Any]) -> LifecycleState:
    declared = raw.get("lifecycle_state")
    if isinstance(declared, LifecycleState):
        return declared
    try:
        return LifecycleState(declared)
    except ValueError:
        return LifecycleState.CONFIRMED


def _children(
    raw: Mapping[str, Any],
    kind: EntityKind,
    parent_id: str,
    acting_user: ActingUser | None,
) -> tuple[Entity, ...]:
    values = raw.get("comments")
    if kind is not EntityKind.POST and not values:
        values = raw.get("replies")
    if not isinstance(values, (list, tuple)):
        return ()
    children: dict[str, Entity] = {}
    for value in values:
        if not isinstance(value, (Mapping, Entity)):
            continue
        child = normalize(value, acting_user, kind=_CHILD_KIND[kind], parent_id=parent_id)
        children.setdefault(child.canonical_id, child)
    return tuple(children.values())


def normalize(
    raw: Any,
    acting_user: ActingUser | None = None,
    *,
    kind: EntityKind = EntityKind.POST,
    parent_id: str | None = None,
) -> Entity:
    """Normalize one server payload into an :class:`Entity`.

    Missing fields degrade to documented defaults (placeholder author, empty
    media, no reactions) so a partially-unreadable payload still renders.
    """

    if isinstance(raw, Entity):
        return raw
    if not isinstance(raw, Mapping):
        logger.warning("Normalizing non-mapping payload of type %s", type(raw).__name__)
        raw = {}

    kind = _resolve_kind(raw, kind)
    canonical_id, server_id = resolve_identifiers(raw, kind)

    resolved_parent = _as_text(raw.get("parent_id")) or parent_id
    if resolved_parent is None and kind is EntityKind.COMMENT:
        resolved_parent = _as_text(raw.get("post_id"))

    media, legacy_texts = normalize_media(raw)
    content = _first(raw, ("content", "post_content", "comment", "text"), strip=False)
    content = content if isinstance(content, str) else ("" if content is None else str(content))
    if legacy_texts:
        content = scrub_media_text(content, legacy_texts)

    return Entity(
        kind=kind,
        canonical_id=canonical_id,
        server_id=server_id,
        parent_id=resolved_parent,
        author=resolve_author(raw, acting_user),
        content=content,
        tags=normalize_tags(raw.get("tags")),
        images=media[MediaKind.IMAGE],
        videos=media[MediaKind.VIDEO],
        documents=media[MediaKind.DOCUMENT],
        links=media[MediaKind.LINK],
        mentions=normalize_mentions(raw.get("mentions")),
        created_at=_as_datetime(_first(raw, ("created_at", "createdAt", "timestamp"))),
        updated_at=_as_datetime(_first(raw, ("updated_at", "updatedAt"))),
        reactions=reactions_from_payload(raw),
        comments=_children(raw, kind, canonical_id, acting_user),
        is_pinned=_as_bool(raw.get("is_pinned", raw.get("isPinned")), False),
        is_comments_allowed=_as_bool(raw.get("is_comments_allowed", raw.get("allow_comments")), True),
        is_broadcast=_is_broadcast(raw),
        lifecycle_state=_lifecycle(raw),
    )


def normalize_many(
    payloads: Iterable[Any],
    acting_user: ActingUser | None = None,
    *,
    kind: EntityKind = EntityKind.POST,
) -> list[Entity]:
    """Normalize a page of payloads, keeping the first entity seen per canonical id."""

    entities: dict[str, Entity] = {}
    for payload in payloads:
        entity = normalize(payload, acting_user, kind=kind)
        entities.setdefault(entity.canonical_id, entity)
    return list(entities.values())


def normalize_to_raw(entity: Entity) -> dict[str, Any]:
    """JSON-ready dict form of an entity; :func:`normalize` maps it back unchanged."""

    return entity.model_dump(mode="json")


def media_field(kind: MediaKind) -> str:
    return _MEDIA_FIELD[kind]


__all__ = [
    "normalize",
    "normalize_many",
    "normalize_to_raw",
    "resolve_identifiers",
    "resolve_author",
    "classify_media",
    "normalize_media",
    "normalize_tags",
    "normalize_mentions",
    "scrub_media_text",
    "media_field",
]
