"""Project-wide constant values."""
from __future__ import annotations

PLACEHOLDER_AUTHOR_NAME = "Unknown User"
PLACEHOLDER_AUTHOR_TITLE = "Employee"
DEFAULT_AVATAR_URL = (
    "https://images.unsplash.com/photo-1472099645785-5658abf4ff4e"
    "?ixlib=rb-1.2.1&auto=format&fit=facearea&facepad=2&w=256&h=256&q=80"
)

LOCAL_ID_PREFIX = "local-"
COMMENT_LEDGER_PREFIX = "comment_"

IMAGE_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "gif", "webp"})
VIDEO_EXTENSIONS = frozenset({"mp4", "avi", "mov", "wmv", "flv", "webm"})
DOCUMENT_EXTENSIONS = frozenset({"pdf", "doc", "docx", "txt", "xls", "xlsx", "ppt", "pptx"})

LIKE = "like"

# reaction type -> emoji, in picker order
REACTION_CATALOG: dict[str, str] = {
    "thumbs_up": "👍",
    "love": "❤️",
    "happy": "😊",
    "laugh": "😂",
    "wow": "😮",
    "sad": "😢",
    "angry": "😡",
    "celebrate": "🎉",
    LIKE: "❤️",
}
DEFAULT_REACTION_EMOJI = "👍"

# Reaction types the server treats as one reaction per user.
EXCLUSIVE_REACTION_FAMILIES: tuple[frozenset[str], ...] = (frozenset({LIKE, "love"}),)

DEFAULT_TAGS = (
    "Announcements",
    "Achievements",
    "General Discussion",
    "Policy Updates",
    "Ideas & Suggestions",
    "Training Materials",
)

HOME_FEED = "home"
OWN_FEED = "mine"

__all__ = [
    "PLACEHOLDER_AUTHOR_NAME",
    "PLACEHOLDER_AUTHOR_TITLE",
    "DEFAULT_AVATAR_URL",
    "LOCAL_ID_PREFIX",
    "COMMENT_LEDGER_PREFIX",
    "IMAGE_EXTENSIONS",
    "VIDEO_EXTENSIONS",
    "DOCUMENT_EXTENSIONS",
    "LIKE",
    "REACTION_CATALOG",
    "DEFAULT_REACTION_EMOJI",
    "EXCLUSIVE_REACTION_FAMILIES",
    "DEFAULT_TAGS",
    "HOME_FEED",
    "OWN_FEED",
]
