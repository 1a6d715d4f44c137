"""Normalize comment records received from the comments endpoint."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

RawComment = Mapping[str, Any]

_LEADING_INT = re.compile(r"^\s*([-+]?\d+)")

# camelCase first, snake_case (and legacy) fallbacks after.
ID_KEYS = ("commentId", "comment_id", "comment_ID", "id")
PARENT_KEYS = ("parentId", "comment_parent", "parent")
META_KEYS = ("commentMeta", "comment_meta", "meta")


@dataclass(frozen=True)
class CommentMeta:
    """Display metadata for a comment. Opaque to the engine."""

    author_name: str = ""
    timestamp: str = ""
    content_html: str = ""
    avatar_url: str = ""
    avatar_alt: str = ""
    is_post_author: bool = False
    permalink: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Return the metadata using the wire's camelCase names."""

        return {
            "authorName": self.author_name,
            "timestamp": self.timestamp,
            "contentHtml": self.content_html,
            "avatarUrl": self.avatar_url,
            "avatarAlt": self.avatar_alt,
            "isPostAuthor": self.is_post_author,
            "permalink": self.permalink,
        }


@dataclass(frozen=True)
class Comment:
    """Canonical comment. Replaced wholesale, never mutated."""

    id: int
    parent_id: int = 0
    meta: CommentMeta = field(default_factory=CommentMeta)

    @property
    def is_top_level(self) -> bool:
        return self.parent_id == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "parentId": self.parent_id,
            "meta": self.meta.to_dict(),
        }


def parse_int(value: Any) -> int | None:
    """Parse an integer the lenient way the server emits them.

    Accepts ints, integral floats and strings with a leading integer
    (``"12"``, ``" 12 "``, ``"12abc"``). Booleans are not numbers.

    Returns:
        The parsed integer, or None when the value is not numeric.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            return None
        return int(value)
    if isinstance(value, str):
        match = _LEADING_INT.match(value)
        if match:
            return int(match.group(1))
    return None


def _first_present(data: Mapping[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def _text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def normalize_meta(meta: Any) -> CommentMeta:
    """Build a CommentMeta, defaulting every field that is absent."""

    if not isinstance(meta, Mapping):
        return CommentMeta()

    return CommentMeta(
        author_name=_text(_first_present(meta, ("authorName", "author_name"))),
        timestamp=_text(_first_present(meta, ("timestamp", "time"))),
        content_html=_text(_first_present(meta, ("contentHtml", "content_html"))),
        avatar_url=_text(_first_present(meta, ("avatarUrl", "avatar_url"))),
        avatar_alt=_text(_first_present(meta, ("avatarAlt", "avatar_alt"))),
        is_post_author=bool(_first_present(meta, ("isPostAuthor", "is_post_author"))),
        permalink=_text(_first_present(meta, ("permalink", "link"))),
    )


def normalize_comment(raw: Any) -> Comment | None:
    """Normalize a single comment record.

    Args:
        raw: Comment payload as decoded from JSON.

    Returns:
        The canonical comment, or None when the record has no usable id.
    """
    if not isinstance(raw, Mapping):
        return None

    comment_id = parse_int(_first_present(raw, ID_KEYS))
    if comment_id is None or comment_id < 0:
        return None

    parent_id = parse_int(_first_present(raw, PARENT_KEYS))
    if parent_id is None or parent_id < 0:
        parent_id = 0

    return Comment(
        id=comment_id,
        parent_id=parent_id,
        meta=normalize_meta(_first_present(raw, META_KEYS)),
    )


def normalize_comments(comments: Iterable[Any] | None) -> list[Comment]:
    """Normalize a batch, silently dropping records that are rejected."""

    if not comments:
        return []

    normalized: list[Comment] = []
    for raw in comments:
        comment = normalize_comment(raw)
        if comment is not None:
            normalized.append(comment)
    return normalized


def last_comment_id_from_list(comments: Iterable[Comment]) -> int:
    """Return the highest comment id in the list, or 0 when empty."""

    return max((comment.id for comment in comments), default=0)
