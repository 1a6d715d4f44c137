"""Derive thread structure from the flat comment sequence."""

from __future__ import annotations

from typing import Iterable, Mapping

from chat_comments.comments import Comment

ROOT_PARENT_ID = 0
MAX_THREAD_DEPTH = 50

CommentsByParent = dict[int, list[Comment]]


def build_comments_by_parent(comments: Iterable[Comment]) -> CommentsByParent:
    """Group comments by parent id, keeping merge order within each group.

    Top-level comments are under ``ROOT_PARENT_ID``.
    """

    grouped: CommentsByParent = {}
    for comment in comments:
        grouped.setdefault(comment.parent_id or ROOT_PARENT_ID, []).append(comment)
    return grouped


def create_comment_map(comments: Iterable[Comment]) -> dict[int, Comment]:
    """Return a lookup of comment id to comment."""

    return {comment.id: comment for comment in comments}


def find_thread_root(
    comment: Comment,
    comment_map: Mapping[int, Comment],
    max_depth: int = MAX_THREAD_DEPTH,
) -> int | None:
    """Walk parent links up to the top-level comment of a reply.

    Args:
        comment: The reply to resolve.
        comment_map: Known comments by id.
        max_depth: Maximum number of hops before giving up.

    Returns:
        Id of the top-level ancestor, or None when the comment is itself
        top-level, an ancestor has not been seen yet, or the chain is
        longer than ``max_depth`` (cycles included).
    """
    current_id = comment.parent_id
    hops = 0

    while current_id and hops < max_depth:
        parent = comment_map.get(current_id)
        if parent is None:
            return None

        if parent.parent_id == ROOT_PARENT_ID:
            return parent.id

        current_id = parent.parent_id
        hops += 1

    return None


def collect_root_parent_ids(
    comments: Iterable[Comment], comment_map: Mapping[int, Comment]
) -> set[int]:
    """Return the distinct thread roots of the replies in ``comments``."""

    roots: set[int] = set()
    for comment in comments:
        if comment.is_top_level:
            continue
        root_id = find_thread_root(comment, comment_map)
        if root_id is not None:
            roots.add(root_id)
    return roots
