"""Build the view state a renderer needs to draw the comment stream."""

from __future__ import annotations

from typing import Any

from chat_comments.comments import Comment
from chat_comments.stream import CommentStream


def format_message_count(count: int) -> str:
    """Header title for the stream."""
    return "1 Message" if count == 1 else f"{count} Messages"


def _serialize_comment(stream: CommentStream, comment: Comment, depth: int) -> dict[str, Any]:
    replies = stream.replies_to(comment.id)
    data = comment.to_dict()
    data.update(
        {
            "depth": depth,
            "replyCount": len(replies),
            "hasReplies": bool(replies),
            "isExpanded": stream.tracker.is_expanded(comment.id),
            "hasNewMessages": stream.tracker.has_new_messages(comment.id),
        }
    )
    return data


def build_stream_view(stream: CommentStream) -> dict[str, Any]:
    """Build the view state for the stream.

    Replies render one level deep: each top-level comment carries its
    direct replies, and replies never carry their own.

    Args:
        stream: The stream to describe.

    Returns:
        JSON-serializable view dictionary.
    """
    config = stream.config
    view: dict[str, Any] = {
        "title": format_message_count(stream.comment_count),
        "commentCount": stream.comment_count,
        "lastCommentId": stream.last_comment_id,
        "isLoggedIn": config.is_logged_in,
        "loginUrl": config.login_url,
        "commentsOpen": config.comments_open,
    }

    if not config.is_logged_in:
        # Logged-out viewers only get the header and a login prompt.
        view.update({"hasComments": False, "threads": [], "mentionableUsers": []})
        return view

    threads = []
    for comment in stream.top_level_comments:
        thread = _serialize_comment(stream, comment, depth=0)
        thread["replies"] = [
            _serialize_comment(stream, reply, depth=1)
            for reply in stream.replies_to(comment.id)
        ]
        threads.append(thread)

    view.update(
        {
            "hasComments": stream.has_comments,
            "threads": threads,
            "mentionableUsers": list(config.mentionable_users),
        }
    )
    return view
