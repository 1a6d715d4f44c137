"""Comment stream state for a single page.

Owns the comment store, the derived thread index and the per-thread UI
state. Every change to canonical state goes through
``handle_incoming_comments``, whether the comments come from a submission
or from a poll.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional

from chat_comments.client import CommentsClient
from chat_comments.comments import Comment, normalize_comment, normalize_comments, parse_int
from chat_comments.config import ChatConfig, InitialData
from chat_comments.errors import CommentValidationError, ServerError, TransportError
from chat_comments.store import CommentStore
from chat_comments.threads import (
    ROOT_PARENT_ID,
    build_comments_by_parent,
    create_comment_map,
    find_thread_root,
)
from chat_comments.tracking import ThreadTracker

logger = logging.getLogger(__name__)

SUBMIT_FALLBACK_MESSAGE = "Error submitting comment."


class CommentStream:
    """Client-side state of the comment stream."""

    def __init__(
        self,
        config: ChatConfig,
        initial_data: Optional[InitialData] = None,
        client: Optional[CommentsClient] = None,
    ):
        """Seed the stream from the data rendered with the page.

        Args:
            config: App configuration.
            initial_data: Comments, watermark and total count from the page.
            client: RPC client; one is created from ``config`` if None.
        """
        initial_data = initial_data or InitialData()
        self.config = config
        self.client = client or CommentsClient(config)
        self.store = CommentStore.seeded(
            normalize_comments(initial_data.comments),
            last_comment_id=initial_data.last_comment_id,
            comment_count=initial_data.comment_count,
        )
        self.tracker = ThreadTracker()

        self._index_source: tuple[Comment, ...] | None = None
        self._index: Mapping[int, tuple[Comment, ...]] = MappingProxyType({})

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def comments(self) -> tuple[Comment, ...]:
        return self.store.comments

    @property
    def last_comment_id(self) -> int:
        return self.store.last_comment_id

    @property
    def comment_count(self) -> int:
        return self.store.comment_count

    @property
    def has_comments(self) -> bool:
        return bool(self.store.comments)

    @property
    def expanded_threads(self) -> frozenset[int]:
        return self.tracker.expanded_threads

    @property
    def threads_with_new_messages(self) -> frozenset[int]:
        return self.tracker.unread_threads

    @property
    def comments_by_parent(self) -> Mapping[int, tuple[Comment, ...]]:
        """Read-only thread index, rebuilt only when the comment sequence changes."""

        if self._index_source is not self.store.comments:
            grouped = build_comments_by_parent(self.store.comments)
            self._index = MappingProxyType(
                {parent_id: tuple(children) for parent_id, children in grouped.items()}
            )
            self._index_source = self.store.comments
        return self._index

    @property
    def top_level_comments(self) -> list[Comment]:
        return list(self.comments_by_parent.get(ROOT_PARENT_ID, []))

    def replies_to(self, comment_id: int) -> list[Comment]:
        return list(self.comments_by_parent.get(comment_id, []))

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def handle_incoming_comments(
        self,
        raw_comments: Iterable[Any] | None,
    ) -> tuple[Comment, ...]:
        """Normalize, merge and index a batch of raw comment records.

        Args:
            raw_comments: Records as received from the server.

        Returns:
            The comments that were genuinely new.
        """
        normalized = normalize_comments(raw_comments)
        if not normalized:
            return ()

        result = self.store.merge(normalized)
        if not result.added:
            return ()

        self.tracker.on_comments_added(result.added, create_comment_map(result.merged))

        return result.added

    def handle_poll_response(
        self, envelope: dict[str, Any] | None, requested_last_id: int
    ) -> tuple[Comment, ...]:
        """Apply a poll response envelope.

        Args:
            envelope: ``{"success": ..., "data": {...}}`` from the endpoint.
            requested_last_id: Watermark the poll request was sent with.

        Returns:
            The comments that were genuinely new.
        """
        if not isinstance(envelope, dict) or not envelope.get("success"):
            data = envelope.get("data") if isinstance(envelope, dict) else None
            message = data.get("message") if isinstance(data, dict) else None
            logger.debug(f"Poll reported failure: {message or 'no message'}")
            return ()

        payload = envelope.get("data")
        if not isinstance(payload, dict):
            payload = {}

        added: tuple[Comment, ...] = ()
        new_comments = payload.get("new_comments")
        if payload.get("has_new") and isinstance(new_comments, list) and new_comments:
            added = self.handle_incoming_comments(new_comments)

        server_last_id = parse_int(payload.get("last_comment_id"))
        if server_last_id and server_last_id > requested_last_id:
            self.store.advance_watermark(server_last_id)

        return added

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    async def submit_comment(self, content: str, parent_id: int = 0) -> Comment:
        """Post a comment and merge the server-confirmed record.

        Args:
            content: Comment text. Must not be blank.
            parent_id: Comment being replied to, 0 for a top-level comment.

        Returns:
            The canonical comment returned by the server.

        Raises:
            CommentValidationError: Blank content.
            ConfigurationError: Endpoint, nonce or post id missing.
            ServerError: The server rejected the comment.
            TransportError: Network failure or unusable response.
        """
        if not content or not content.strip():
            raise CommentValidationError("Comment content is required.")

        parent_id = parse_int(parent_id) or 0
        if parent_id < 0:
            parent_id = 0

        self.client.require_config()
        envelope = await self.client.submit_comment(content, parent_id)

        data = envelope.get("data")
        if not envelope.get("success"):
            message = data.get("message") if isinstance(data, dict) else None
            raise ServerError(message or SUBMIT_FALLBACK_MESSAGE, data=data)

        comment = normalize_comment(data)
        if comment is None:
            raise TransportError("Server returned an unusable comment record")

        added = self.handle_incoming_comments([data])
        if not added:
            logger.info(f"Submitted comment {comment.id} was already known")

        if parent_id > 0:
            comment_map = create_comment_map(self.store.comments)
            thread_id = find_thread_root(comment, comment_map)
            if thread_id is None:
                thread_id = parent_id
            self.tracker.mark_replied(thread_id)

        logger.info(f"Submitted comment {comment.id} (parent {parent_id})")
        return comment

    def toggle_thread(self, comment_id: Any) -> bool | None:
        """Expand or collapse a thread; clears its unread flag.

        Returns:
            True if expanded, False if collapsed, None for an invalid id.
        """
        thread_id = parse_int(comment_id)
        if thread_id is None:
            return None
        return self.tracker.toggle_thread(thread_id)
