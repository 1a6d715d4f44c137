"""Per-thread expansion and unread state."""

from __future__ import annotations

import logging
from typing import Iterable, Mapping

from chat_comments.comments import Comment
from chat_comments.threads import collect_root_parent_ids

logger = logging.getLogger(__name__)


class ThreadTracker:
    """Tracks which top-level threads are expanded and which have unread replies."""

    def __init__(self):
        self._expanded: set[int] = set()
        self._unread: set[int] = set()

    @property
    def expanded_threads(self) -> frozenset[int]:
        return frozenset(self._expanded)

    @property
    def unread_threads(self) -> frozenset[int]:
        return frozenset(self._unread)

    def is_expanded(self, thread_id: int) -> bool:
        return thread_id in self._expanded

    def has_new_messages(self, thread_id: int) -> bool:
        return thread_id in self._unread

    def on_comments_added(
        self, added: Iterable[Comment], comment_map: Mapping[int, Comment]
    ) -> set[int]:
        """Mark the threads that received replies as unread.

        Returns:
            The thread roots resolved for the added replies.
        """
        roots = collect_root_parent_ids(added, comment_map)
        if roots:
            self._unread.update(roots)
            logger.debug(f"Threads with new messages: {sorted(roots)}")
        return roots

    def toggle_thread(self, thread_id: int) -> bool:
        """Flip expansion of a thread and mark it read either way.

        Returns:
            True if the thread is now expanded.
        """
        self._unread.discard(thread_id)
        if thread_id in self._expanded:
            self._expanded.remove(thread_id)
            return False
        self._expanded.add(thread_id)
        return True

    def mark_replied(self, thread_id: int) -> None:
        """The user replied inside this thread: show it and clear unread."""

        self._expanded.add(thread_id)
        self._unread.discard(thread_id)
