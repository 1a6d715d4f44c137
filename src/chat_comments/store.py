"""Append-only comment store with deduplicating merge."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, NamedTuple

from chat_comments.comments import Comment, last_comment_id_from_list

logger = logging.getLogger(__name__)


class MergeResult(NamedTuple):
    merged: tuple[Comment, ...]
    added: tuple[Comment, ...]


def merge_unique_comments(
    existing: tuple[Comment, ...], incoming: Iterable[Comment]
) -> MergeResult:
    """Merge incoming comments into the existing sequence.

    Comments whose id is already stored (or repeated earlier in the same
    batch) are dropped; the stored copy always wins.

    Args:
        existing: Current comment sequence.
        incoming: Canonical comments in arrival order.

    Returns:
        MergeResult. When nothing was added, ``merged`` is ``existing``
        itself so derived state keyed on it stays valid.
    """
    seen = {comment.id for comment in existing}
    added: list[Comment] = []
    for comment in incoming:
        if comment.id in seen:
            continue
        seen.add(comment.id)
        added.append(comment)

    if not added:
        return MergeResult(existing, ())

    return MergeResult(existing + tuple(added), tuple(added))


@dataclass
class CommentStore:
    """Comments known to the client plus the watermark and display counter."""

    comments: tuple[Comment, ...] = ()
    last_comment_id: int = 0
    comment_count: int = 0

    @classmethod
    def seeded(
        cls,
        comments: Iterable[Comment],
        last_comment_id: int | None = None,
        comment_count: int | None = None,
    ) -> CommentStore:
        """Create a store from the initial page payload."""

        initial = merge_unique_comments((), comments).merged
        if last_comment_id is None:
            last_comment_id = last_comment_id_from_list(initial)
        if comment_count is None:
            comment_count = len(initial)
        return cls(
            comments=initial,
            last_comment_id=max(last_comment_id, 0),
            comment_count=comment_count,
        )

    def merge(self, incoming: Iterable[Comment]) -> MergeResult:
        """Merge a batch and apply the counter and watermark side effects."""

        result = merge_unique_comments(self.comments, incoming)
        if not result.added:
            return result

        self.comments = result.merged
        self.comment_count += len(result.added)
        self.advance_watermark(last_comment_id_from_list(result.added))
        logger.debug(
            f"Merged {len(result.added)} comment(s); "
            f"count={self.comment_count} last_comment_id={self.last_comment_id}"
        )
        return result

    def advance_watermark(self, comment_id: int) -> bool:
        """Raise the watermark to ``comment_id``. Never lowers it."""

        if comment_id > self.last_comment_id:
            self.last_comment_id = comment_id
            return True
        return False

    def __len__(self) -> int:
        return len(self.comments)

    def __contains__(self, comment_id: object) -> bool:
        return any(comment.id == comment_id for comment in self.comments)
