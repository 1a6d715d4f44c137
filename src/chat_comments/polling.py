"""Polling service for the comment stream.

Polls the comments endpoint for comments newer than the stream's watermark
and coordinates refresh events so subscribers can redraw without reloading.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import AsyncGenerator, Optional

from chat_comments.comments import Comment
from chat_comments.errors import ChatCommentsError
from chat_comments.stream import CommentStream

logger = logging.getLogger(__name__)

INITIAL_POLL_DELAY = 1.0


class RefreshCoordinator:
    """Fans ``comments:updated`` events out to live subscribers."""

    def __init__(self):
        self._subscribers: set[asyncio.Queue] = set()
        self._last_refresh: Optional[datetime] = None
        self._refresh_count = 0

    async def subscribe(self) -> AsyncGenerator[dict, None]:
        """Yield a heartbeat, then every refresh event until closed."""
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.add(queue)
        try:
            yield {"type": "heartbeat", "timestamp": datetime.now().isoformat()}
            while True:
                yield await queue.get()
        finally:
            self._subscribers.discard(queue)

    async def trigger_refresh(self, added: tuple[Comment, ...], reason: str = "poll"):
        """Publish the comments a merge added.

        Args:
            added: Comments that were merged into the stream.
            reason: What produced them ("poll" or "submit").
        """
        self._last_refresh = datetime.now()
        self._refresh_count += 1
        logger.info(f"Refresh triggered: {reason}, {len(added)} new (#{self._refresh_count})")

        event = {
            "type": "comments:updated",
            "timestamp": self._last_refresh.isoformat(),
            "reason": reason,
            "added": [comment.id for comment in added],
            "count": self._refresh_count,
        }
        # Queues are unbounded, so publishing never blocks the merge path.
        for queue in self._subscribers:
            queue.put_nowait(event)

    def get_stats(self) -> dict:
        return {
            "subscribers": len(self._subscribers),
            "last_refresh": self._last_refresh.isoformat() if self._last_refresh else None,
            "refresh_count": self._refresh_count,
        }


class CommentPoller:
    """Background service that keeps a CommentStream up to date.

    Three triggers feed ``poll()``: a single initial poll shortly after
    ``start()``, an interval timer that is skipped while the page is hidden,
    and an immediate poll whenever the page becomes visible again. Polls
    are not serialized; duplicate or stale responses merge as no-ops.
    """

    def __init__(
        self,
        stream: CommentStream,
        interval: Optional[float] = None,
        initial_delay: float = INITIAL_POLL_DELAY,
        coordinator: Optional[RefreshCoordinator] = None,
    ):
        """Initialize the poller.

        Args:
            stream: Stream to feed.
            interval: Polling interval in seconds (default: the config's
                poll interval)
            initial_delay: Delay before the first poll in seconds
            coordinator: Where refresh events are published (a private
                one if None)
        """
        self.stream = stream
        self.interval = interval if interval is not None else stream.config.poll_interval_seconds
        self.initial_delay = initial_delay
        self.coordinator = coordinator or RefreshCoordinator()

        self._visible = True
        self._running = False
        self._timer_tasks: list[asyncio.Task] = []
        self._poll_tasks: set[asyncio.Task] = set()
        self._last_poll: Optional[datetime] = None
        self._last_error: Optional[str] = None
        self._error_count = 0
        self._poll_count = 0

    @property
    def visible(self) -> bool:
        return self._visible

    async def start(self):
        """Attach the triggers."""
        if self._running:
            logger.warning("Poller already running")
            return

        if not self.stream.config.post_id:
            logger.info("No post id configured, polling disabled")
            return

        self._running = True
        self._timer_tasks = [
            asyncio.create_task(self._initial_poll()),
            asyncio.create_task(self._interval_loop()),
        ]
        logger.info(
            f"Started polling post {self.stream.config.post_id} every {self.interval}s"
        )

    async def stop(self):
        """Detach the triggers and cancel polls in flight."""
        if not self._running:
            return

        self._running = False
        tasks = self._timer_tasks + list(self._poll_tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        self._timer_tasks = []
        self._poll_tasks.clear()
        logger.info("Stopped polling")

    def set_visible(self, visible: bool) -> None:
        """Record a visibility change; regaining visibility polls immediately."""
        was_visible = self._visible
        self._visible = visible

        if visible and not was_visible and self._running:
            logger.debug("Page visible again, polling")
            self._spawn_poll()

    def _spawn_poll(self) -> asyncio.Task:
        task = asyncio.create_task(self.poll())
        self._poll_tasks.add(task)
        task.add_done_callback(self._poll_tasks.discard)
        return task

    async def _initial_poll(self):
        await asyncio.sleep(self.initial_delay)
        if self._running:
            self._spawn_poll()

    async def _interval_loop(self):
        while self._running:
            await asyncio.sleep(self.interval)

            if not self._running:
                break

            if self._visible:
                self._spawn_poll()

    async def poll(self) -> tuple[Comment, ...]:
        """Request comments newer than the current watermark and merge them.

        Errors are logged and absorbed; the next trigger tries again.

        Returns:
            The comments that were genuinely new.
        """
        if not self.stream.config.is_complete:
            return ()

        # Read at call time so back-to-back polls use the latest watermark.
        requested_last_id = self.stream.last_comment_id

        try:
            envelope = await self.stream.client.fetch_new_comments(requested_last_id)
        except ChatCommentsError as e:
            self._last_error = str(e)
            self._error_count += 1
            logger.error(f"Error polling for new comments: {e}")
            return ()

        self._last_poll = datetime.now()
        self._poll_count += 1
        self._error_count = 0
        self._last_error = None

        added = self.stream.handle_poll_response(envelope, requested_last_id)
        if added:
            await self.coordinator.trigger_refresh(added, reason="poll")
        return added

    def get_stats(self) -> dict:
        """Get poller statistics."""
        return {
            "post_id": self.stream.config.post_id,
            "running": self._running,
            "visible": self._visible,
            "interval": self.interval,
            "last_comment_id": self.stream.last_comment_id,
            "last_poll": self._last_poll.isoformat() if self._last_poll else None,
            "poll_count": self._poll_count,
            "error_count": self._error_count,
            "last_error": self._last_error,
        }
