"""HTTP client for the comments RPC endpoint."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from chat_comments.config import ChatConfig
from chat_comments.errors import ConfigurationError, TransportError

logger = logging.getLogger(__name__)

SUBMIT_ACTION = "chat_submit_comment"
POLL_ACTION = "chat_get_new_comments"
DEFAULT_TIMEOUT = httpx.Timeout(timeout=15.0, connect=5.0)


class CommentsClient:
    """Posts form-encoded requests to the endpoint and returns JSON envelopes.

    Envelopes are ``{"success": bool, "data": ...}``. Interpreting the
    success flag is left to the caller.
    """

    def __init__(
        self,
        config: ChatConfig,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.config = config
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=DEFAULT_TIMEOUT)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    def require_config(self) -> None:
        """Raise ConfigurationError unless endpoint, nonce and post id are set."""

        missing = [
            name
            for name, value in (
                ("ajaxUrl", self.config.ajax_url),
                ("nonce", self.config.nonce),
                ("postId", self.config.post_id),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(f"Missing app config: {', '.join(missing)}")

    async def submit_comment(self, content: str, parent_id: int) -> dict[str, Any]:
        """Send a new comment.

        Args:
            content: Raw comment text.
            parent_id: Comment being replied to, 0 for top-level.

        Returns:
            The response envelope.
        """
        return await self._post(
            {
                "action": SUBMIT_ACTION,
                "nonce": self.config.nonce,
                "comment": content,
                "comment_post_ID": str(self.config.post_id),
                "comment_parent": str(parent_id),
            }
        )

    async def fetch_new_comments(self, last_comment_id: int) -> dict[str, Any]:
        """Ask for comments newer than ``last_comment_id`` (0 = client has none)."""

        return await self._post(
            {
                "action": POLL_ACTION,
                "nonce": self.config.nonce,
                "post_id": str(self.config.post_id),
                "last_comment_id": str(last_comment_id),
            }
        )

    async def _post(self, fields: dict[str, str]) -> dict[str, Any]:
        self.require_config()

        try:
            response = await self._http.post(self.config.ajax_url, data=fields)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"{fields['action']} failed with HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(f"{fields['action']} request failed: {e}") from e
        except httpx.InvalidURL as e:
            # Not an HTTPError subclass.
            raise ConfigurationError(f"Invalid ajaxUrl {self.config.ajax_url!r}: {e}") from e

        try:
            envelope = response.json()
        except ValueError as e:
            raise TransportError(f"{fields['action']} returned invalid JSON") from e

        if not isinstance(envelope, dict):
            raise TransportError(f"{fields['action']} returned a non-object response")

        return envelope
