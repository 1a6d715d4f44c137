"""Configuration and bootstrap data for a comment stream."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from chat_comments.comments import parse_int

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "CHAT_COMMENTS_CONFIG"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / "chat-comments" / "bootstrap.json"
DEFAULT_POLL_INTERVAL = 5000

# Environment variable -> ChatConfig attribute
ENV_OVERRIDES = {
    "CHAT_COMMENTS_AJAX_URL": "ajax_url",
    "CHAT_COMMENTS_NONCE": "nonce",
    "CHAT_COMMENTS_POST_ID": "post_id",
    "CHAT_COMMENTS_POLL_INTERVAL": "poll_interval",
}


def _pick(data: Dict[str, Any], camel: str, snake: str, default: Any = None) -> Any:
    value = data.get(camel)
    if value is None:
        value = data.get(snake)
    return default if value is None else value


@dataclass
class ChatConfig:
    """App configuration handed to the client by the page."""

    ajax_url: str = ""
    nonce: str = ""
    post_id: int = 0
    user_id: int = 0
    is_logged_in: bool = False
    comments_open: bool = True
    login_url: str = ""
    poll_interval: int = DEFAULT_POLL_INTERVAL
    mentionable_users: List[dict] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any] | None) -> ChatConfig:
        """Build a config from an ``appConfig`` payload (camelCase or snake_case)."""

        if not isinstance(data, dict):
            return cls()

        poll_interval = parse_int(_pick(data, "pollInterval", "poll_interval"))
        if not poll_interval or poll_interval <= 0:
            poll_interval = DEFAULT_POLL_INTERVAL

        users = _pick(data, "mentionableUsers", "mentionable_users", [])

        return cls(
            ajax_url=str(_pick(data, "ajaxUrl", "ajax_url", "")),
            nonce=str(_pick(data, "nonce", "nonce", "")),
            post_id=parse_int(_pick(data, "postId", "post_id")) or 0,
            user_id=parse_int(_pick(data, "userId", "user_id")) or 0,
            is_logged_in=bool(_pick(data, "isLoggedIn", "is_logged_in", False)),
            comments_open=bool(_pick(data, "commentsOpen", "comments_open", True)),
            login_url=str(_pick(data, "loginUrl", "login_url", "")),
            poll_interval=poll_interval,
            mentionable_users=[user for user in users if isinstance(user, dict)]
            if isinstance(users, list)
            else [],
        )

    def to_dict(self) -> dict:
        """Return the config in the page's camelCase shape."""

        return {
            "ajaxUrl": self.ajax_url,
            "nonce": self.nonce,
            "postId": self.post_id,
            "userId": self.user_id,
            "isLoggedIn": self.is_logged_in,
            "commentsOpen": self.comments_open,
            "loginUrl": self.login_url,
            "pollInterval": self.poll_interval,
            "mentionableUsers": list(self.mentionable_users),
        }

    @property
    def is_complete(self) -> bool:
        """True when endpoint, nonce and post id are all present."""

        return bool(self.ajax_url and self.nonce and self.post_id)

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval / 1000.0


@dataclass
class InitialData:
    """Comments rendered with the page, used to seed the store once."""

    comments: List[Any] = field(default_factory=list)
    last_comment_id: Optional[int] = None
    comment_count: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any] | None) -> InitialData:
        if not isinstance(data, dict):
            return cls()

        comments = data.get("comments") or []
        return cls(
            comments=list(comments) if isinstance(comments, list) else [],
            last_comment_id=parse_int(_pick(data, "lastCommentId", "last_comment_id")),
            comment_count=parse_int(_pick(data, "commentCount", "comment_count")),
        )


def config_path() -> Path:
    """Return the filesystem path of the bootstrap file."""

    override = os.getenv(CONFIG_ENV_VAR)
    if override:
        return Path(override).expanduser().resolve()

    return DEFAULT_CONFIG_PATH


def _apply_env_overrides(config: ChatConfig) -> None:
    for env_name, attribute in ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if not value:
            continue

        if attribute in {"post_id", "poll_interval"}:
            parsed = parse_int(value)
            if parsed is None or parsed <= 0:
                logger.warning(f"Ignoring non-numeric {env_name}={value!r}")
                continue
            setattr(config, attribute, parsed)
        else:
            setattr(config, attribute, value)


def load_bootstrap() -> Tuple[InitialData, ChatConfig]:
    """Load initial data and app config, falling back to defaults.

    The file holds ``{"initialData": {...}, "appConfig": {...}}``.
    Environment overrides are applied on top.
    """

    path = config_path()
    data: Dict[str, Any] = {}

    if path.exists():
        try:
            loaded = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            # Malformed file; keep it for inspection and use defaults.
            logger.warning(f"Malformed bootstrap file at {path}, using defaults")
            loaded = {}
        if isinstance(loaded, dict):
            data = loaded

    initial_data = InitialData.from_dict(data.get("initialData"))
    config = ChatConfig.from_dict(data.get("appConfig"))
    _apply_env_overrides(config)
    return initial_data, config
