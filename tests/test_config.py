"""Tests for configuration helpers."""

import json

from chat_comments.config import (
    DEFAULT_POLL_INTERVAL,
    ENV_OVERRIDES,
    ChatConfig,
    InitialData,
    load_bootstrap,
)


def _clear_overrides(monkeypatch) -> None:
    for name in ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)


def _write_bootstrap(tmp_path, monkeypatch, payload) -> None:
    _clear_overrides(monkeypatch)
    path = tmp_path / "bootstrap.json"
    monkeypatch.setenv("CHAT_COMMENTS_CONFIG", str(path))
    path.write_text(payload if isinstance(payload, str) else json.dumps(payload))


def test_load_bootstrap_reads_page_payload(tmp_path, monkeypatch):
    """Bootstrap file in the page's camelCase shape loads fully."""

    _write_bootstrap(
        tmp_path,
        monkeypatch,
        {
            "initialData": {
                "comments": [{"comment_id": "1", "comment_parent": 0}],
                "lastCommentId": "1",
                "commentCount": "4",
            },
            "appConfig": {
                "ajaxUrl": "https://wp.test/wp-admin/admin-ajax.php",
                "nonce": "abc",
                "postId": 12,
                "isLoggedIn": True,
                "commentsOpen": False,
                "pollInterval": 2500,
                "mentionableUsers": [{"id": 1, "name": "Ada"}, "junk"],
            },
        },
    )

    initial, config = load_bootstrap()

    assert initial.comments == [{"comment_id": "1", "comment_parent": 0}]
    assert initial.last_comment_id == 1
    assert initial.comment_count == 4
    assert config.is_complete
    assert config.post_id == 12
    assert config.comments_open is False
    assert config.poll_interval_seconds == 2.5
    assert config.mentionable_users == [{"id": 1, "name": "Ada"}]


def test_load_bootstrap_handles_missing_file(monkeypatch, tmp_path):
    """Loading without a file should return defaults."""

    monkeypatch.setenv("CHAT_COMMENTS_CONFIG", str(tmp_path / "missing" / "bootstrap.json"))
    _clear_overrides(monkeypatch)

    initial, config = load_bootstrap()

    assert initial == InitialData()
    assert config == ChatConfig()
    assert not config.is_complete


def test_load_bootstrap_handles_malformed_file(monkeypatch, tmp_path):
    _write_bootstrap(tmp_path, monkeypatch, "{not json")

    initial, config = load_bootstrap()

    assert initial.comments == []
    assert config.poll_interval == DEFAULT_POLL_INTERVAL


def test_environment_overrides(monkeypatch, tmp_path):
    _write_bootstrap(tmp_path, monkeypatch, {"appConfig": {"postId": 1, "nonce": "file"}})
    monkeypatch.setenv("CHAT_COMMENTS_AJAX_URL", "https://other.test/ajax")
    monkeypatch.setenv("CHAT_COMMENTS_POST_ID", "77")
    monkeypatch.setenv("CHAT_COMMENTS_POLL_INTERVAL", "soon")

    _, config = load_bootstrap()

    assert config.ajax_url == "https://other.test/ajax"
    assert config.post_id == 77
    assert config.nonce == "file"
    assert config.poll_interval == DEFAULT_POLL_INTERVAL


def test_config_accepts_snake_case_and_round_trips():
    config = ChatConfig.from_dict(
        {"ajax_url": "u", "nonce": "n", "post_id": "5", "poll_interval": 0}
    )

    assert config.post_id == 5
    assert config.poll_interval == DEFAULT_POLL_INTERVAL
    assert ChatConfig.from_dict(config.to_dict()) == config


def test_initial_data_ignores_non_numeric_counts():
    initial = InitialData.from_dict({"comments": "nope", "commentCount": "many"})

    assert initial.comments == []
    assert initial.comment_count is None
    assert initial.last_comment_id is None
