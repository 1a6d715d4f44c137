"""Tests for the polling loop and refresh coordination."""

import asyncio
from urllib.parse import parse_qs

import httpx

from chat_comments.client import CommentsClient
from chat_comments.comments import Comment
from chat_comments.config import ChatConfig
from chat_comments.polling import CommentPoller, RefreshCoordinator
from chat_comments.stream import CommentStream

AJAX_URL = "https://wp.test/wp-admin/admin-ajax.php"


def _record(comment_id, parent=0):
    return {"comment_id": comment_id, "comment_parent": parent}


def _envelope(comments, last_comment_id):
    return {
        "success": True,
        "data": {
            "new_comments": comments,
            "last_comment_id": last_comment_id,
            "has_new": bool(comments),
        },
    }


class FakeEndpoint:
    """Answers poll requests with queued responses, then with 'nothing new'."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        form = parse_qs(request.content.decode(), keep_blank_values=True)
        self.calls.append({key: values[0] for key, values in form.items()})
        if self.responses:
            response = self.responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return httpx.Response(200, json=response)
        last_id = int(self.calls[-1].get("last_comment_id", 0))
        return httpx.Response(200, json=_envelope([], last_id))


def _make_poller(endpoint, **kwargs):
    config = ChatConfig(ajax_url=AJAX_URL, nonce="n0nce", post_id=12, poll_interval=5000)
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(endpoint))
    stream = CommentStream(config, client=CommentsClient(config, http_client=http_client))
    poller = CommentPoller(stream, coordinator=RefreshCoordinator(), **kwargs)
    return poller, stream


def test_interval_defaults_to_config():
    poller, _ = _make_poller(FakeEndpoint())
    assert poller.interval == 5.0


def test_poll_sends_current_watermark():
    endpoint = FakeEndpoint([_envelope([_record(5), _record(6, parent=5)], 6)])
    poller, stream = _make_poller(endpoint)

    async def scenario():
        first = await poller.poll()
        second = await poller.poll()
        return first, second

    first, second = asyncio.run(scenario())

    assert [c.id for c in first] == [5, 6]
    assert second == ()
    assert endpoint.calls[0] == {
        "action": "chat_get_new_comments",
        "nonce": "n0nce",
        "post_id": "12",
        "last_comment_id": "0",
    }
    assert endpoint.calls[1]["last_comment_id"] == "6"
    assert stream.threads_with_new_messages == {5}


def test_stale_duplicate_responses_are_harmless():
    batch = [_record(1), _record(2, parent=1)]
    endpoint = FakeEndpoint([_envelope(batch, 2), _envelope(batch, 2)])
    poller, stream = _make_poller(endpoint)

    async def scenario():
        return await asyncio.gather(poller.poll(), poller.poll())

    results = asyncio.run(scenario())

    assert sorted(len(added) for added in results) == [0, 2]
    assert [c.id for c in stream.comments] == [1, 2]
    assert stream.comment_count == 2


def test_transport_errors_are_absorbed():
    endpoint = FakeEndpoint(
        [httpx.ConnectError("boom"), _envelope([_record(3)], 3)]
    )
    poller, stream = _make_poller(endpoint)

    async def scenario():
        failed = await poller.poll()
        stats = poller.get_stats()
        recovered = await poller.poll()
        return failed, stats, recovered

    failed, stats, recovered = asyncio.run(scenario())

    assert failed == ()
    assert stats["error_count"] == 1
    assert "boom" in stats["last_error"]
    assert [c.id for c in recovered] == [3]
    assert poller.get_stats()["error_count"] == 0


def test_malformed_response_is_absorbed():
    def endpoint(request):
        return httpx.Response(200, text="0")

    poller, stream = _make_poller(endpoint)

    assert asyncio.run(poller.poll()) == ()
    assert poller.get_stats()["error_count"] == 1


def test_incomplete_config_skips_polling():
    endpoint = FakeEndpoint()
    config = ChatConfig(ajax_url=AJAX_URL, post_id=12)
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(endpoint))
    stream = CommentStream(config, client=CommentsClient(config, http_client=http_client))
    poller = CommentPoller(stream, coordinator=RefreshCoordinator())

    assert asyncio.run(poller.poll()) == ()
    assert endpoint.calls == []


def test_initial_delay_fires_once():
    endpoint = FakeEndpoint([_envelope([_record(1)], 1)])
    poller, stream = _make_poller(endpoint, interval=60, initial_delay=0.01)

    async def scenario():
        await poller.start()
        await asyncio.sleep(0.1)
        await poller.stop()

    asyncio.run(scenario())

    assert len(endpoint.calls) == 1
    assert [c.id for c in stream.comments] == [1]


def test_interval_skipped_while_hidden():
    endpoint = FakeEndpoint()
    poller, _ = _make_poller(endpoint, interval=0.01, initial_delay=60)

    async def scenario():
        poller.set_visible(False)
        await poller.start()
        await asyncio.sleep(0.1)
        hidden_calls = len(endpoint.calls)
        poller.set_visible(True)
        await asyncio.sleep(0.1)
        await poller.stop()
        return hidden_calls

    hidden_calls = asyncio.run(scenario())

    assert hidden_calls == 0
    assert len(endpoint.calls) >= 2


def test_visibility_regain_polls_immediately():
    endpoint = FakeEndpoint()
    poller, _ = _make_poller(endpoint, interval=60, initial_delay=60)

    async def scenario():
        await poller.start()
        poller.set_visible(True)  # already visible: no transition
        await asyncio.sleep(0.01)
        before = len(endpoint.calls)
        poller.set_visible(False)
        poller.set_visible(True)
        await asyncio.sleep(0.05)
        after = len(endpoint.calls)
        await poller.stop()
        return before, after

    before, after = asyncio.run(scenario())

    assert before == 0
    assert after == 1


def test_stop_is_idempotent_and_start_requires_post_id():
    poller, _ = _make_poller(FakeEndpoint(), interval=60, initial_delay=60)

    async def scenario():
        await poller.start()
        running = poller.get_stats()["running"]
        await poller.stop()
        await poller.stop()
        return running

    assert asyncio.run(scenario()) is True
    assert poller.get_stats()["running"] is False

    stream = CommentStream(ChatConfig())
    idle = CommentPoller(stream, coordinator=RefreshCoordinator())
    asyncio.run(idle.start())
    assert idle.get_stats()["running"] is False


def test_new_comments_trigger_refresh_event():
    endpoint = FakeEndpoint([_envelope([_record(4)], 4)])
    poller, _ = _make_poller(endpoint)

    async def scenario():
        events = poller.coordinator.subscribe()
        heartbeat = await events.__anext__()
        await poller.poll()
        update = await asyncio.wait_for(events.__anext__(), timeout=1.0)
        await events.aclose()
        return heartbeat, update

    heartbeat, update = asyncio.run(scenario())

    assert heartbeat["type"] == "heartbeat"
    assert update["type"] == "comments:updated"
    assert update["added"] == [4]
    assert update["reason"] == "poll"
    assert poller.coordinator.get_stats()["subscribers"] == 0


def test_invalid_endpoint_url_is_counted_as_error():
    endpoint = FakeEndpoint()
    config = ChatConfig(ajax_url="https://wp.test:notaport/admin-ajax.php", nonce="n", post_id=3)
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(endpoint))
    stream = CommentStream(config, client=CommentsClient(config, http_client=http_client))
    poller = CommentPoller(stream, coordinator=RefreshCoordinator())

    assert asyncio.run(poller.poll()) == ()
    assert poller.get_stats()["error_count"] == 1
    assert "Invalid ajaxUrl" in poller.get_stats()["last_error"]
    assert endpoint.calls == []


def test_refresh_reaches_every_open_subscriber():
    coordinator = RefreshCoordinator()
    comment = Comment(id=9, parent_id=0)

    async def scenario():
        first = coordinator.subscribe()
        second = coordinator.subscribe()
        closed = coordinator.subscribe()
        for events in (first, second, closed):
            await events.__anext__()
        await closed.aclose()

        await coordinator.trigger_refresh((comment,), reason="submit")
        received = [await events.__anext__() for events in (first, second)]
        subscribers = coordinator.get_stats()["subscribers"]
        await first.aclose()
        await second.aclose()
        return received, subscribers

    received, subscribers = asyncio.run(scenario())

    assert subscribers == 2
    assert [event["added"] for event in received] == [[9], [9]]
    assert {event["reason"] for event in received} == {"submit"}
    assert coordinator.get_stats()["refresh_count"] == 1
    assert coordinator.get_stats()["subscribers"] == 0
