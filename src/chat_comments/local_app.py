"""Local preview service exposing a live comment stream over HTTP."""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
from datetime import datetime
from typing import Any, AsyncGenerator, Dict, List, Optional, Set
from urllib.parse import urlparse

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse

from chat_comments.client import DEFAULT_TIMEOUT, CommentsClient
from chat_comments.config import load_bootstrap
from chat_comments.errors import (
    CommentValidationError,
    ConfigurationError,
    ServerError,
    TransportError,
)
from chat_comments.polling import CommentPoller, RefreshCoordinator
from chat_comments.stream import CommentStream
from chat_comments.view import build_stream_view

logger = logging.getLogger(__name__)

app = FastAPI(title="Chat Comments (Local)")

_stream: Optional[CommentStream] = None
_poller: Optional[CommentPoller] = None
_http_client: Optional[httpx.AsyncClient] = None
_coordinator = RefreshCoordinator()

CSRF_HEADER = "X-Chat-Comments-CSRF"
CSRF_TOKEN = secrets.token_urlsafe(32)
ALLOWED_HOSTS = {"127.0.0.1:8080", "localhost:8080", "testserver"}

# Seconds without a successful poll, as multiples of the interval.
STALE_POLL_FACTOR = 3
ERROR_POLL_FACTOR = 10


def _create_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=DEFAULT_TIMEOUT)


def _get_stream() -> CommentStream:
    if _stream is None:
        raise HTTPException(status_code=503, detail="Comment stream not initialized")
    return _stream


def _origin_from_url(value: str | None) -> str | None:
    if not value:
        return None
    try:
        parsed = urlparse(value)
    except ValueError:
        return None
    if not parsed.scheme or not parsed.netloc:
        return None
    return f"{parsed.scheme}://{parsed.netloc}"


def _expected_origins(request: Request) -> Set[str]:
    host = request.headers.get("host")
    allowed_hosts = set(ALLOWED_HOSTS)
    if host:
        allowed_hosts.add(host)
    origins: Set[str] = set()
    for entry in allowed_hosts:
        origins.add(f"http://{entry}")
        origins.add(f"https://{entry}")
    return origins


def _require_authorized_post(request: Request) -> None:
    allowed_origins = _expected_origins(request)

    origin = _origin_from_url(request.headers.get("origin"))
    if origin and origin not in allowed_origins:
        raise HTTPException(status_code=403, detail="Cross-origin POST blocked")

    referer = _origin_from_url(request.headers.get("referer"))
    if referer and referer not in allowed_origins:
        raise HTTPException(status_code=403, detail="Cross-site POST blocked")

    token = request.headers.get(CSRF_HEADER)
    if token != CSRF_TOKEN:
        raise HTTPException(status_code=403, detail="Invalid or missing CSRF token")


def _build_health_response(
    poller_stats: Optional[Dict[str, Any]], coordinator_stats: Dict[str, Any]
) -> Dict[str, Any]:
    """Classify poller health as OK, DEGRADED or ERROR."""

    now = datetime.now()
    issues: List[str] = []
    status = "OK"

    def _escalate(level: str) -> None:
        nonlocal status
        order = ["OK", "DEGRADED", "ERROR"]
        if order.index(level) > order.index(status):
            status = level

    if not poller_stats:
        issues.append("Poller not configured")
        _escalate("ERROR")
    else:
        interval = float(poller_stats.get("interval") or 5)

        if not poller_stats.get("running"):
            issues.append("Poller not running")
            _escalate("ERROR")

        error_count = int(poller_stats.get("error_count") or 0)
        if error_count > 3:
            issues.append(f"Repeated errors ({error_count}): {poller_stats.get('last_error')}")
            _escalate("ERROR")
        elif error_count:
            issues.append(f"Recent error: {poller_stats.get('last_error')}")
            _escalate("DEGRADED")

        # Interval ticks are skipped while the page is hidden.
        last_poll = poller_stats.get("last_poll")
        if last_poll and poller_stats.get("visible", True):
            age = (now - datetime.fromisoformat(last_poll)).total_seconds()
            if age > interval * ERROR_POLL_FACTOR:
                issues.append(f"Last poll is stale ({int(age)}s ago)")
                _escalate("ERROR")
            elif age > interval * STALE_POLL_FACTOR:
                issues.append(f"Last poll becoming stale ({int(age)}s ago)")
                _escalate("DEGRADED")

    return {
        "status": status,
        "timestamp": now.isoformat(),
        "issues": issues,
        "poller": poller_stats,
        "coordinator": coordinator_stats,
    }


@app.get("/api/stream")
async def get_stream() -> JSONResponse:
    """Return the current view state of the stream."""

    return JSONResponse(build_stream_view(_get_stream()))


@app.post("/api/comments")
async def submit_comment(payload: Dict[str, Any], request: Request) -> JSONResponse:
    """Submit a comment or reply."""

    _require_authorized_post(request)
    stream = _get_stream()

    if not stream.config.comments_open:
        raise HTTPException(status_code=403, detail="Comments are closed")

    content = payload.get("content")
    if not isinstance(content, str):
        raise HTTPException(status_code=400, detail="content must be a string")

    try:
        comment = await stream.submit_comment(content, payload.get("parentId") or 0)
    except (CommentValidationError, ConfigurationError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except (ServerError, TransportError) as exc:
        logger.error(f"Comment submission failed: {exc}")
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    await _coordinator.trigger_refresh((comment,), reason="submit")
    return JSONResponse({
        "status": "ok",
        "comment": comment.to_dict(),
        "stream": build_stream_view(stream),
    })


@app.post("/api/threads/{comment_id}/toggle")
async def toggle_thread(comment_id: int, request: Request) -> JSONResponse:
    """Expand or collapse a thread."""

    _require_authorized_post(request)
    stream = _get_stream()

    expanded = stream.toggle_thread(comment_id)
    return JSONResponse({"status": "ok", "expanded": expanded})


@app.post("/api/visibility")
async def update_visibility(payload: Dict[str, Any], request: Request) -> JSONResponse:
    """Report page visibility so the poller can pause and resume."""

    _require_authorized_post(request)

    visible = payload.get("visible")
    if not isinstance(visible, bool):
        raise HTTPException(status_code=400, detail="visible must be a boolean")

    if _poller:
        _poller.set_visible(visible)
    return JSONResponse({"status": "ok", "visible": visible})


@app.post("/api/poll")
async def poll_now(request: Request) -> JSONResponse:
    """Poll immediately instead of waiting for the next tick."""

    _require_authorized_post(request)
    stream = _get_stream()

    added = await _poller.poll() if _poller else ()
    return JSONResponse({
        "status": "ok",
        "added": [comment.id for comment in added],
        "lastCommentId": stream.last_comment_id,
    })


@app.get("/api/events")
async def events_stream(request: Request) -> StreamingResponse:
    """Server-Sent Events stream for stream updates."""

    async def event_generator() -> AsyncGenerator[str, None]:
        """Generate SSE-formatted events."""
        try:
            async for event in _coordinator.subscribe():
                if await request.is_disconnected():
                    break

                yield f"data: {json.dumps(event)}\n\n"

        except asyncio.CancelledError:
            logger.info("SSE client disconnected")
            raise

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )


@app.get("/api/health")
async def health_check() -> JSONResponse:
    """Health check endpoint with poller status."""

    poller_stats = _poller.get_stats() if _poller else None
    return JSONResponse(_build_health_response(poller_stats, _coordinator.get_stats()))


@app.on_event("startup")
async def startup_event():
    """Seed the stream from the bootstrap file and start polling."""
    global _stream, _poller, _http_client

    initial_data, config = load_bootstrap()
    _http_client = _create_http_client()
    _stream = CommentStream(
        config,
        initial_data,
        client=CommentsClient(config, http_client=_http_client),
    )
    logger.info(
        f"Seeded stream for post {config.post_id} with {len(_stream.comments)} comment(s)"
    )

    if not config.is_complete:
        logger.warning("App config incomplete (ajaxUrl, nonce, postId); polling disabled")
        return

    _poller = CommentPoller(_stream, coordinator=_coordinator)
    await _poller.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Stop polling and release the HTTP client."""
    global _stream, _poller, _http_client

    if _poller:
        try:
            await _poller.stop()
        except Exception as e:
            logger.error(f"Error stopping poller: {e}")

    if _http_client:
        await _http_client.aclose()

    _stream = None
    _poller = None
    _http_client = None
    logger.info("Comment stream shutdown complete")
