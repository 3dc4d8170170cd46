"""HTTP routes for the relay: by token, by cached event feed, and refresh trigger."""

from __future__ import annotations

from http import HTTPStatus
from typing import Callable, Optional

from aiohttp import web

from core.cache import StreamCache
from services.relay.errors import (
    InvalidToken,
    ProxyUpstreamError,
    ProxyUpstreamTimeout,
    ProxyValidationError,
)
from services.relay.proxy import HlsRelay
from shared.logging.logger import get_logger

log = get_logger("relay.server")

RELAY_KEY = web.AppKey("relay", HlsRelay)
CACHE_KEY = web.AppKey("cache", StreamCache)
TRIGGER_KEY = web.AppKey("trigger", object)


async def _relayed(request: web.Request, serve) -> web.StreamResponse:
    try:
        return await serve()
    except InvalidToken:
        raise web.HTTPNotFound(text="Unknown relay token")
    except ProxyUpstreamTimeout as e:
        log.warning(f"Gateway timeout: {e}")
        return web.Response(status=HTTPStatus.GATEWAY_TIMEOUT, text="Upstream timeout")
    except ProxyUpstreamError as e:
        log.warning(f"Upstream error: {e}")
        return web.Response(status=e.status, text="Upstream error")
    except ProxyValidationError as e:
        log.warning(f"Rejected upstream manifest: {e}")
        return web.Response(status=e.status, text="Invalid upstream manifest")


async def handle_relay(request: web.Request) -> web.StreamResponse:
    relay = request.app[RELAY_KEY]
    segment = request.match_info["token"]
    return await _relayed(request, lambda: relay.serve_token(request, segment))


async def handle_stream(request: web.Request) -> web.StreamResponse:
    cache = request.app[CACHE_KEY]
    relay = request.app[RELAY_KEY]

    stream_id = request.match_info["stream_id"]
    index = int(request.match_info["index"])

    record = cache.get(stream_id)
    if record is None:
        raise web.HTTPNotFound(text=f"Unknown stream {stream_id}")

    url = record.feed(index)
    if url is None:
        raise web.HTTPNotFound(text=f"Stream {stream_id} has no feed {index}")

    return await _relayed(request, lambda: relay.serve_url(request, url))


async def handle_refresh(request: web.Request) -> web.Response:
    trigger = request.app[TRIGGER_KEY]
    started = trigger()
    if started:
        return web.json_response({"status": "started"}, status=HTTPStatus.ACCEPTED)
    return web.json_response({"status": "skipped"}, status=HTTPStatus.OK)


def build_app(
    relay: HlsRelay,
    cache: StreamCache,
    trigger: Optional[Callable[[], bool]] = None,
) -> web.Application:
    app = web.Application()
    app[RELAY_KEY] = relay
    app[CACHE_KEY] = cache

    app.router.add_get("/relay/{token}", handle_relay)
    app.router.add_get(r"/stream/{stream_id}/{index:\d+}", handle_stream)
    app.router.add_get(r"/stream/{stream_id}/{index:\d+}.m3u8", handle_stream)

    if trigger is not None:
        app[TRIGGER_KEY] = trigger
        app.router.add_post("/refresh", handle_refresh)

    return app
