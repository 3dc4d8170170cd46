"""
HLS relay.

Fetches an upstream manifest or segment per client request and answers so
that the client only ever sees relay URLs:

- redirects are rewritten to the relay URL of their Location
- manifests are buffered, validated and rewritten line by line
- everything else is streamed through unbuffered
"""

from __future__ import annotations

import asyncio
import posixpath
from typing import Dict, Optional
from urllib.parse import urljoin, urlparse

import httpx
from aiohttp import web

from services.relay.errors import (
    ProxyUpstreamError,
    ProxyUpstreamTimeout,
    ProxyValidationError,
)
from services.relay.manifest import (
    MANIFEST_CONTENT_TYPE,
    is_manifest,
    rewrite_manifest,
)
from services.relay.tokens import decode_token, encode_token, split_token
from shared.config.relay import ProxyConfig
from shared.logging.logger import get_logger

log = get_logger("relay.proxy")

FORWARDED_HEADERS = (
    "Content-Type",
    "Content-Length",
    "Content-Range",
    "Accept-Ranges",
)


class HlsRelay:
    """Stateless per request; the only shared object is the upstream client."""

    def __init__(
        self,
        config: Optional[ProxyConfig] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._config = config or ProxyConfig()
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(self._config.timeout_seconds),
            follow_redirects=False,
        )
        self._client_owned = client is None

    async def aclose(self) -> None:
        if self._client_owned:
            await self._client.aclose()

    # ------------------------------------------------------------
    # Relay URLs
    # ------------------------------------------------------------

    def relay_url(self, url: str) -> str:
        """Relay URL for an absolute upstream URL, keeping its extension as a hint."""
        ext = posixpath.splitext(urlparse(url).path)[1]
        if not (1 < len(ext) <= 6 and ext[1:].isalnum()):
            ext = ""
        return f"{self._config.public_base_url}/relay/{encode_token(url)}{ext}"

    def _upstream_headers(self, range_header: Optional[str]) -> Dict[str, str]:
        origin = self._config.origin.rstrip("/")
        headers = {
            "User-Agent": self._config.user_agent,
            "Accept": "*/*",
            "Accept-Encoding": "identity",
            "Origin": origin,
            "Referer": f"{origin}/",
        }
        if range_header:
            headers["Range"] = range_header
        return headers

    # ------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------

    async def serve_token(self, request: web.Request, segment: str) -> web.StreamResponse:
        """Relay the upstream URL a token decodes to. InvalidToken propagates."""
        url = decode_token(split_token(segment))
        return await self.serve_url(request, url)

    async def serve_url(self, request: web.Request, url: str) -> web.StreamResponse:
        upstream_request = self._client.build_request(
            "GET",
            url,
            headers=self._upstream_headers(request.headers.get("Range")),
        )

        try:
            upstream = await self._client.send(upstream_request, stream=True)
        except httpx.TimeoutException as e:
            raise ProxyUpstreamTimeout(f"Upstream timeout for {url}: {e}") from e
        except httpx.HTTPError as e:
            raise ProxyUpstreamError(f"Upstream fetch failed for {url}: {e}") from e

        try:
            location = upstream.headers.get("Location")
            if upstream.is_redirect and location:
                return self._redirect(url, upstream.status_code, location)

            if is_manifest(url, upstream.headers.get("Content-Type")):
                return await self._serve_manifest(url, upstream)

            return await self._stream(request, url, upstream)
        finally:
            await upstream.aclose()

    # ------------------------------------------------------------

    def _redirect(self, url: str, status: int, location: str) -> web.Response:
        target = urljoin(url, location)
        log.debug(f"Upstream {status} redirect {url} → {target}")
        return web.Response(
            status=status,
            headers={
                "Location": self.relay_url(target),
                "Cache-Control": "no-store",
            },
        )

    async def _serve_manifest(self, url: str, upstream: httpx.Response) -> web.Response:
        if upstream.status_code >= 400:
            raise ProxyUpstreamError(
                f"Upstream manifest {url} answered {upstream.status_code}",
                status=upstream.status_code,
            )

        # httpx timeouts bound each read; this bounds the whole body.
        try:
            body = await asyncio.wait_for(
                self._read_manifest(url, upstream),
                timeout=self._config.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise ProxyUpstreamTimeout(
                f"Upstream manifest {url} not received within {self._config.timeout_seconds}s"
            ) from e

        encoding = upstream.charset_encoding or "utf-8"
        try:
            text = body.decode(encoding, errors="replace")
        except LookupError:
            log.debug(f"Unknown charset {encoding!r} for {url}; decoding as utf-8")
            text = body.decode("utf-8", errors="replace")

        rewritten = rewrite_manifest(text, url, self.relay_url)

        return web.Response(
            status=upstream.status_code,
            body=rewritten.encode("utf-8"),
            headers={
                "Content-Type": MANIFEST_CONTENT_TYPE,
                "Cache-Control": self._config.manifest_cache_control,
            },
        )

    async def _read_manifest(self, url: str, upstream: httpx.Response) -> bytes:
        body = bytearray()
        try:
            async for chunk in upstream.aiter_bytes():
                body.extend(chunk)
                if len(body) > self._config.max_manifest_bytes:
                    raise ProxyValidationError(
                        f"Upstream manifest {url} exceeds {self._config.max_manifest_bytes} bytes"
                    )
        except httpx.TimeoutException as e:
            raise ProxyUpstreamTimeout(f"Upstream timeout reading {url}: {e}") from e
        except httpx.HTTPError as e:
            raise ProxyUpstreamError(f"Upstream read failed for {url}: {e}") from e
        return bytes(body)

    async def _stream(
        self,
        request: web.Request,
        url: str,
        upstream: httpx.Response,
    ) -> web.StreamResponse:
        response = web.StreamResponse(status=upstream.status_code)
        for name in FORWARDED_HEADERS:
            value = upstream.headers.get(name)
            if value is not None:
                response.headers[name] = value
        response.headers["Cache-Control"] = self._config.segment_cache_control

        chunks = upstream.aiter_raw(self._config.chunk_size)

        # The first read happens before any byte is sent so a stalled origin
        # still maps to a gateway timeout.
        try:
            first = await chunks.__anext__()
        except StopAsyncIteration:
            first = b""
        except httpx.TimeoutException as e:
            raise ProxyUpstreamTimeout(f"Upstream timeout reading {url}: {e}") from e
        except httpx.HTTPError as e:
            raise ProxyUpstreamError(f"Upstream read failed for {url}: {e}") from e

        await response.prepare(request)

        try:
            if first:
                await response.write(first)
                async for chunk in chunks:
                    await response.write(chunk)
        except httpx.HTTPError as e:
            # Headers are already out. Closing the transport before write_eof
            # leaves the body unterminated so the client sees a truncated payload.
            log.warning(f"Upstream stream aborted for {url}: {e}")
            response.force_close()
            if request.transport is not None:
                request.transport.close()
            return response
        except ConnectionResetError:
            log.debug(f"Client disconnected from {url}")
            return response

        await response.write_eof()
        return response
