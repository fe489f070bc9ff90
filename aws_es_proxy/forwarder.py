"""
Proxy Forwarder
Relays signed requests to the fixed upstream with httpx and streams the
upstream response back through Quart.
"""

import logging
import re
import time

import httpx
from quart import Response

from aws_es_proxy.errors import UpstreamProxyError

logger = logging.getLogger(__name__)

# ─── CONFIG ──────────────────────────────────────────────────────────────────

HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "proxy-connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)

STATIC_ASSET_PATTERN = re.compile(r"\.(css|js|img|font)")
STATIC_ASSET_CACHE_CONTROL = "public, max-age=86400"

# ─── FORWARDER ───────────────────────────────────────────────────────────────


class ProxyForwarder:
    """Async forwarder to one upstream base URL, TLS verification on"""

    def __init__(self, target: str, timeout: float = 60.0, transport: httpx.AsyncBaseTransport | None = None):
        self.target = target.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self.client = None

    async def start(self):
        """Start the HTTP client"""
        if self.client is None:
            self.client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout), verify=True, follow_redirects=False, transport=self._transport)
            logger.info(f"HTTP client started for {self.target}")

    async def stop(self):
        """Stop the HTTP client"""
        if self.client:
            await self.client.aclose()
            self.client = None
            logger.info("HTTP client stopped")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    async def forward(self, method: str, path: str, headers: list[tuple[str, str]], body: bytes) -> Response:
        """
        Send the already-signed request upstream and return a streaming response.

        `body` is the buffered request body that was hashed for the signature;
        it is sent as-is. Upstream statuses (including 4xx/5xx) are relayed
        unchanged; only transport failures raise UpstreamProxyError.
        """
        await self.start()

        forward_headers = [(k, v) for k, v in headers if k.lower() not in HOP_BY_HOP_HEADERS and k.lower() != "content-length"]
        # Built directly rather than via client.build_request so httpx adds
        # no default Accept / Accept-Encoding / User-Agent headers.
        upstream_request = httpx.Request(method, self.target + path, headers=forward_headers, content=body)

        start = time.time()
        try:
            upstream = await self.client.send(upstream_request, stream=True)
        except httpx.HTTPError as exc:
            logger.error(f"Proxy error: {method} {path}: {exc!r}")
            raise UpstreamProxyError(str(exc)) from exc

        logger.info(f"{method} {path} → {upstream.status_code} (took {time.time() - start:.3f}s)")

        response_headers = [(k, v) for k, v in upstream.headers.multi_items() if k.lower() not in HOP_BY_HOP_HEADERS]
        if STATIC_ASSET_PATTERN.search(path):
            response_headers = [(k, v) for k, v in response_headers if k.lower() != "cache-control"]
            response_headers.append(("Cache-Control", STATIC_ASSET_CACHE_CONTROL))

        if method == "HEAD":
            # Quart never iterates a HEAD body, so release the upstream now
            await upstream.aclose()
            response = Response(b"", status=upstream.status_code, headers=response_headers)
            if "content-length" in upstream.headers:
                response.headers["Content-Length"] = upstream.headers["content-length"]
            if "content-type" not in upstream.headers:
                response.headers.pop("Content-Type", None)
            return response

        async def relay_body():
            try:
                async for chunk in upstream.aiter_raw():
                    yield chunk
            except httpx.HTTPError as exc:
                # Status line is already out; all we can do is cut the body short
                logger.error(f"Proxy error while streaming {method} {path}: {exc!r}")
            finally:
                await upstream.aclose()

        response = Response(relay_body(), status=upstream.status_code, headers=response_headers)
        if "content-type" not in upstream.headers:
            response.headers.pop("Content-Type", None)
        return response
