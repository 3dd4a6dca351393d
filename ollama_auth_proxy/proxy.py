"""
Transparent HTTP forwarding to the upstream inference server.

The incoming request is replayed against the upstream with the same method,
path, query, headers and body. The upstream response is streamed back as raw
bytes, so chunked and token-by-token generation reach the caller as they
arrive and content encodings pass through untouched.
"""

import logging
from dataclasses import dataclass
from typing import Optional, List, Tuple, Iterable, AsyncIterator, FrozenSet

import httpx
from fastapi import Request
from fastapi.responses import StreamingResponse

from .errors import UpstreamError

logger = logging.getLogger("ollama-auth-proxy.proxy")

RawHeaders = List[Tuple[bytes, bytes]]

# RFC 7230 section 6.1
HOP_BY_HOP_HEADERS: FrozenSet[bytes] = frozenset({
    b"connection",
    b"keep-alive",
    b"proxy-authenticate",
    b"proxy-authorization",
    b"te",
    b"trailer",
    b"trailers",
    b"transfer-encoding",
    b"upgrade",
})

# Defaults httpx adds to every request; the caller's headers are sent instead
CLIENT_DEFAULT_HEADERS = ("Accept", "Accept-Encoding", "User-Agent")


@dataclass
class ProxyStats:
    """Per-process request counters."""
    requests_total: int = 0
    requests_rejected: int = 0
    requests_relayed: int = 0
    requests_failed: int = 0


def filter_headers(raw_headers: Iterable[Tuple[bytes, bytes]], drop: Iterable[bytes] = ()) -> RawHeaders:
    """
    Remove hop-by-hop headers, including any listed in a Connection header.

    `drop` names extra headers to remove. Order and duplicates are preserved.
    """
    raw_headers = list(raw_headers)
    excluded = set(HOP_BY_HOP_HEADERS)
    excluded.update(name.lower() for name in drop)

    for name, value in raw_headers:
        if name.lower() == b"connection":
            excluded.update(
                token.strip().lower() for token in value.split(b",") if token.strip()
            )

    return [(name, value) for name, value in raw_headers if name.lower() not in excluded]


def build_upstream_url(upstream_url: str, path: str, query: str = "") -> str:
    """Join the upstream origin with the incoming path and query, verbatim."""
    url = upstream_url.rstrip("/") + path
    if query:
        url += "?" + query
    return url


def create_upstream_client(
    timeout: Optional[float] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Create the shared client used for all upstream calls."""
    client = httpx.AsyncClient(
        timeout=httpx.Timeout(timeout),
        transport=transport,
        follow_redirects=False,
    )
    for name in CLIENT_DEFAULT_HEADERS:
        client.headers.pop(name, None)
    return client


def _request_target(request: Request) -> Tuple[str, str]:
    """Raw path and query of the incoming request, as received on the wire."""
    raw_path = request.scope.get("raw_path")
    if raw_path:
        path = raw_path.split(b"?", 1)[0].decode("latin-1")
    else:
        path = request.url.path
    query = request.scope.get("query_string", b"").decode("latin-1")
    return path, query


def _has_body(request: Request) -> bool:
    return "content-length" in request.headers or "transfer-encoding" in request.headers


class ForwardingProxy:
    """
    Relays authenticated requests to a single upstream origin.

    One attempt per request; transport failures raise UpstreamError.
    """

    def __init__(
        self,
        upstream_url: str,
        client: httpx.AsyncClient,
        strip_authorization: bool = False,
        stats: Optional[ProxyStats] = None,
    ):
        self.upstream_url = upstream_url.rstrip("/")
        self.client = client
        self.strip_authorization = strip_authorization
        self.stats = stats or ProxyStats()

    def build_request(self, request: Request) -> httpx.Request:
        """Turn the incoming request into the upstream request."""
        path, query = _request_target(request)
        url = build_upstream_url(self.upstream_url, path, query)

        # Host is regenerated by httpx from the upstream URL
        drop = [b"host"]
        if self.strip_authorization:
            drop.append(b"authorization")
        headers = filter_headers(request.headers.raw, drop=drop)

        return self.client.build_request(
            method=request.method,
            url=url,
            headers=headers,
            content=request.stream() if _has_body(request) else None,
        )

    async def forward(self, request: Request) -> StreamingResponse:
        """Send the request upstream and stream the response back."""
        upstream_request = self.build_request(request)
        logger.debug(f"Forwarding {upstream_request.method} {upstream_request.url}")

        try:
            upstream = await self.client.send(upstream_request, stream=True)
        except httpx.TimeoutException as e:
            logger.error(f"Upstream timeout for {upstream_request.method} {upstream_request.url}: {e!r}")
            raise UpstreamError("Upstream timeout", status_code=504, cause=e)
        except httpx.RequestError as e:
            logger.error(f"Error forwarding request to {upstream_request.url}: {e!r}")
            raise UpstreamError("Upstream request failed", status_code=502, cause=e)

        response = StreamingResponse(
            self._relay_body(upstream),
            status_code=upstream.status_code,
        )
        # Assigned directly so repeated headers (e.g. Set-Cookie) survive
        response.raw_headers = [
            (name.lower(), value) for name, value in filter_headers(upstream.headers.raw)
        ]
        return response

    async def _relay_body(self, upstream: httpx.Response) -> AsyncIterator[bytes]:
        """
        Yield upstream body bytes in order; always release the connection.

        A request counts as relayed only once the whole body has been passed
        on. A caller disconnect cancels the generator and counts as neither.
        """
        try:
            async for chunk in upstream.aiter_raw():
                yield chunk
        except httpx.RequestError as e:
            # Status line is already sent; the relayed body ends short
            self.stats.requests_failed += 1
            logger.error(f"Upstream stream interrupted for {upstream.request.url}: {e!r}")
        else:
            self.stats.requests_relayed += 1
        finally:
            await upstream.aclose()
