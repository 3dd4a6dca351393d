"""
Ollama Auth Proxy Server

FastAPI application that authenticates every /v1 request with a bearer API
key and relays it to the upstream inference server.
"""

import logging
from dataclasses import asdict
from typing import Optional, Dict
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from starlette.types import Scope, Receive, Send

from . import __version__
from .auth import authenticate
from .config import ProxyConfig
from .errors import AuthError, UpstreamError
from .keys import KeyStore, resolve_keys
from .proxy import ForwardingProxy, ProxyStats, create_upstream_client

# Logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("ollama-auth-proxy")


class HealthResponse(BaseModel):
    status: str
    version: str
    key_source: str
    keys_loaded: int
    stats: Dict[str, int]


class ProxyEndpoint:
    """
    ASGI endpoint for /v1: authenticate, then relay to the upstream unchanged.

    Mounted as a plain ASGI app so the route accepts every HTTP method,
    including extension methods such as PROPFIND or PURGE. AuthError and
    UpstreamError propagate to the app's exception handlers.
    """

    def __init__(self, keystore: KeyStore, stats: ProxyStats):
        self.keystore = keystore
        self.stats = stats

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        self.stats.requests_total += 1

        authenticate(request.headers, self.keystore).raise_for_status()

        response = await request.app.state.proxy.forward(request)
        await response(scope, receive, send)


# =============================================================================
# Application Factory
# =============================================================================

def create_app(
    config: Optional[ProxyConfig] = None,
    keystore: Optional[KeyStore] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    The KeyStore is resolved here, before any socket is bound, so a missing
    or unreadable key source raises ConfigError and the server never starts.
    `transport` replaces the network transport of the upstream client.
    """
    config = config or ProxyConfig()
    if keystore is None:
        keystore = resolve_keys(config.keys)

    stats = ProxyStats()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Own the shared upstream client for the lifetime of the app."""
        client = create_upstream_client(timeout=config.upstream.timeout, transport=transport)
        app.state.proxy = ForwardingProxy(
            upstream_url=config.upstream.url,
            client=client,
            strip_authorization=config.upstream.strip_authorization,
            stats=stats,
        )
        logger.info(f"Forwarding /v1 requests to {config.upstream.url}")

        yield

        logger.info("Ollama Auth Proxy shutting down...")
        await client.aclose()

    app = FastAPI(
        title="Ollama Auth Proxy",
        description="Bearer API key gateway for an upstream inference server",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    # Store components in app state
    app.state.config = config
    app.state.keystore = keystore
    app.state.stats = stats

    if config.server.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.server.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # =========================================================================
    # Error mapping
    # =========================================================================

    @app.exception_handler(AuthError)
    async def handle_auth_error(request: Request, exc: AuthError):
        stats.requests_rejected += 1
        logger.info(f"Rejected {request.method} {request.url.path}: {exc.reason}")
        return PlainTextResponse(
            "Unauthorized",
            status_code=401,
            headers={"WWW-Authenticate": "Bearer"},
        )

    @app.exception_handler(UpstreamError)
    async def handle_upstream_error(request: Request, exc: UpstreamError):
        stats.requests_failed += 1
        return PlainTextResponse(str(exc), status_code=exc.status_code)

    # =========================================================================
    # Routes
    # =========================================================================

    @app.get("/health", response_model=HealthResponse)
    async def health():
        """Health check."""
        return HealthResponse(
            status="healthy",
            version=__version__,
            key_source=keystore.source,
            keys_loaded=len(keystore),
            stats=asdict(stats),
        )

    # No method list: every method is authenticated and forwarded
    app.add_route("/v1/{path:path}", ProxyEndpoint(keystore, stats), include_in_schema=False)

    return app


# =============================================================================
# Main
# =============================================================================

def main(config: Optional[ProxyConfig] = None, keystore: Optional[KeyStore] = None):
    """Run the proxy server. Raises ConfigError before binding if keys cannot be resolved."""
    import uvicorn

    config = config or ProxyConfig()
    if keystore is None:
        keystore = resolve_keys(config.keys)
    app = create_app(config, keystore=keystore)

    logger.info(f"Starting Ollama Auth Proxy on {config.server.host}:{config.server.port}")
    logger.info(f"  Upstream: {config.upstream.url}")
    logger.info(f"  Keys: {len(keystore)} from {keystore.source} source")

    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level=config.server.log_level,
    )


if __name__ == "__main__":
    from .config import build_config

    main(build_config())
