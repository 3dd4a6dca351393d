"""
Error taxonomy for the Ollama Auth Proxy.

ConfigError is fatal and raised only at startup. AuthError and UpstreamError
are per-request and are translated to HTTP responses by the server.
"""

from typing import Optional


class ProxyError(Exception):
    """Base class for all proxy errors."""


class ConfigError(ProxyError):
    """Configuration is missing or a declared key source cannot be read."""


class AuthError(ProxyError):
    """Request carries a missing, malformed or unknown credential."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class UpstreamError(ProxyError):
    """Upstream could not be reached or failed at the transport level."""

    def __init__(self, message: str, status_code: int = 502, cause: Optional[Exception] = None):
        super().__init__(message)
        self.status_code = status_code
        self.cause = cause
