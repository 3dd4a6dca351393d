"""
Ollama Auth Proxy - Bearer API key gateway for inference servers

Authenticates each /v1 request against a set of API keys loaded at startup
(from SQLite, a file, or an inline list) and relays it unmodified to the
upstream server, streaming the response back.
"""

__version__ = "0.1.0"

from .config import ProxyConfig, load_config, build_config
from .errors import ConfigError, AuthError, UpstreamError
from .server import create_app

__all__ = [
    "__version__",
    "ProxyConfig",
    "load_config",
    "build_config",
    "ConfigError",
    "AuthError",
    "UpstreamError",
    "create_app",
]
