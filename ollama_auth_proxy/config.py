"""
Configuration management for the Ollama Auth Proxy.

Values are layered: defaults, then an optional YAML file (with environment
variable expansion), then environment variables, then command-line flags.
"""

import os
import re
from pathlib import Path
from dataclasses import dataclass, field, replace
from typing import Optional, Dict, List, Any, Mapping

import yaml

from .errors import ConfigError


DEFAULT_UPSTREAM_URL = "http://127.0.0.1:11434"
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000

# Levels accepted by uvicorn
LOG_LEVELS = ("critical", "error", "warning", "info", "debug", "trace")


@dataclass
class ServerConfig:
    """HTTP listener configuration."""
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    log_level: str = "info"
    cors_origins: List[str] = field(default_factory=list)


@dataclass
class UpstreamConfig:
    """Upstream inference server."""
    url: str = DEFAULT_UPSTREAM_URL
    # None disables the client timeout entirely
    timeout: Optional[float] = None
    strip_authorization: bool = False


@dataclass
class KeySourceConfig:
    """
    Key source descriptors, highest priority first.

    Only the first configured source is used, even if it yields no keys.
    """
    sqlite: Optional[str] = None
    file: Optional[str] = None
    inline: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.sqlite or self.file or self.inline)


@dataclass
class ProxyConfig:
    """Root configuration for the proxy."""
    server: ServerConfig = field(default_factory=ServerConfig)
    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
    keys: KeySourceConfig = field(default_factory=KeySourceConfig)


@dataclass
class ConfigOverrides:
    """
    Values supplied from the environment or the command line.

    Any field left as None keeps the value already in the config.
    """
    ollama_url: Optional[str] = None
    proxy_host: Optional[str] = None
    proxy_port: Optional[int] = None
    api_keys_sqlite: Optional[str] = None
    api_keys_file: Optional[str] = None
    api_keys: Optional[str] = None

    @property
    def has_key_source(self) -> bool:
        return bool(self.api_keys_sqlite or self.api_keys_file or self.api_keys)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ConfigOverrides":
        """Read overrides from OLLAMA_URL, PROXY_HOST, PROXY_PORT and API_KEYS*."""
        env = os.environ if environ is None else environ
        return cls(
            ollama_url=env.get("OLLAMA_URL") or None,
            proxy_host=env.get("PROXY_HOST") or None,
            proxy_port=parse_port(env["PROXY_PORT"]) if env.get("PROXY_PORT") else None,
            api_keys_sqlite=env.get("API_KEYS_SQLITE") or None,
            api_keys_file=env.get("API_KEYS_FILE") or None,
            api_keys=env.get("API_KEYS") or None,
        )


def parse_port(value: Any) -> int:
    """Parse a TCP port number, raising ConfigError when out of range."""
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid port: {value!r}")
    if not 0 <= port <= 65535:
        raise ConfigError(f"Port out of range: {port}")
    return port


def parse_log_level(value: Any) -> str:
    """Normalise a server log level name, raising ConfigError when unknown."""
    level = str(value).strip().lower()
    if level not in LOG_LEVELS:
        raise ConfigError(f"Invalid log level: {value!r} (expected one of {', '.join(LOG_LEVELS)})")
    return level


def expand_env_vars(value: Any) -> Any:
    """Recursively expand environment variables in config values."""
    if isinstance(value, str):
        # Match ${VAR} or $VAR patterns
        pattern = r'\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)'

        def replace_var(match):
            var_name = match.group(1) or match.group(2)
            return os.environ.get(var_name, match.group(0))

        return re.sub(pattern, replace_var, value)
    elif isinstance(value, dict):
        return {k: expand_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [expand_env_vars(v) for v in value]
    return value


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value)
    return value or None


def parse_key_source_config(data: Dict[str, Any]) -> KeySourceConfig:
    """Parse the `keys` section; `inline` may be a string or a list."""
    inline = data.get("inline")
    if isinstance(inline, list):
        inline = ",".join(str(k) for k in inline)

    return KeySourceConfig(
        sqlite=_optional_str(data.get("sqlite")),
        file=_optional_str(data.get("file")),
        inline=_optional_str(inline),
    )


def load_config(path: str | Path) -> ProxyConfig:
    """Load configuration from YAML file."""
    path = Path(path)

    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}")

    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")

    # Expand environment variables
    data = expand_env_vars(raw)

    server_data = data.get("server") or {}
    server = ServerConfig(
        host=server_data.get("host", DEFAULT_HOST),
        port=parse_port(server_data.get("port", DEFAULT_PORT)),
        log_level=parse_log_level(server_data.get("log_level", "info")),
        cors_origins=list(server_data.get("cors_origins") or []),
    )

    upstream_data = data.get("upstream") or {}
    timeout = upstream_data.get("timeout")
    upstream = UpstreamConfig(
        url=upstream_data.get("url", DEFAULT_UPSTREAM_URL),
        timeout=float(timeout) if timeout is not None else None,
        strip_authorization=bool(upstream_data.get("strip_authorization", False)),
    )

    keys = parse_key_source_config(data.get("keys") or {})

    return ProxyConfig(server=server, upstream=upstream, keys=keys)


def apply_overrides(config: ProxyConfig, overrides: ConfigOverrides) -> ProxyConfig:
    """
    Return a copy of `config` with non-None overrides applied.

    Key sources are replaced as a block: if any key source is overridden,
    the sources from `config` are discarded entirely.
    """
    server = config.server
    if overrides.proxy_host is not None or overrides.proxy_port is not None:
        server = replace(
            server,
            host=overrides.proxy_host if overrides.proxy_host is not None else server.host,
            port=parse_port(overrides.proxy_port) if overrides.proxy_port is not None else server.port,
        )

    upstream = config.upstream
    if overrides.ollama_url is not None:
        upstream = replace(upstream, url=overrides.ollama_url)

    keys = config.keys
    if overrides.has_key_source:
        keys = KeySourceConfig(
            sqlite=overrides.api_keys_sqlite or None,
            file=overrides.api_keys_file or None,
            inline=overrides.api_keys or None,
        )

    return ProxyConfig(server=server, upstream=upstream, keys=keys)


def build_config(
    config_path: Optional[str | Path] = None,
    cli_overrides: Optional[ConfigOverrides] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ProxyConfig:
    """Assemble the effective config: defaults < YAML < environment < CLI."""
    config = load_config(config_path) if config_path else ProxyConfig()
    config = apply_overrides(config, ConfigOverrides.from_env(environ))
    if cli_overrides is not None:
        config = apply_overrides(config, cli_overrides)
    return config


def create_default_config() -> str:
    """Generate default configuration YAML."""
    return """# Ollama Auth Proxy configuration

server:
  host: 0.0.0.0
  port: 3000
  log_level: info
  # cors_origins: ["https://app.example.com"]

upstream:
  url: http://127.0.0.1:11434
  # timeout: 300         # seconds; omit for no timeout
  # strip_authorization: false

# Exactly one key source is used. Priority: sqlite > file > inline.
# The first one configured wins even if it contains no keys.
keys:
  # sqlite: ./keys.db    # table api_keys(key TEXT)
  # file: ./keys.txt     # keys separated by commas and/or newlines
  # inline: "key1,key2"
"""
