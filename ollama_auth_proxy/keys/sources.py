"""
API key sources.

Three backends can supply keys: a SQLite table, a plain-text file and an
inline comma-separated string. Exactly one is used, chosen by priority,
and resolved once at startup into an immutable KeyStore.
"""

import re
import sqlite3
import logging
from pathlib import Path
from dataclasses import dataclass
from typing import ClassVar, Optional, Iterable, Iterator, Set, Union

from ..config import KeySourceConfig
from ..errors import ConfigError

logger = logging.getLogger("ollama-auth-proxy.keys")

_FILE_SEPARATORS = re.compile(r"[,\r\n]")


def clean_keys(values: Iterable[Optional[str]]) -> Set[str]:
    """Trim each value and drop blanks and NULLs."""
    keys = set()
    for value in values:
        if value is None:
            continue
        value = value.strip()
        if value:
            keys.add(value)
    return keys


def mask_key(key: str) -> str:
    """Render a key safe for logs and terminals."""
    if len(key) <= 8:
        return "*" * len(key)
    return f"{key[:4]}…{key[-2:]}"


# =============================================================================
# Sources
# =============================================================================

@dataclass(frozen=True)
class SqliteKeySource:
    """Keys from column `key` of table `api_keys` in a SQLite database."""
    path: str
    kind: ClassVar[str] = "sqlite"

    def load(self) -> Set[str]:
        db_path = Path(self.path)
        if not db_path.is_file():
            raise ConfigError(f"API key database not found: {self.path}")

        # Read-only so a bad path never creates an empty database
        uri = f"{db_path.resolve().as_uri()}?mode=ro"
        try:
            conn = sqlite3.connect(uri, uri=True)
            try:
                rows = conn.execute("SELECT key FROM api_keys").fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise ConfigError(f"Failed to read API keys from sqlite database '{self.path}': {e}")

        values = []
        for (value,) in rows:
            if value is not None and not isinstance(value, str):
                raise ConfigError(
                    f"Non-text API key of type {type(value).__name__} in sqlite database '{self.path}'"
                )
            values.append(value)
        return clean_keys(values)


@dataclass(frozen=True)
class FileKeySource:
    """Keys from a text file, separated by commas and/or newlines."""
    path: str
    kind: ClassVar[str] = "file"

    def load(self) -> Set[str]:
        try:
            content = Path(self.path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigError(f"Failed to read API keys file '{self.path}': {e}")
        return clean_keys(_FILE_SEPARATORS.split(content))


@dataclass(frozen=True)
class InlineKeySource:
    """Keys from a comma-separated string."""
    value: str
    kind: ClassVar[str] = "inline"

    def load(self) -> Set[str]:
        return clean_keys(self.value.split(","))


KeySource = Union[SqliteKeySource, FileKeySource, InlineKeySource]


def select_source(config: KeySourceConfig) -> KeySource:
    """Pick the highest-priority configured source: sqlite, then file, then inline."""
    if config.sqlite:
        return SqliteKeySource(config.sqlite)
    if config.file:
        return FileKeySource(config.file)
    if config.inline:
        return InlineKeySource(config.inline)
    raise ConfigError("no key source configured")


# =============================================================================
# KeyStore
# =============================================================================

class KeyStore:
    """
    Immutable set of valid API keys.

    Membership is exact and case-sensitive. Safe to share across concurrent
    requests since it is never mutated after construction.
    """

    __slots__ = ("_keys", "source")

    def __init__(self, keys: Iterable[str], source: str = "inline"):
        self._keys = frozenset(keys)
        self.source = source

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def __iter__(self) -> Iterator[str]:
        return iter(self._keys)

    def __repr__(self) -> str:
        return f"KeyStore(source={self.source!r}, keys={len(self._keys)})"


def resolve_keys(config: KeySourceConfig) -> KeyStore:
    """
    Resolve the configured key source into a KeyStore.

    Raises ConfigError if no source is configured or the selected one cannot
    be read. An empty result from the selected source is returned as-is;
    lower-priority sources are never consulted.
    """
    source = select_source(config)
    keys = source.load()

    if not keys:
        logger.warning(f"Key source '{source.kind}' yielded no keys; every request will be rejected")
    else:
        logger.info(f"Loaded {len(keys)} API key(s) from {source.kind} source")

    return KeyStore(keys, source=source.kind)
