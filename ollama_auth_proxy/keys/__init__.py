"""API key sources and the resolved KeyStore."""

from .sources import (
    KeyStore,
    KeySource,
    SqliteKeySource,
    FileKeySource,
    InlineKeySource,
    select_source,
    resolve_keys,
    clean_keys,
    mask_key,
)
from .storage import KeyDatabase

__all__ = [
    "KeyStore",
    "KeySource",
    "SqliteKeySource",
    "FileKeySource",
    "InlineKeySource",
    "select_source",
    "resolve_keys",
    "clean_keys",
    "mask_key",
    "KeyDatabase",
]
