"""Tests for API key sources and KeyStore resolution."""

import sqlite3

import pytest

from ollama_auth_proxy.config import KeySourceConfig
from ollama_auth_proxy.errors import ConfigError
from ollama_auth_proxy.keys import (
    KeyStore,
    KeyDatabase,
    SqliteKeySource,
    FileKeySource,
    InlineKeySource,
    select_source,
    resolve_keys,
    mask_key,
)


def make_db(path, keys, create_table=True):
    conn = sqlite3.connect(path)
    if create_table:
        conn.execute("CREATE TABLE api_keys(key TEXT)")
        conn.executemany("INSERT INTO api_keys(key) VALUES (?)", [(k,) for k in keys])
    conn.commit()
    conn.close()
    return str(path)


@pytest.fixture
def sqlite_path(tmp_path):
    return make_db(tmp_path / "keys.db", ["x", " y ", "", None, "x"])


def test_inline_source():
    """Inline keys are split on commas, trimmed, blanks dropped."""
    store = resolve_keys(KeySourceConfig(inline="a,b, c,, ,"))

    assert set(store) == {"a", "b", "c"}
    assert store.source == "inline"


def test_file_source_commas_and_newlines(tmp_path):
    """File keys may be separated by commas, LF or CRLF."""
    key_file = tmp_path / "keys.txt"
    key_file.write_text("foo,bar\n  baz  \r\nqux,\n\n")

    store = resolve_keys(KeySourceConfig(file=str(key_file)))

    assert set(store) == {"foo", "bar", "baz", "qux"}
    assert store.source == "file"


def test_file_source_keeps_inner_spaces(tmp_path):
    key_file = tmp_path / "keys.txt"
    key_file.write_text("  two words \n")

    store = resolve_keys(KeySourceConfig(file=str(key_file)))

    assert "two words" in store


def test_sqlite_source(sqlite_path):
    """SQLite keys are trimmed; NULL and empty rows are dropped."""
    store = resolve_keys(KeySourceConfig(sqlite=sqlite_path))

    assert set(store) == {"x", "y"}
    assert store.source == "sqlite"


def test_sqlite_beats_file_even_when_empty(tmp_path):
    """An empty SQLite table is authoritative; the file is never read."""
    db = make_db(tmp_path / "empty.db", [])
    missing_file = tmp_path / "does-not-exist.txt"

    store = resolve_keys(KeySourceConfig(sqlite=db, file=str(missing_file), inline="a"))

    assert len(store) == 0
    assert store.source == "sqlite"


def test_file_beats_inline_even_when_empty(tmp_path):
    key_file = tmp_path / "keys.txt"
    key_file.write_text(" \n,\n")

    store = resolve_keys(KeySourceConfig(file=str(key_file), inline="a,b"))

    assert len(store) == 0
    assert "a" not in store


def test_select_source_priority(tmp_path):
    assert isinstance(select_source(KeySourceConfig(sqlite="k.db", file="k.txt", inline="a")), SqliteKeySource)
    assert isinstance(select_source(KeySourceConfig(file="k.txt", inline="a")), FileKeySource)
    assert isinstance(select_source(KeySourceConfig(inline="a")), InlineKeySource)


def test_no_source_configured():
    with pytest.raises(ConfigError, match="no key source configured"):
        resolve_keys(KeySourceConfig())


def test_empty_strings_are_not_configured():
    with pytest.raises(ConfigError):
        resolve_keys(KeySourceConfig(sqlite="", file="", inline=""))


def test_missing_file_is_config_error(tmp_path):
    with pytest.raises(ConfigError):
        resolve_keys(KeySourceConfig(file=str(tmp_path / "missing.txt")))


def test_missing_database_is_config_error(tmp_path):
    db_path = tmp_path / "missing.db"

    with pytest.raises(ConfigError):
        resolve_keys(KeySourceConfig(sqlite=str(db_path)))

    # Must not be created as a side effect
    assert not db_path.exists()


def test_database_without_table_is_config_error(tmp_path):
    db = make_db(tmp_path / "no-table.db", [], create_table=False)

    with pytest.raises(ConfigError):
        resolve_keys(KeySourceConfig(sqlite=db))


def test_blob_key_is_config_error(tmp_path):
    """A BLOB in the key column is rejected, not turned into "b'...'"."""
    db = make_db(tmp_path / "blob.db", ["good", b"secret"])

    with pytest.raises(ConfigError, match="bytes"):
        resolve_keys(KeySourceConfig(sqlite=db))


def test_keystore_is_exact_match():
    store = KeyStore(["Secret"], source="inline")

    assert "Secret" in store
    assert "secret" not in store
    assert "Secret " not in store
    assert len(store) == 1


def test_mask_key():
    assert mask_key("abc") == "***"
    assert mask_key("sk-1234567890") == "sk-1…90"


def test_key_database_roundtrip(tmp_path):
    """Keys added through KeyDatabase are read back by the SQLite source."""
    db_path = tmp_path / "admin" / "keys.db"
    db = KeyDatabase(str(db_path))

    assert db.add("k1") is True
    assert db.add(" k2 ") is True
    assert db.add("k1") is False
    assert db.list() == ["k1", "k2"]

    assert db.remove("k1") is True
    assert db.remove("k1") is False

    store = resolve_keys(KeySourceConfig(sqlite=str(db_path)))
    assert set(store) == {"k2"}


def test_key_database_rejects_empty(tmp_path):
    db = KeyDatabase(str(tmp_path / "keys.db"))

    with pytest.raises(ValueError):
        db.add("   ")
