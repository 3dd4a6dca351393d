"""Tests for bearer key authentication."""

import pytest
from starlette.datastructures import Headers

from ollama_auth_proxy.auth import (
    authenticate,
    extract_bearer_token,
    MISSING_AUTHORIZATION,
    MULTIPLE_AUTHORIZATION,
    MALFORMED_AUTHORIZATION,
    UNKNOWN_KEY,
)
from ollama_auth_proxy.errors import AuthError
from ollama_auth_proxy.keys import KeyStore


@pytest.fixture
def keystore():
    return KeyStore(["key1", "key2"], source="inline")


def auth_headers(*values):
    return Headers(raw=[(b"authorization", v.encode()) for v in values])


def test_authorized(keystore):
    result = authenticate(auth_headers("Bearer key1"), keystore)

    assert result.authorized is True
    assert result.reason is None
    result.raise_for_status()


def test_missing_header(keystore):
    result = authenticate(Headers(), keystore)

    assert result.authorized is False
    assert result.reason == MISSING_AUTHORIZATION


def test_unknown_key(keystore):
    result = authenticate(auth_headers("Bearer wrong"), keystore)

    assert result.authorized is False
    assert result.reason == UNKNOWN_KEY


@pytest.mark.parametrize("value", [
    "bearer key1",
    "BEARER key1",
    "Bearer  key1",
    "Bearer key1 ",
    "Bearer\tkey1",
    "Bearer ",
    "Bearer",
    "Basic a2V5MTo=",
    "key1",
    "",
])
def test_malformed_header(keystore, value):
    result = authenticate(auth_headers(value), keystore)

    assert result.authorized is False
    assert result.reason == MALFORMED_AUTHORIZATION


def test_multiple_headers_rejected(keystore):
    result = authenticate(auth_headers("Bearer key1", "Bearer key2"), keystore)

    assert result.authorized is False
    assert result.reason == MULTIPLE_AUTHORIZATION


def test_empty_keystore_rejects_everything():
    result = authenticate(auth_headers("Bearer key1"), KeyStore([], source="file"))

    assert result.authorized is False


def test_raise_for_status_carries_reason(keystore):
    result = authenticate(auth_headers("Bearer nope"), keystore)

    with pytest.raises(AuthError) as exc_info:
        result.raise_for_status()
    assert exc_info.value.reason == UNKNOWN_KEY


def test_extract_bearer_token():
    assert extract_bearer_token("Bearer abc") == "abc"
    assert extract_bearer_token("Bearer a b") == "a b"
    assert extract_bearer_token("Bearer  abc") is None
    assert extract_bearer_token("Token abc") is None
