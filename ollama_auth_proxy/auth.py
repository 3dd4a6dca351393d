"""
Bearer API key authentication.

A request is authorized only when it carries exactly one Authorization
header of the form `Bearer <token>` and the token is in the KeyStore.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Dict, Any

from starlette.datastructures import Headers

from .errors import AuthError
from .keys import KeyStore

logger = logging.getLogger("ollama-auth-proxy.auth")

BEARER_PREFIX = "Bearer "

MISSING_AUTHORIZATION = "missing_authorization"
MULTIPLE_AUTHORIZATION = "multiple_authorization"
MALFORMED_AUTHORIZATION = "malformed_authorization"
UNKNOWN_KEY = "unknown_key"


@dataclass(frozen=True)
class AuthResult:
    """Result of authenticating a request."""
    authorized: bool
    reason: Optional[str] = None

    def raise_for_status(self) -> None:
        """Raise AuthError if the request was not authorized."""
        if not self.authorized:
            raise AuthError(self.reason or UNKNOWN_KEY)

    def to_dict(self) -> Dict[str, Any]:
        return {"authorized": self.authorized, "reason": self.reason}


AUTHORIZED = AuthResult(authorized=True)


def extract_bearer_token(value: str) -> Optional[str]:
    """
    Return the token from `Bearer <token>`, or None if the value is malformed.

    The scheme is case-sensitive and must be followed by exactly one space.
    The token must be non-empty and carry no surrounding whitespace.
    """
    if not value.startswith(BEARER_PREFIX):
        return None
    token = value[len(BEARER_PREFIX):]
    if not token or token != token.strip():
        return None
    return token


def authenticate(headers: Headers, keystore: KeyStore) -> AuthResult:
    """Check the request's bearer credential against the KeyStore."""
    values = headers.getlist("authorization")
    if not values:
        return AuthResult(authorized=False, reason=MISSING_AUTHORIZATION)
    if len(values) > 1:
        return AuthResult(authorized=False, reason=MULTIPLE_AUTHORIZATION)

    token = extract_bearer_token(values[0])
    if token is None:
        return AuthResult(authorized=False, reason=MALFORMED_AUTHORIZATION)

    if token not in keystore:
        return AuthResult(authorized=False, reason=UNKNOWN_KEY)

    return AUTHORIZED
