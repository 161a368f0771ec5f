from __future__ import annotations

import hashlib
import hmac
import re
from typing import Optional
from urllib.parse import urlparse

from backend.widgets.results import InvalidCredentialError

TOKEN_MIN_LENGTH = 8
TOKEN_MAX_LENGTH = 16

_ID_LABEL_CHARS = re.compile(r"[^a-z0-9-]")


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def validate_token_shape(token: Optional[str]) -> bool:
    if not isinstance(token, str):
        return False
    return TOKEN_MIN_LENGTH <= len(token) <= TOKEN_MAX_LENGTH


def require_token_shape(token: Optional[str]) -> str:
    if not validate_token_shape(token):
        raise InvalidCredentialError()
    return token  # type: ignore[return-value]


def authorize(provided_token: Optional[str], stored_digest: Optional[str]) -> bool:
    """Digest comparison only; plaintext tokens are never compared or stored."""
    if not provided_token or not stored_digest:
        return False
    return hmac.compare_digest(hash_token(provided_token), stored_digest)


def public_id(url: str) -> str:
    hostname = (urlparse(url).hostname or "").lower()
    if hostname.startswith("www."):
        hostname = hostname[len("www.") :]
    label = _ID_LABEL_CHARS.sub("-", hostname.split(".")[0]) or "widget"
    digest = hashlib.sha256(url.encode("utf-8")).hexdigest()[:8]
    return f"{label}-{digest}"
