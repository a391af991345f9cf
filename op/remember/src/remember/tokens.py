# tokens.py
import base64
import binascii
import secrets
import time
import uuid
from typing import Tuple

from .models import CookieClaim

COOKIE_SEPARATOR = "."

class MalformedCookie(ValueError):
    """Raised when a remember-me cookie value cannot be unpacked."""

def now() -> int:
    return int(time.time())

def new_random_id() -> str:
    # uuid4: 122 random bits, unguessable and never parsed
    return str(uuid.uuid4())

def new_session_id() -> str:
    # 32 bytes → ~43 char url-safe
    return secrets.token_urlsafe(32)

def new_csrf_token() -> str:
    return secrets.token_urlsafe(32)

def session_expiries(ttl_seconds: int, absolute_seconds: int) -> Tuple[int, int]:
    """returns (expires_at, absolute_expires_at)"""
    n = now()
    return n + ttl_seconds, n + absolute_seconds

def _b64(part: str) -> str:
    return base64.urlsafe_b64encode(part.encode("utf-8")).decode("ascii").rstrip("=")

def _unb64(part: str) -> str:
    padded = part + "=" * (-len(part) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")

def encode_cookie_value(series: str, token: str) -> str:
    return f"{_b64(series)}{COOKIE_SEPARATOR}{_b64(token)}"

def decode_cookie_value(value: str | None) -> CookieClaim:
    """Unpack a cookie payload into a claim.

    Raises MalformedCookie on a wrong field count, an undecodable field,
    or an empty series/token.
    """
    if not value:
        raise MalformedCookie("empty cookie")
    parts = value.split(COOKIE_SEPARATOR)
    if len(parts) != 2:
        raise MalformedCookie(f"expected 2 fields, got {len(parts)}")
    try:
        series, token = (_unb64(p) for p in parts)
    except (binascii.Error, UnicodeError, ValueError) as e:
        raise MalformedCookie("undecodable field") from e
    if not series or not token:
        raise MalformedCookie("empty series or token")
    return CookieClaim(series=series, token=token)
