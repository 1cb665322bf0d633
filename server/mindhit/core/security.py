"""HS256 bearer tokens identifying a user by `sub`.

The auth service issues these; this service only needs to verify them.
`issue_user_token` mirrors the issuer for operators and tests.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from typing import cast


_HEADER = {"alg": "HS256", "typ": "JWT"}


class InvalidToken(ValueError):
    pass


class ExpiredToken(InvalidToken):
    pass


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _unb64url(part: str) -> bytes:
    padded = part + "=" * (-len(part) % 4)
    try:
        return base64.urlsafe_b64decode(padded.encode("ascii"))
    except (ValueError, UnicodeEncodeError) as exc:
        raise InvalidToken("invalid token") from exc


def _segment(obj: dict[str, object]) -> str:
    return _b64url(json.dumps(obj, separators=(",", ":"), sort_keys=True).encode("utf-8"))


def _signature(signing_input: str, secret: str) -> bytes:
    if secret == "":
        raise ValueError("token secret must be non-empty")
    return hmac.new(secret.encode("utf-8"), signing_input.encode("ascii"), hashlib.sha256).digest()


def _claims(part: str) -> dict[str, object]:
    try:
        obj = cast(object, json.loads(_unb64url(part)))
    except ValueError as exc:
        raise InvalidToken("invalid token") from exc
    if not isinstance(obj, dict):
        raise InvalidToken("invalid token")
    return cast(dict[str, object], obj)


def issue_user_token(user_id: str, secret: str, ttl_seconds: int, *, now: int | None = None) -> str:
    if user_id == "":
        raise ValueError("user_id must be non-empty")
    if ttl_seconds <= 0:
        raise ValueError("ttl_seconds must be positive")

    issued_at = int(time.time()) if now is None else now
    signing_input = f"{_segment(dict(_HEADER))}.{_segment({'sub': user_id, 'exp': issued_at + ttl_seconds})}"
    return f"{signing_input}.{_b64url(_signature(signing_input, secret))}"


def decode_user_token(token: str, secret: str, *, now: int | None = None) -> str:
    """Verify signature and expiry; returns the user id in `sub`."""
    parts = token.split(".")
    if len(parts) != 3 or "" in parts:
        raise InvalidToken("invalid token")
    header_b64, claims_b64, sig_b64 = parts

    expected = _signature(f"{header_b64}.{claims_b64}", secret)
    if not hmac.compare_digest(_unb64url(sig_b64), expected):
        raise InvalidToken("invalid token")
    if _claims(header_b64).get("alg") != "HS256":
        raise InvalidToken("invalid token")

    claims = _claims(claims_b64)
    exp = claims.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, int):
        raise InvalidToken("invalid token")
    if (int(time.time()) if now is None else now) >= exp:
        raise ExpiredToken("token expired")

    sub = claims.get("sub")
    if not isinstance(sub, str) or sub == "":
        raise InvalidToken("token has no subject")
    return sub
