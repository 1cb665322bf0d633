from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time

from fastapi.testclient import TestClient
import pytest

from mindhit.core.config import settings
from mindhit.core.security import ExpiredToken, InvalidToken, decode_user_token, issue_user_token


NOW = 1_700_000_000


def _segment(obj: dict[str, object]) -> str:
    return base64.urlsafe_b64encode(json.dumps(obj).encode("utf-8")).rstrip(b"=").decode("ascii")


def test_token_resolves_to_user_id() -> None:
    token = issue_user_token("user-1", "s3cret", 60, now=NOW)
    assert decode_user_token(token, "s3cret", now=NOW + 59) == "user-1"


def test_wrong_secret_and_tampering_are_rejected() -> None:
    token = issue_user_token("user-1", "s3cret", 60, now=NOW)
    with pytest.raises(InvalidToken):
        _ = decode_user_token(token, "other", now=NOW)

    header, _claims, sig = token.split(".")
    forged = _segment({"sub": "admin", "exp": NOW + 60})
    with pytest.raises(InvalidToken):
        _ = decode_user_token(f"{header}.{forged}.{sig}", "s3cret", now=NOW)

    for bad in ("", "a.b", "a.b.c.d", "..", "a.b.!!!"):
        with pytest.raises(InvalidToken):
            _ = decode_user_token(bad, "s3cret", now=NOW)


def test_expiry_is_exclusive() -> None:
    token = issue_user_token("user-1", "s3cret", 5, now=NOW)
    assert decode_user_token(token, "s3cret", now=NOW + 4) == "user-1"
    with pytest.raises(ExpiredToken):
        _ = decode_user_token(token, "s3cret", now=NOW + 5)


def test_signed_token_without_subject_is_rejected() -> None:
    signing_input = f"{_segment({'alg': 'HS256', 'typ': 'JWT'})}.{_segment({'exp': NOW + 60})}"
    sig = hmac.new(b"s3cret", signing_input.encode("ascii"), hashlib.sha256).digest()
    token = f"{signing_input}.{base64.urlsafe_b64encode(sig).rstrip(b'=').decode('ascii')}"

    with pytest.raises(InvalidToken, match="no subject"):
        _ = decode_user_token(token, "s3cret", now=NOW)


def test_issue_rejects_bad_arguments() -> None:
    with pytest.raises(ValueError):
        _ = issue_user_token("user-1", "s3cret", 0)
    with pytest.raises(ValueError):
        _ = issue_user_token("", "s3cret", 60)


def test_expired_token_is_unauthorised(client: TestClient, user_id: str) -> None:
    stale = issue_user_token(user_id, settings.auth_access_token_secret, 60, now=int(time.time()) - 120)
    resp = client.get("/v1/sessions", headers={"Authorization": f"Bearer {stale}"})
    assert resp.status_code == 401
