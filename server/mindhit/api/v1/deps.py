# pyright: reportCallInDefaultInitializer=false
from __future__ import annotations

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from mindhit.core.config import settings
from mindhit.core.errors import Unauthorised
from mindhit.core.security import InvalidToken, decode_user_token
from mindhit.db.models import User
from mindhit.db.session import get_db


_bearer_scheme = HTTPBearer(auto_error=False)


def _token_subject(creds: HTTPAuthorizationCredentials | None) -> str:
    if creds is None:
        raise Unauthorised("authorization header is required")
    if creds.scheme.lower() != "bearer" or creds.credentials == "":
        raise Unauthorised("invalid authorization header format")
    try:
        return decode_user_token(creds.credentials, settings.auth_access_token_secret)
    except InvalidToken:
        raise Unauthorised("invalid or expired access token") from None


def require_user_id(
    creds: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
    db: Session = Depends(get_db),
) -> str:
    user_id = _token_subject(creds)
    user = db.get(User, user_id)
    if user is None or user.deleted_at is not None or user.status != "active":
        raise Unauthorised("user not found")
    return user_id
