from __future__ import annotations

from fastapi import status


class MindHitError(Exception):
    """Base of the service error taxonomy; controllers map it to an HTTP response."""

    code: str = "INTERNAL_SERVER_ERROR"
    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message: str = message or self.default_message
        super().__init__(self.message)


class NotFound(MindHitError):
    code = "NOT_FOUND"
    http_status = status.HTTP_404_NOT_FOUND
    default_message = "not found"


class NotOwned(MindHitError):
    code = "FORBIDDEN"
    http_status = status.HTTP_403_FORBIDDEN
    default_message = "access denied"


class Unauthorised(MindHitError):
    code = "UNAUTHORIZED"
    http_status = status.HTTP_401_UNAUTHORIZED
    default_message = "unauthorized"


class InvalidStateTransition(MindHitError):
    code = "INVALID_STATE_TRANSITION"
    http_status = status.HTTP_400_BAD_REQUEST
    default_message = "invalid session state transition"


class SessionNotAcceptingEvents(MindHitError):
    code = "SESSION_NOT_ACCEPTING_EVENTS"
    http_status = status.HTTP_400_BAD_REQUEST
    default_message = "session is not accepting events"


class ValidationFailure(MindHitError):
    code = "VALIDATION_ERROR"
    http_status = status.HTTP_400_BAD_REQUEST
    default_message = "invalid request"


class UsageLimitExceeded(MindHitError):
    code = "USAGE_LIMIT_EXCEEDED"
    http_status = status.HTTP_400_BAD_REQUEST
    default_message = "token usage limit exceeded"

    def __init__(self, tokens_used: int = 0, token_limit: int = 0) -> None:
        self.tokens_used: int = tokens_used
        self.token_limit: int = token_limit
        super().__init__(f"token limit exceeded: used {tokens_used}/{token_limit}")


class StorageFailure(MindHitError):
    code = "INTERNAL_SERVER_ERROR"
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "storage failure"
