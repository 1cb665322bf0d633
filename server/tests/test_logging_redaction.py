from __future__ import annotations

import logging

from mindhit.core.logging import RedactingFormatter, request_id_ctx_var, RequestIdFilter


def _format(msg: str) -> str:
    record = logging.LogRecord("mindhit.test", logging.INFO, __file__, 1, msg, None, None)
    return RedactingFormatter(fmt="%(message)s").format(record)


def test_bearer_tokens_are_redacted() -> None:
    out = _format("Authorization: Bearer abc.def.ghi")
    assert "abc.def.ghi" not in out
    assert "[REDACTED]" in out

    out = _format('{"authorization": "Bearer secret-token"}')
    assert "secret-token" not in out


def test_provider_keys_are_redacted() -> None:
    out = _format("calling with sk-ant-api03abcdefgh and x-api-key: hunter2hunter2")
    assert "sk-ant-api03abcdefgh" not in out
    assert "hunter2hunter2" not in out
    assert "[REDACTED len=20]" in out

    out = _format("GET https://generativelanguage.googleapis.com/v1beta/models/x:generateContent?key=AIzaSecret&alt=sse")
    assert "AIzaSecret" not in out
    assert "&alt=sse" in out


def test_plain_messages_are_untouched() -> None:
    assert _format("session 42 stopped") == "session 42 stopped"


def test_request_id_filter_uses_context() -> None:
    record = logging.LogRecord("mindhit.test", logging.INFO, __file__, 1, "x", None, None)
    token = request_id_ctx_var.set("req-123")
    try:
        assert RequestIdFilter().filter(record) is True
    finally:
        request_id_ctx_var.reset(token)
    assert getattr(record, "request_id") == "req-123"
