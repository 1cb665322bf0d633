from __future__ import annotations

import contextvars
import logging
import re
import sys
from typing import override


request_id_ctx_var: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="-")


class RequestIdFilter(logging.Filter):
    @override
    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        record.request_id = request_id_ctx_var.get()
        return True


_RE_BEARER = re.compile(
    r"(?i)(authorization\s*[:=]\s*bearer\s+)([a-z0-9._~+/=-]+)",
)
_RE_JSON_AUTH_BEARER = re.compile(
    r'(?i)("authorization"\s*:\s*")\s*(bearer\s+)([^\"]+)(")',
)
_RE_PY_AUTH_BEARER = re.compile(
    r"(?i)('authorization'\s*:\s*')\s*(bearer\s+)([^']+)(')",
)

# Provider credentials: OpenAI/Anthropic style keys, the x-api-key /
# x-goog-api-key headers and Gemini's ?key= query parameter.
_RE_SK_KEY = re.compile(r"\b(sk-(?:ant-)?[A-Za-z0-9_-]{8,})")
_RE_API_KEY_HEADER = re.compile(
    r"(?i)([\"']?x-(?:goog-)?api-key[\"']?\s*[:=]\s*[\"']?)([^\s\"',;]+)",
)
_RE_KEY_QUERY = re.compile(r"(?i)([?&]key=)([^&\s\"']+)")


def _redact_value(raw: str) -> str:
    return f"[REDACTED len={len(raw)}]"


class RedactingFormatter(logging.Formatter):
    @override
    def format(self, record: logging.LogRecord) -> str:
        out = super().format(record)

        out = _RE_BEARER.sub(r"\1[REDACTED]", out)
        out = _RE_JSON_AUTH_BEARER.sub(
            lambda m: f"{m.group(1)}{m.group(2)}[REDACTED]{m.group(4)}", out
        )
        out = _RE_PY_AUTH_BEARER.sub(
            lambda m: f"{m.group(1)}{m.group(2)}[REDACTED]{m.group(4)}", out
        )

        out = _RE_SK_KEY.sub(lambda m: _redact_value(m.group(1)), out)
        out = _RE_API_KEY_HEADER.sub(lambda m: f"{m.group(1)}{_redact_value(m.group(2))}", out)
        out = _RE_KEY_QUERY.sub(lambda m: f"{m.group(1)}{_redact_value(m.group(2))}", out)

        return out


def build_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIdFilter())
    handler.setFormatter(
        RedactingFormatter(
            fmt="%(asctime)s %(levelname)s [%(name)s] [rid=%(request_id)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    return handler


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(level)

    # Avoid duplicate handlers when app reloads in dev.
    root.handlers = [build_handler()]

    # httpx logs full request URLs at INFO, which include Gemini's key param.
    logging.getLogger("httpx").setLevel(logging.WARNING)
