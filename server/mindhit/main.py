# pyright: reportUnusedFunction=false

from __future__ import annotations

import logging
import uuid

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import RequestResponseEndpoint

from mindhit.api.v1.router import api_router
from mindhit.core.config import Settings, get_settings, settings
from mindhit.core.errors import MindHitError
from mindhit.core.logging import configure_logging, request_id_ctx_var


logger = logging.getLogger(__name__)

_STATUS_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    429: "RATE_LIMITED",
}


def error_body(code: str, message: str) -> dict[str, object]:
    return {"error": {"code": code, "message": message}}


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(MindHitError)
    async def mindhit_error_handler(request: Request, exc: MindHitError) -> JSONResponse:
        message = exc.message
        if exc.http_status >= 500:
            logger.error("request failed path=%s err=%s", request.url.path, exc.message)
            message = exc.default_message
        return JSONResponse(status_code=exc.http_status, content=error_body(exc.code, message))

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        code = _STATUS_CODES.get(exc.status_code, "INTERNAL_SERVER_ERROR" if exc.status_code >= 500 else "ERROR")
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(code, str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        message = "invalid request"
        if errors:
            first = errors[0]
            loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
            message = f"{loc}: {first.get('msg', 'invalid value')}" if loc else str(first.get("msg", message))
        return JSONResponse(status_code=400, content=error_body("VALIDATION_ERROR", message))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled error path=%s", request.url.path)
        return JSONResponse(
            status_code=500,
            content=error_body("INTERNAL_SERVER_ERROR", "internal server error"),
        )


def create_app(app_settings: Settings | None = None) -> FastAPI:
    s = app_settings or get_settings()

    configure_logging(s.log_level)

    app = FastAPI(title="mindhit-server", version="0.1.0")

    @app.middleware("http")
    async def request_context(request: Request, call_next: RequestResponseEndpoint) -> Response:
        rid = request.headers.get("X-Request-Id") or uuid.uuid4().hex
        token = request_id_ctx_var.set(rid)
        try:
            response = await call_next(request)
        finally:
            request_id_ctx_var.reset(token)

        response.headers["X-Request-Id"] = rid
        _ = response.headers.setdefault("X-Content-Type-Options", "nosniff")
        return response

    _register_error_handlers(app)
    app.include_router(api_router, prefix=s.api_v1_prefix)

    @app.get("/metrics", include_in_schema=False)
    async def prometheus_metrics() -> Response:
        from mindhit.metrics.prometheus import metrics_payload

        payload, content_type = metrics_payload()
        return Response(content=payload, media_type=content_type)

    return app


app = create_app(settings)
