from __future__ import annotations

import logging
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def _split_detail(detail: Any, status_code: int) -> dict[str, Any]:
    # Flatten HTTPException details into {code, message, ...extra}.
    fallback = _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")
    if isinstance(detail, dict):
        payload = dict(detail)
        payload["code"] = str(detail.get("code") or fallback)
        payload["message"] = str(detail.get("message") or "Request failed")
        return payload
    if isinstance(detail, str):
        return {"code": fallback, "message": detail}
    return {"code": fallback, "message": "Request failed"}


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        content={"error": _split_detail(exc.detail, exc.status_code)},
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_request_error path=%s", request.url.path)
    return JSONResponse(
        content={"error": {"code": "INTERNAL_ERROR", "message": "Internal server error"}},
        status_code=500,
    )

