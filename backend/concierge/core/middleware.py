"""Middlewares personalizados para Concierge."""

from __future__ import annotations

import time
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from concierge.core.config import settings
from concierge.core.logging import get_logger

logger = get_logger("concierge.request")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Registra inicio y fin de cada request con su tenant y duración."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or uuid4().hex
        path = request.url.path
        skip = path.startswith(settings.request_log_skip_prefixes)
        start = time.perf_counter()
        fields = {
            "request_id": request_id,
            "method": request.method,
            "path": path,
            "tenant_header": request.headers.get("x-tenant-id"),
        }

        if not skip:
            logger.info("request.started", extra=fields)

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "request.failed",
                extra={**fields, "duration_ms": _elapsed_ms(start)},
            )
            raise

        response.headers["x-request-id"] = request_id
        if not skip:
            logger.info(
                "request.completed",
                extra={
                    **fields,
                    "status_code": response.status_code,
                    "duration_ms": _elapsed_ms(start),
                },
            )
        return response


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)
