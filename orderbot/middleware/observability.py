from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from orderbot.core.request_context import clear_request_context, set_request_context

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def _restaurant_from_request(request: Request) -> str | None:
    # rotas /api/whatsapp/{restaurant_id}/... e /api/admin/{restaurant_id}/...
    value = request.path_params.get("restaurant_id") or request.query_params.get("restaurant_id")
    return str(value) if value else None


class ObservabilityMiddleware(BaseHTTPMiddleware):
    """Correlaciona cada pedido HTTP com um request id e regista a duração."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        set_request_context(request_id=request_id)
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            restaurant_id = _restaurant_from_request(request)
            if restaurant_id:
                set_request_context(restaurant_id=restaurant_id)
            level = logging.WARNING if status_code >= 500 else logging.INFO
            logger.log(
                level,
                "http %s %s -> %s",
                request.method,
                request.url.path,
                status_code,
                extra={
                    "endpoint": request.url.path,
                    "method": request.method,
                    "status_code": status_code,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                },
            )
            clear_request_context()
