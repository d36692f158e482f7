"""
Request middleware: correlation ids and access logging.
"""
import logging
import time
import uuid
from typing import Callable

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from settlement.core.logging_config import get_logger

REQUEST_ID_HEADER = "X-Request-ID"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Tag every request with an id and log its outcome as key-value events.

    A client-supplied ``X-Request-ID`` is kept so a settlement can be traced
    across services; the id is echoed back on the response. Only the path is
    logged, never the query string, which may hold a session token.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        context = {"request_id": request_id, "method": request.method, "path": request.url.path}
        get_logger(__name__, **context).debug("request.start")

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = round((time.perf_counter() - started) * 1000)

        response.headers[REQUEST_ID_HEADER] = request_id
        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        get_logger(
            __name__, **context, status_code=response.status_code, duration_ms=elapsed_ms
        ).log(level, "request.complete")
        return response


def setup_middleware(app: FastAPI) -> None:
    app.add_middleware(RequestContextMiddleware)
