"""
Request context middleware.

WHAT: Assigns every HTTP request an id, exposes it through a ContextVar and
writes one access log line per request.

WHY: A single payment touches several rows (payment, invoice, status); when
something goes wrong the log lines for that request must be findable
together. The id is taken from an incoming X-Request-ID header when a proxy
already assigned one, and echoed back in the response.

HOW: Uses Starlette's BaseHTTPMiddleware. The context is stored in both
request.state (for handlers) and a ContextVar (for services and the logging
filter, which have no request object).
"""

import logging
import time
import uuid
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Optional, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LENGTH = 128


@dataclass(frozen=True)
class RequestContext:
    """
    Request-scoped data.

    Fields:
    - request_id: Identifier shared by all log lines of the request
    - client_ip: Direct peer address (or X-Forwarded-For's first hop)
    - path / method: What was requested
    """

    request_id: str
    client_ip: str
    path: str
    method: str


_request_context: ContextVar[Optional[RequestContext]] = ContextVar(
    "request_context", default=None
)


def get_request_context() -> Optional[RequestContext]:
    """
    Current request context, or None outside a request (e.g. scheduler jobs).
    """
    return _request_context.get()


def get_client_ip(request: Request) -> str:
    """
    Best-effort client address.

    X-Forwarded-For is honoured because production runs behind a proxy; its
    first entry is the original client.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _incoming_request_id(request: Request) -> Optional[str]:
    value = request.headers.get(REQUEST_ID_HEADER)
    if value and len(value) <= MAX_REQUEST_ID_LENGTH and value.isprintable():
        return value
    return None


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Attach a RequestContext to every request and log its outcome.

    Example:
        @router.get("/example")
        async def example(request: Request):
            ctx = request.state.context
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        context = RequestContext(
            request_id=_incoming_request_id(request) or str(uuid.uuid4()),
            client_ip=get_client_ip(request),
            path=request.url.path,
            method=request.method,
        )
        request.state.context = context
        token = _request_context.set(context)
        started = time.perf_counter()

        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = context.request_id
            logger.info(
                "%s %s -> %d (%.1f ms)",
                context.method,
                context.path,
                response.status_code,
                (time.perf_counter() - started) * 1000,
            )
            return response
        finally:
            _request_context.reset(token)
