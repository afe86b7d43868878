"""
Middleware package.

WHY: Middleware provides cross-cutting concerns (request ids, access
logging) that apply to all requests.
"""

from crm.middleware.request_context import (
    RequestContextMiddleware,
    RequestContext,
    get_request_context,
    get_client_ip,
)

__all__ = [
    "RequestContextMiddleware",
    "RequestContext",
    "get_request_context",
    "get_client_ip",
]
