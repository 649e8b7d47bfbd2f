from __future__ import annotations
import uuid
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from app.core.logging import set_request_id
from app.core.tenant import set_tenant_id

class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind a request id for logs/audit and clear any tenant left on the context.

    The tenant itself is resolved from the ``org_slug`` path segment by the routers.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-Id") or request.headers.get("x-request-id") or uuid.uuid4().hex
        set_request_id(request_id)
        set_tenant_id("default")
        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id
        return response
