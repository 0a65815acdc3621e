"""Tenant middleware: binds the request context from the JWT on every request.

Flow:
  1. Extract Bearer token from Authorization header
  2. Decode JWT → `tenant_id` and `sub` claims
  3. Bind RequestContext for the rest of the request via tenant_context()
  4. The binding is undone when the request finishes, even on error

Requests without a tenant (no token, platform users, health checks) run with
no context bound; accessors then return None.
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.auth.jwt import decode_token
from app.middleware.exceptions import create_error_response
from app.tenancy import RequestContext, tenant_context

# Routes that never require auth, so don't reject expired tokens here
_PUBLIC_PREFIXES = ("/docs", "/openapi.json", "/health")


class TenantMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        auth_header = request.headers.get("authorization", "")
        path = request.url.path
        context = None

        if auth_header.startswith("Bearer "):
            payload = decode_token(auth_header[7:])

            if not payload:
                # Token present but expired/malformed: reject protected
                # routes here instead of failing later without a tenant.
                if not any(path.startswith(p) for p in _PUBLIC_PREFIXES):
                    return create_error_response(
                        status_code=401,
                        message="Token expired or invalid",
                        error_code="UNAUTHENTICATED",
                        headers={"WWW-Authenticate": "Bearer"},
                    )
            elif payload.get("tenant_id"):
                context = RequestContext(
                    tenant_id=payload["tenant_id"],
                    user_id=payload.get("sub"),
                )

        if context is None:
            return await call_next(request)

        with tenant_context(context):
            return await call_next(request)
