"""Multi-tenancy: request-scoped tenant context.

Key components:
  - RequestContext        immutable (tenant_id, user_id) pair for one request
  - _request_ctx          ContextVar holding the context for the current task
  - get / require helpers for code deep in the call tree
  - tenant_context()      binds a context for a block, restoring the outer one

A ContextVar value is copied into every task spawned from the request task
and survives `await`, so business logic reads the tenant without it being
passed as a parameter. Binding always goes through a reset token; the outer
context comes back when the block exits, even on an exception.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import TypeVar

from app.middleware.exceptions import TenantContextError

T = TypeVar("T")


@dataclass(frozen=True)
class RequestContext:
    tenant_id: str
    user_id: str | None = None


# ── Request-scoped tenant context ───────────────────────────

_request_ctx: ContextVar[RequestContext | None] = ContextVar("_request_ctx", default=None)


@contextmanager
def tenant_context(context: RequestContext) -> Iterator[RequestContext]:
    """Bind `context` for the extent of the block.

    Usage:
        with tenant_context(RequestContext(tenant_id="t-1", user_id="u-1")):
            await service.do_work()   # get_tenant_id() == "t-1" in here
    """
    token = _request_ctx.set(context)
    try:
        yield context
    finally:
        _request_ctx.reset(token)


def run_with_tenant_context(context: RequestContext, fn: Callable[[], T]) -> T:
    """Call `fn` with `context` bound and return its result.

    For coroutine functions, await the result inside the block instead:
    the context must still be bound when the coroutine runs.
    """
    with tenant_context(context):
        return fn()


def get_current_context() -> RequestContext | None:
    return _request_ctx.get()


def get_tenant_id() -> str | None:
    ctx = _request_ctx.get()
    return ctx.tenant_id if ctx else None


def get_user_id() -> str | None:
    ctx = _request_ctx.get()
    return ctx.user_id if ctx else None


def require_tenant_id() -> str:
    """Return the current tenant id or raise if no context is bound."""
    tenant_id = get_tenant_id()
    if not tenant_id:
        raise TenantContextError(
            "Tenant context required. Ensure you are authenticated."
        )
    return tenant_id
