"""Tenant context for multi-tenant request scoping.

The current application id lives in a ``ContextVar``. asyncio copies the
context into every task it creates, so a binding made for one request follows
that request's call tree (including tasks it spawns) and is invisible to every
other in-flight request.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, TypeVar

from tenantgate.exceptions import ContextMissingError

T = TypeVar("T")

_current_application: ContextVar[str | None] = ContextVar("current_application", default=None)


def current_tenant() -> str | None:
    """Return the bound application id, or None outside a tenant scope."""
    return _current_application.get()


def require_tenant() -> str:
    """Return the bound application id or fail loudly."""
    application = _current_application.get()
    if application is None:
        msg = "Application context missing; ensure x-application-name is provided"
        raise ContextMissingError(msg)
    return application


@contextmanager
def tenant_scope(application_id: str) -> Iterator[str]:
    """Bind ``application_id`` for the duration of the ``with`` block."""
    if not application_id:
        msg = "application_id must be a non-empty string"
        raise ValueError(msg)
    token = _current_application.set(application_id)
    try:
        yield application_id
    finally:
        _current_application.reset(token)


async def with_tenant(
    application_id: str,
    fn: Callable[..., Awaitable[T]],
    *args: Any,
    **kwargs: Any,
) -> T:
    """Await ``fn(*args, **kwargs)`` with ``application_id`` bound."""
    with tenant_scope(application_id):
        return await fn(*args, **kwargs)
