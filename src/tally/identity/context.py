from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from .errors import NoTenantSelectedError, NotAuthenticatedError


@dataclass(slots=True, frozen=True)
class CurrentUser:
    id: str
    current_tenant_id: str | None = None


@dataclass(slots=True, frozen=True)
class TenantContext:
    """Explicit tenant scope handed to every engine call."""

    user_id: str
    tenant_id: str


class SessionProvider(Protocol):
    async def get_current_user(self) -> CurrentUser | None:
        ...


async def require_tenant(session: SessionProvider) -> TenantContext:
    user = await session.get_current_user()
    if user is None:
        raise NotAuthenticatedError()
    if not user.current_tenant_id:
        raise NoTenantSelectedError()
    return TenantContext(user_id=user.id, tenant_id=user.current_tenant_id)


__all__ = ["CurrentUser", "TenantContext", "SessionProvider", "require_tenant"]
