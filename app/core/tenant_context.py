"""
Tenant Context

Per-request holder of the authenticated tenant and user identity.

A fresh TenantContext is created by TenantMiddleware for every inbound
request and handed explicitly to the data access layer (it is bound to the
request's database session). It is never stored in module or process
state, so concurrent requests cannot observe each other's identity.

Reading an unpopulated context is a programming error: it raises
UnauthenticatedContextError instead of returning an empty tenant id that
could silently match real data.
"""
from typing import NamedTuple, Optional

from app.core.exceptions import TenantAccessViolationError, UnauthenticatedContextError


class TenantIdentity(NamedTuple):
    tenant_id: str
    user_id: Optional[str]


class TenantContext:
    """Mutable identity holder, populated once per request."""

    __slots__ = ("_tenant_id", "_user_id")

    def __init__(self, tenant_id: Optional[str] = None, user_id: Optional[str] = None):
        self._tenant_id = None
        self._user_id = None
        if tenant_id is not None:
            self.set(tenant_id, user_id)

    def __repr__(self):
        return f"<TenantContext tenant={self._tenant_id} user={self._user_id}>"

    @property
    def is_set(self) -> bool:
        return self._tenant_id is not None

    def set(self, tenant_id: str, user_id: Optional[str] = None) -> None:
        """
        Populate the context.

        Re-populating with the same identity is a no-op. Switching an
        already populated context to another tenant is rejected.
        """
        if not tenant_id:
            raise UnauthenticatedContextError("Cannot populate tenant context with an empty tenant id")

        tenant_id = str(tenant_id)
        user_id = str(user_id) if user_id is not None else None

        if self._tenant_id is not None and self._tenant_id != tenant_id:
            raise TenantAccessViolationError(
                requested_tenant_id=tenant_id,
                actual_tenant_id=self._tenant_id,
            )

        self._tenant_id = tenant_id
        if user_id is not None:
            self._user_id = user_id

    def get(self) -> TenantIdentity:
        """Return (tenant_id, user_id); fails loudly when unpopulated."""
        if self._tenant_id is None:
            raise UnauthenticatedContextError()
        return TenantIdentity(self._tenant_id, self._user_id)

    @property
    def tenant_id(self) -> str:
        return self.get().tenant_id

    @property
    def user_id(self) -> Optional[str]:
        return self.get().user_id
