import pytest

from app.core.exceptions import TenantAccessViolationError, UnauthenticatedContextError
from app.core.tenant_context import TenantContext


def test_get_on_unset_context_fails_loudly():
    context = TenantContext()

    assert not context.is_set
    with pytest.raises(UnauthenticatedContextError):
        context.get()
    with pytest.raises(UnauthenticatedContextError):
        _ = context.tenant_id


def test_set_then_get_returns_identity():
    context = TenantContext()
    context.set("tenant-1", "user-1")

    assert context.is_set
    assert context.get() == ("tenant-1", "user-1")
    assert context.tenant_id == "tenant-1"
    assert context.user_id == "user-1"


def test_set_with_empty_tenant_is_rejected():
    with pytest.raises(UnauthenticatedContextError):
        TenantContext().set("")


def test_switching_populated_context_to_another_tenant_is_rejected():
    context = TenantContext("tenant-1", "user-1")

    with pytest.raises(TenantAccessViolationError) as exc:
        context.set("tenant-2", "user-2")

    assert exc.value.status_code == 403
    assert exc.value.requested_tenant_id == "tenant-2"
    assert context.tenant_id == "tenant-1"


def test_contexts_are_independent():
    first = TenantContext("tenant-1")
    second = TenantContext()

    assert first.is_set
    assert not second.is_set


def test_unauthenticated_context_error_hides_internal_message():
    error = UnauthenticatedContextError("context read in background job")

    assert error.status_code == 500
    assert error.detail == "Internal server error"
    assert str(error) == "context read in background job"
