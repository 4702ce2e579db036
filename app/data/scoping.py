"""
Tenant Scoping

Provider-level enforcement of tenant isolation for the ORM write side.

ARCHITECTURE:
- Tenant-owned models are registered explicitly at composition time
  (see app/models/__init__.py). Nothing is discovered by reflection.
- Each Session carries the TenantContext of the request that owns it in
  session.info. Two listeners read it:
    * do_orm_execute adds with_loader_criteria(model, tenant predicate) to
      every ORM SELECT / UPDATE / DELETE, so a query that forgets to
      filter by tenant is still filtered. ORM INSERT and UPDATE statements,
      which bypass the unit of work, get the same tenant_id rules there.
    * before_flush force-assigns tenant_id on insert, restores any
      attempted tenant_id change on update, stamps timestamps, and rejects
      updates/deletes of rows owned by another tenant.
- The only bypass is unscoped_execute(), a separately named call that
  records an audit event with the caller's reason. It is used by the
  authentication lookups (email/subdomain across all tenants) and by
  DeleteById's explicit tenant-filtered fetch.
"""
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Mapping, NamedTuple, Optional
import logging

from sqlalchemy import event, inspect, select
from sqlalchemy.orm import Session, with_loader_criteria
from sqlalchemy.orm.attributes import set_committed_value
from sqlalchemy.sql.expression import BindParameter, ClauseElement
from sqlalchemy.sql.util import find_tables

from app.core.exceptions import TenantAccessViolationError, UnauthenticatedContextError
from app.core.tenant_context import TenantContext
from app.utils.logging import log_security_event

logger = logging.getLogger(__name__)

CONTEXT_KEY = "tenant_context"
UNSCOPED_OPTION = "unscoped_reason"


class ScopedEntity(NamedTuple):
    model: type
    table_name: str
    tenant_column: str

    def predicate(self, tenant_id: str):
        return getattr(self.model, self.tenant_column) == tenant_id


class TenantScopeRegistry:
    """Explicit registry of tenant-owned models and their tables."""

    def __init__(self):
        self._entities: Dict[type, ScopedEntity] = {}

    def register(self, model: type, table_name: str, tenant_column: str = "tenant_id") -> ScopedEntity:
        if not hasattr(model, tenant_column):
            raise TypeError(f"{model.__name__} has no '{tenant_column}' column to scope by")
        entity = ScopedEntity(model, table_name, tenant_column)
        self._entities[model] = entity
        logger.debug(f"Registered tenant-scoped entity {model.__name__} -> {table_name}")
        return entity

    def get(self, model: type) -> Optional[ScopedEntity]:
        return self._entities.get(model)

    def is_scoped(self, model: type) -> bool:
        return model in self._entities

    def table_for(self, model: type) -> str:
        entity = self._entities.get(model)
        if entity is None:
            raise KeyError(f"{model.__name__} is not registered as tenant-scoped")
        return entity.table_name

    def entities(self) -> List[ScopedEntity]:
        return list(self._entities.values())


tenant_scope = TenantScopeRegistry()


# ============================================================================
# SESSION CONTEXT BINDING
# ============================================================================

def bind_tenant_context(session: Session, context: TenantContext) -> None:
    session.info[CONTEXT_KEY] = context


@contextmanager
def scoped_to(session: Session, context: TenantContext) -> Iterator[TenantContext]:
    """
    Temporarily act as another tenant on this session.

    Used by registration (writing as the tenant being created) and by
    login (updating the authenticated user before a request context
    exists).
    """
    previous = session.info.get(CONTEXT_KEY)
    session.info[CONTEXT_KEY] = context
    try:
        yield context
    finally:
        if previous is None:
            session.info.pop(CONTEXT_KEY, None)
        else:
            session.info[CONTEXT_KEY] = previous


def _require_tenant_id(session: Session, operation: str) -> str:
    context = session.info.get(CONTEXT_KEY)
    if context is None or not context.is_set:
        logger.error(
            f"Tenant-scoped {operation} attempted without a populated tenant context",
            extra={"security_event": True, "event_type": "unauthenticated_context"},
        )
        raise UnauthenticatedContextError(
            f"Tenant context has not been set before a tenant-scoped {operation}."
        )
    return context.tenant_id


# ============================================================================
# EXPLICIT BYPASS
# ============================================================================

def unscoped_execute(session: Session, statement, reason: str, params: Optional[dict] = None):
    """
    Execute an ORM statement without the tenant filter.

    Every call site must state why it needs cross-tenant visibility.
    """
    if not reason:
        raise ValueError("unscoped_execute requires a reason")
    logger.info(
        f"Unscoped query: {reason}",
        extra={"security_event": True, "event_type": "unscoped_query"},
    )
    return session.execute(statement, params, execution_options={UNSCOPED_OPTION: reason})


# ============================================================================
# LISTENERS
# ============================================================================

def _touches_scoped(orm_execute_state) -> bool:
    if any(tenant_scope.is_scoped(mapper.class_) for mapper in orm_execute_state.all_mappers):
        return True
    # e.g. select(func.count()).select_from(Project) has no entity column
    scoped_tables = {entity.table_name for entity in tenant_scope.entities()}
    tables = find_tables(orm_execute_state.statement, check_columns=True, include_crud=True)
    return any(table.name in scoped_tables for table in tables)


def _apply_tenant_criteria(orm_execute_state) -> None:
    if orm_execute_state.execution_options.get(UNSCOPED_OPTION):
        return
    if orm_execute_state.is_insert:
        _guard_bulk_write(orm_execute_state, "insert")
        return
    if not (orm_execute_state.is_select or orm_execute_state.is_update or orm_execute_state.is_delete):
        return
    # Lazy/column loads inherit the criteria of the statement that loaded the parent
    if orm_execute_state.is_column_load or orm_execute_state.is_relationship_load:
        return

    context = orm_execute_state.session.info.get(CONTEXT_KEY)
    if context is None or not context.is_set:
        if _touches_scoped(orm_execute_state):
            _require_tenant_id(orm_execute_state.session, "query")
        return

    if orm_execute_state.is_update:
        _guard_bulk_write(orm_execute_state, "update")

    tenant_id = context.tenant_id
    orm_execute_state.statement = orm_execute_state.statement.options(
        *[
            with_loader_criteria(entity.model, entity.predicate(tenant_id), include_aliases=True)
            for entity in tenant_scope.entities()
        ]
    )


def _assigned_value(row, column_name: str):
    """Return (assigned, value) for one column in one row of VALUES."""
    if not isinstance(row, Mapping):
        raise TenantAccessViolationError("Positional VALUES are not allowed for tenant-owned models.")
    for key, value in row.items():
        if getattr(key, "key", key) != column_name:
            continue
        if isinstance(value, BindParameter):
            value = value.effective_value
        return True, value
    return False, None


def _check_tenant_assignment(row, entity: ScopedEntity, tenant_id: str, operation: str) -> bool:
    assigned, value = _assigned_value(row, entity.tenant_column)
    if isinstance(value, ClauseElement):
        raise TenantAccessViolationError("The tenant column can only be assigned a literal value.")
    if assigned and (value is None or str(value) != tenant_id):
        log_security_event(
            "tenant_isolation_violation",
            {
                "operation": f"bulk {operation}",
                "entity": entity.model.__name__,
                "tenant_id": tenant_id,
                "target_tenant_id": value,
            },
            logger,
        )
        raise TenantAccessViolationError(
            requested_tenant_id=None if value is None else str(value),
            actual_tenant_id=tenant_id,
        )
    return assigned


def _guard_bulk_write(orm_execute_state, operation: str) -> None:
    """
    Apply the flush-time tenant rules to ORM INSERT/UPDATE statements,
    which never reach before_flush.

    Neither may assign another tenant's id. INSERT gets the context tenant
    and created_at filled in; UPDATE gets updated_at.
    """
    statement = orm_execute_state.statement
    target = getattr(statement, "table", None)
    entity = next(
        (e for e in tenant_scope.entities() if target is not None and target.name == e.table_name),
        None,
    )
    if entity is None:
        # e.g. select(Project).from_statement(insert(Project)...)
        if target is None and _touches_scoped(orm_execute_state):
            raise TenantAccessViolationError(
                f"{operation.upper()} through a SELECT is not allowed for tenant-owned models."
            )
        return

    tenant_id = _require_tenant_id(orm_execute_state.session, operation)
    parameters = orm_execute_state.parameters

    if operation == "update" and isinstance(parameters, list):
        # Bulk UPDATE by primary key does not apply loader criteria
        raise TenantAccessViolationError("Bulk UPDATE by primary key is not allowed for tenant-owned models.")
    if operation == "insert" and statement.select is not None:
        raise TenantAccessViolationError("INSERT ... FROM SELECT is not allowed for tenant-owned models.")

    statement_rows = [statement._values] if statement._values else []
    ordered = getattr(statement, "_ordered_values", None)
    if ordered:
        statement_rows.append(dict(ordered))
    for multi in statement._multi_values:
        statement_rows.extend(multi)
    if isinstance(parameters, list):
        parameter_rows = parameters
    else:
        parameter_rows = [parameters] if parameters else []

    tenant_in_statement = [
        _check_tenant_assignment(row, entity, tenant_id, operation) for row in statement_rows
    ]
    for row in parameter_rows:
        _check_tenant_assignment(row, entity, tenant_id, operation)

    now = datetime.now(timezone.utc)
    if operation == "update":
        if hasattr(entity.model, "updated_at") and not any(
            _assigned_value(row, "updated_at")[0] for row in statement_rows
        ):
            orm_execute_state.statement = statement.values(updated_at=now)
        return

    stamps = {entity.tenant_column: tenant_id}
    if hasattr(entity.model, "created_at"):
        stamps["created_at"] = now
    if parameter_rows:
        filled = [{**stamps, **row, entity.tenant_column: tenant_id} for row in parameter_rows]
        orm_execute_state.parameters = filled if isinstance(parameters, list) else filled[0]
    elif statement._multi_values:
        if not all(tenant_in_statement):
            raise TenantAccessViolationError("Multi-row VALUES for tenant-owned models must set the tenant column.")
    else:
        missing = {
            column: value
            for column, value in stamps.items()
            if not any(_assigned_value(row, column)[0] for row in statement_rows)
        }
        if missing:
            orm_execute_state.statement = statement.values(missing)


def _original_tenant_id(session: Session, obj, entity: ScopedEntity) -> Optional[str]:
    """Return the persisted tenant id, undoing any pending change to it."""
    state = inspect(obj)
    history = state.attrs[entity.tenant_column].history
    if not history.has_changes():
        return getattr(obj, entity.tenant_column)

    if history.deleted:
        original = history.deleted[0]
    else:
        # Attribute was expired before being overwritten; ask the database
        pk_column = inspect(entity.model).primary_key[0]
        with session.no_autoflush:
            original = unscoped_execute(
                session,
                select(getattr(entity.model, entity.tenant_column)).where(pk_column == state.identity[0]),
                reason="restore tenant column on update",
            ).scalar_one()

    attempted = history.added[0] if history.added else None
    set_committed_value(obj, entity.tenant_column, original)
    log_security_event(
        "tenant_reassignment_ignored",
        {"entity": entity.model.__name__, "tenant_id": original, "attempted_tenant_id": attempted},
        logger,
    )
    return original


def _guard_same_tenant(session: Session, obj, owner_tenant_id: Optional[str], operation: str) -> None:
    tenant_id = _require_tenant_id(session, operation)
    if owner_tenant_id is not None and str(owner_tenant_id) != tenant_id:
        log_security_event(
            "tenant_isolation_violation",
            {
                "operation": operation,
                "entity": type(obj).__name__,
                "tenant_id": tenant_id,
                "target_tenant_id": owner_tenant_id,
            },
            logger,
        )
        raise TenantAccessViolationError(
            requested_tenant_id=str(owner_tenant_id),
            actual_tenant_id=tenant_id,
        )


def _stamp_and_guard(session: Session, flush_context, instances) -> None:
    now = datetime.now(timezone.utc)

    for obj in session.new:
        entity = tenant_scope.get(type(obj))
        if entity is not None:
            setattr(obj, entity.tenant_column, _require_tenant_id(session, "insert"))
        if hasattr(obj, "created_at"):
            obj.created_at = now

    for obj in session.dirty:
        if not session.is_modified(obj):
            continue
        entity = tenant_scope.get(type(obj))
        if entity is not None:
            owner = _original_tenant_id(session, obj, entity)
            _guard_same_tenant(session, obj, owner, "update")
        if hasattr(obj, "updated_at"):
            obj.updated_at = now

    for obj in session.deleted:
        entity = tenant_scope.get(type(obj))
        if entity is not None:
            _guard_same_tenant(session, obj, getattr(obj, entity.tenant_column), "delete")


def install_tenant_scoping(session_factory) -> None:
    """Attach the scoping listeners to a sessionmaker (or Session class)."""
    if not event.contains(session_factory, "do_orm_execute", _apply_tenant_criteria):
        event.listen(session_factory, "do_orm_execute", _apply_tenant_criteria)
    if not event.contains(session_factory, "before_flush", _stamp_and_guard):
        event.listen(session_factory, "before_flush", _stamp_and_guard)
