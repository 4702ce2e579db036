"""
Tenant-Scoped Repositories

Write side: ORM sessions bound to the request's TenantContext. The scoping
listeners in app/data/scoping.py filter every query and stamp every flush,
so these methods never take a tenant id except delete_by_id.

Read side: plain SQL over the read engine (which may be a replica). Every
query takes the tenant id as an explicit parameter and never consults the
ambient context.
"""
from dataclasses import dataclass, field
from math import ceil
from typing import Any, Dict, Generic, Iterable, List, Optional, Type, TypeVar
import logging
import re

from sqlalchemy import inspect, select, text
from sqlalchemy.engine import Connection
from sqlalchemy.orm import Session

from app.core.exceptions import NotFoundError
from app.core.retry import retry_on_transient
from app.data.scoping import tenant_scope, unscoped_execute

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT")

# Columns the write path never copies from a caller's object
IMMUTABLE_COLUMNS = {"id", "tenant_id", "created_at", "updated_at"}

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass
class PaginatedList:
    items: List[Dict[str, Any]] = field(default_factory=list)
    page_number: int = 1
    page_size: int = 10
    total_count: int = 0

    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return ceil(self.total_count / self.page_size)

    @property
    def has_previous_page(self) -> bool:
        return self.page_number > 1

    @property
    def has_next_page(self) -> bool:
        return self.page_number < self.total_pages


class WriteRepository(Generic[ModelT]):
    """Transactional writes for one tenant-owned model."""

    def __init__(self, session: Session, model: Type[ModelT]):
        if not tenant_scope.is_scoped(model):
            raise TypeError(f"{model.__name__} is not registered as tenant-scoped")
        self.session = session
        self.model = model
        self._entity = tenant_scope.get(model)

    def _commit(self) -> None:
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    @retry_on_transient()
    def add(self, entity: ModelT) -> ModelT:
        self.session.add(entity)
        self._commit()
        return entity

    @retry_on_transient()
    def add_range(self, entities: Iterable[ModelT]) -> List[ModelT]:
        entities = list(entities)
        self.session.add_all(entities)
        self._commit()
        return entities

    @retry_on_transient()
    def update(self, entity: ModelT) -> ModelT:
        """
        Persist the mutable fields of entity.

        The target row is resolved through the scoped session, so a row
        owned by another tenant is not found. tenant_id and the timestamps
        are never copied from the caller's object.
        """
        current = self.session.get(self.model, entity.id)
        if current is None:
            raise NotFoundError(self.model.__name__, entity.id)

        if current is not entity:
            for column in inspect(self.model).column_attrs:
                if column.key in IMMUTABLE_COLUMNS or column.key == self._entity.tenant_column:
                    continue
                setattr(current, column.key, getattr(entity, column.key))

        self._commit()
        return current

    @retry_on_transient()
    def delete(self, entity: ModelT) -> bool:
        current = self.session.get(self.model, entity.id)
        if current is None:
            logger.debug(f"Delete skipped, {self.model.__name__} {entity.id} not visible in tenant")
            return False
        self.session.delete(current)
        self._commit()
        return True

    @retry_on_transient()
    def delete_by_id(self, entity_id: str, tenant_id: str) -> bool:
        """
        Delete a row by id, looked up under the given tenant id.

        The lookup steps outside the ambient filter but is itself filtered
        by tenant_id. The flush guard still rejects the delete when
        tenant_id is not the context's tenant.
        """
        pk_column = inspect(self.model).primary_key[0]
        tenant_column = getattr(self.model, self._entity.tenant_column)
        entity = unscoped_execute(
            self.session,
            select(self.model).where(pk_column == entity_id, tenant_column == tenant_id),
            reason=f"delete {self.model.__name__} by id within explicit tenant",
        ).scalar_one_or_none()

        if entity is None:
            return False

        self.session.delete(entity)
        self._commit()
        return True


class ReadRepository:
    """Tenant-filtered reads over a read-side connection."""

    def __init__(self, connection: Connection, table_name: str, tenant_column: str = "tenant_id"):
        for identifier in (table_name, tenant_column):
            if not _IDENTIFIER.match(identifier):
                raise ValueError(f"Invalid SQL identifier: {identifier!r}")
        self.connection = connection
        self.table_name = table_name
        self.tenant_column = tenant_column

    @classmethod
    def for_model(cls, connection: Connection, model: type) -> "ReadRepository":
        entity = tenant_scope.get(model)
        if entity is None:
            raise TypeError(f"{model.__name__} is not registered as tenant-scoped")
        return cls(connection, entity.table_name, entity.tenant_column)

    def _rows(self, sql: str, **params) -> List[Dict[str, Any]]:
        result = self.connection.execute(text(sql), params)
        return [dict(row._mapping) for row in result]

    @retry_on_transient()
    def get_by_id(self, entity_id: str, tenant_id: str) -> Optional[Dict[str, Any]]:
        rows = self._rows(
            f"SELECT * FROM {self.table_name} "
            f"WHERE id = :id AND {self.tenant_column} = :tenant_id",
            id=entity_id,
            tenant_id=tenant_id,
        )
        return rows[0] if rows else None

    @retry_on_transient()
    def get_all(self, tenant_id: str) -> List[Dict[str, Any]]:
        return self._rows(
            f"SELECT * FROM {self.table_name} "
            f"WHERE {self.tenant_column} = :tenant_id ORDER BY created_at DESC",
            tenant_id=tenant_id,
        )

    @retry_on_transient()
    def get_paged(self, tenant_id: str, page_number: int = 1, page_size: int = 10) -> PaginatedList:
        page_number = max(1, page_number)
        page_size = max(1, page_size)

        total = self.count(tenant_id)
        items = self._rows(
            f"SELECT * FROM {self.table_name} "
            f"WHERE {self.tenant_column} = :tenant_id ORDER BY created_at DESC "
            f"LIMIT :limit OFFSET :offset",
            tenant_id=tenant_id,
            limit=page_size,
            offset=(page_number - 1) * page_size,
        )
        return PaginatedList(items=items, page_number=page_number, page_size=page_size, total_count=total)

    @retry_on_transient()
    def count(self, tenant_id: str) -> int:
        result = self.connection.execute(
            text(f"SELECT COUNT(*) FROM {self.table_name} WHERE {self.tenant_column} = :tenant_id"),
            {"tenant_id": tenant_id},
        )
        return int(result.scalar_one())

    @retry_on_transient()
    def exists(self, entity_id: str, tenant_id: str) -> bool:
        result = self.connection.execute(
            text(
                f"SELECT 1 FROM {self.table_name} "
                f"WHERE id = :id AND {self.tenant_column} = :tenant_id"
            ),
            {"id": entity_id, "tenant_id": tenant_id},
        )
        return result.first() is not None
