"""Entity store: async SQLAlchemy engine, transactions and generic CRUD."""
import math
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import Request
from sqlalchemy import event, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from .config import get_settings
from .errors import NotFoundError
from .models import Base

log = structlog.get_logger()

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 20
MAX_LIMIT = 100


def _serialize_writes(engine) -> None:
    """Open every SQLite transaction with BEGIN IMMEDIATE.

    SQLite ignores SELECT ... FOR UPDATE, so concurrent transactions queue on the
    database write lock instead.
    """
    @event.listens_for(engine.sync_engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class Store:
    """Owns the engine and session factory. Open on startup, close on shutdown."""

    def __init__(self, dsn: str, pool_size: int = 10, create_schema: bool = False):
        self.dsn = dsn
        self.pool_size = pool_size
        self.create_schema = create_schema
        self.engine = None
        self.sessionmaker: async_sessionmaker[AsyncSession] | None = None

    @classmethod
    def from_settings(cls) -> "Store":
        settings = get_settings()
        return cls(settings.dsn, settings.db_pool_size, settings.auto_create_schema)

    async def open(self) -> None:
        if self.dsn.startswith("sqlite") and ":memory:" in self.dsn:
            # One shared connection so in-memory databases survive across sessions
            self.engine = create_async_engine(
                self.dsn, poolclass=StaticPool, connect_args={"check_same_thread": False}
            )
        elif self.dsn.startswith("sqlite"):
            self.engine = create_async_engine(self.dsn)
            _serialize_writes(self.engine)
        else:
            self.engine = create_async_engine(self.dsn, pool_size=self.pool_size, pool_pre_ping=True)
        self.sessionmaker = async_sessionmaker(self.engine, expire_on_commit=False)
        if self.create_schema:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        log.info("store_opened", dialect=self.engine.dialect.name)

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
            log.info("store_closed")
        self.engine = None
        self.sessionmaker = None

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Yield a session inside a transaction; commit on success, roll back on error."""
        if self.sessionmaker is None:
            raise RuntimeError("Store is not open")
        async with self.sessionmaker() as session:
            async with session.begin():
                yield session


def apply_patch(entity, patch: dict) -> None:
    """Copy ``patch`` onto ``entity``. None for a NOT NULL column keeps the stored value."""
    columns = entity.__table__.columns
    for key, value in patch.items():
        if value is None and key in columns and not columns[key].nullable:
            continue
        setattr(entity, key, value)


def parse_pagination(page: int | None = None, limit: int | None = None) -> tuple[int, int, int]:
    current_page = max(page or DEFAULT_PAGE, 1)
    current_limit = min(max(limit or DEFAULT_LIMIT, 1), MAX_LIMIT)
    return current_page, current_limit, (current_page - 1) * current_limit


def pagination_meta(total: int, page: int, limit: int) -> dict:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": total_pages,
        "has_next_page": page < total_pages,
        "has_prev_page": page > 1,
    }


async def paginate(session: AsyncSession, stmt, page: int | None, limit: int | None) -> tuple[list, dict]:
    """Run ``stmt`` for one page and count the full result."""
    page, limit, offset = parse_pagination(page, limit)
    total = await session.scalar(select(func.count()).select_from(stmt.order_by(None).subquery()))
    rows = (await session.scalars(stmt.offset(offset).limit(limit))).all()
    return list(rows), pagination_meta(total or 0, page, limit)


class Repository:
    """Generic find / find_many / create / update / delete for one model."""

    def __init__(self, model, label: str | None = None, soft_delete: bool = False, search_columns=()):
        self.model = model
        self.label = label or model.__name__
        self.soft_delete = soft_delete
        self.search_columns = search_columns

    async def find(self, session: AsyncSession, entity_id: int, for_update: bool = False):
        stmt = select(self.model).where(self.model.id == entity_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        entity = await session.scalar(stmt)
        if entity is None:
            raise NotFoundError(self.label, entity_id)
        return entity

    async def find_many(
        self,
        session: AsyncSession,
        filters: dict | None = None,
        page: int | None = None,
        limit: int | None = None,
        order_by=None,
        search: str | None = None,
    ) -> tuple[list, dict]:
        stmt = select(self.model)
        for column, value in (filters or {}).items():
            if value is not None:
                stmt = stmt.where(getattr(self.model, column) == value)
        if search and self.search_columns:
            pattern = f"%{search}%"
            stmt = stmt.where(or_(*(getattr(self.model, c).ilike(pattern) for c in self.search_columns)))
        stmt = stmt.order_by(order_by if order_by is not None else self.model.id.desc())
        return await paginate(session, stmt, page, limit)

    async def create(self, session: AsyncSession, payload: dict):
        entity = self.model(**payload)
        session.add(entity)
        await session.flush()
        await session.refresh(entity)
        return entity

    async def update(self, session: AsyncSession, entity_id: int, patch: dict):
        entity = await self.find(session, entity_id)
        apply_patch(entity, patch)
        await session.flush()
        await session.refresh(entity)
        return entity

    async def delete(self, session: AsyncSession, entity_id: int) -> None:
        entity = await self.find(session, entity_id)
        if self.soft_delete:
            entity.is_active = False
        else:
            await session.delete(entity)
        await session.flush()


def get_store(request: Request) -> Store:
    return request.app.state.store
