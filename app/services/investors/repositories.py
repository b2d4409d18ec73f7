"""Persistence backends for the canonical investor set."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from threading import Lock
from typing import Any, Protocol

from sqlalchemy import delete as sa_delete
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import URL, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, create_engine, select

from app.config import settings
from app.models.investor import Investor
from app.models.investor_record import InvestorRecord
from app.observability.metrics import metrics
from app.services.investors.errors import InvestorStoreError

logger = logging.getLogger(__name__)


class InvestorRepository(Protocol):
    """Persistence contract for canonical investor records."""

    def get_all(self) -> list[Investor]:
        ...

    def get_by_id(self, investor_id: str) -> Investor | None:
        ...

    def upsert_many(self, investors: Iterable[Investor]) -> None:
        ...

    def replace_all(self, investors: Iterable[Investor]) -> None:
        ...

    def delete(self, investor_id: str) -> None:
        ...


class InMemoryInvestorRepository(InvestorRepository):
    """Thread-safe repository used for API/local development."""

    def __init__(self, investors: Iterable[Investor] | None = None) -> None:
        self._investors: dict[str, Investor] = {}
        self._lock = Lock()
        for investor in investors or []:
            self._investors[investor.id] = investor

    def get_all(self) -> list[Investor]:
        with self._lock:
            return list(self._investors.values())

    def get_by_id(self, investor_id: str) -> Investor | None:
        with self._lock:
            return self._investors.get(investor_id)

    def upsert_many(self, investors: Iterable[Investor]) -> None:
        with self._lock:
            for investor in investors:
                self._investors[investor.id] = investor

    def replace_all(self, investors: Iterable[Investor]) -> None:
        replacement = {investor.id: investor for investor in investors}
        with self._lock:
            self._investors = replacement

    def delete(self, investor_id: str) -> None:
        with self._lock:
            self._investors.pop(investor_id, None)


class SqlInvestorRepository(InvestorRepository):
    """SQLModel-backed repository that persists investors to Postgres or SQLite."""

    def __init__(
        self,
        database_url: str,
        *,
        pool_min_size: int | None = None,
        pool_max_size: int | None = None,
        auto_create_schema: bool = False,
    ) -> None:
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlInvestorRepository.")

        parsed_url = make_url(database_url)
        sync_url, connect_args, drivername = _coerce_sync_database_url(parsed_url)
        pool_min = max(pool_min_size or settings.db_pool_min_size, 1)
        pool_max = max(pool_max_size or settings.db_pool_max_size, pool_min)
        is_sqlite = drivername.startswith("sqlite")
        engine_kwargs: dict[str, Any] = {
            "echo": False,
            "connect_args": connect_args,
            "pool_pre_ping": not is_sqlite,
        }
        if not is_sqlite:
            engine_kwargs["pool_size"] = pool_min
            engine_kwargs["max_overflow"] = max(pool_max - pool_min, 0)

        self._engine: Engine = create_engine(sync_url, **engine_kwargs)
        if auto_create_schema:
            SQLModel.metadata.create_all(self._engine, tables=[InvestorRecord.__table__])
        self._metrics_tags = {"repository": "sqlite" if is_sqlite else "postgres"}

    def dispose(self) -> None:
        """Close the underlying SQLAlchemy engine."""
        self._engine.dispose()

    def get_all(self) -> list[Investor]:
        try:
            with self._session() as session:
                statement = select(InvestorRecord).order_by(InvestorRecord.created_at)
                return [record.to_investor() for record in session.exec(statement).all()]
        except SQLAlchemyError as exc:
            logger.exception("investor_store.error", extra={"operation": "get_all"})
            raise InvestorStoreError("Failed to load investors.", code="500_STORE_READ") from exc

    def get_by_id(self, investor_id: str) -> Investor | None:
        try:
            with self._session() as session:
                record = session.get(InvestorRecord, investor_id)
                return record.to_investor() if record else None
        except SQLAlchemyError as exc:
            logger.exception(
                "investor_store.error",
                extra={"operation": "get_by_id", "investor_id": investor_id},
            )
            raise InvestorStoreError("Failed to load investor.", code="500_STORE_READ") from exc

    def upsert_many(self, investors: Iterable[Investor]) -> None:
        rows = [InvestorRecord.from_investor(investor) for investor in investors]
        try:
            with self._session() as session:
                for row in rows:
                    session.merge(row)
                session.commit()
        except SQLAlchemyError as exc:
            logger.exception("investor_store.error", extra={"operation": "upsert_many"})
            raise InvestorStoreError("Failed to persist investors.", code="500_STORE_WRITE") from exc
        metrics.increment("store.upserted", len(rows), tags=self._metrics_tags)

    def replace_all(self, investors: Iterable[Investor]) -> None:
        rows = [InvestorRecord.from_investor(investor) for investor in investors]
        try:
            with self._session() as session:
                session.execute(sa_delete(InvestorRecord))
                session.add_all(rows)
                session.commit()
        except SQLAlchemyError as exc:
            logger.exception("investor_store.error", extra={"operation": "replace_all"})
            raise InvestorStoreError("Failed to persist investors.", code="500_STORE_WRITE") from exc
        metrics.gauge("store.size", len(rows), tags=self._metrics_tags)

    def delete(self, investor_id: str) -> None:
        try:
            with self._session() as session:
                record = session.get(InvestorRecord, investor_id)
                if record is not None:
                    session.delete(record)
                    session.commit()
        except SQLAlchemyError as exc:
            logger.exception(
                "investor_store.error",
                extra={"operation": "delete", "investor_id": investor_id},
            )
            raise InvestorStoreError("Failed to delete investor.", code="500_STORE_WRITE") from exc

    @contextmanager
    def _session(self) -> Iterator[Session]:
        with Session(self._engine) as session:
            yield session


class InvestorStore:
    """Async facade over a repository with a short-lived read-through cache.

    Repository calls run in a worker thread. ``get_all`` is served from memory
    for ``read_cache_ttl_seconds``; every write refreshes that snapshot while
    holding the same lock, so a following read always reflects the write.
    """

    def __init__(
        self,
        repository: InvestorRepository,
        *,
        read_cache_ttl_seconds: float | None = None,
    ) -> None:
        self._repository = repository
        self._ttl = (
            settings.store_read_cache_ttl_seconds
            if read_cache_ttl_seconds is None
            else read_cache_ttl_seconds
        )
        self._snapshot: list[Investor] | None = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    @property
    def repository(self) -> InvestorRepository:
        return self._repository

    async def get_all(self) -> list[Investor]:
        async with self._lock:
            if self._snapshot is not None and self._expires_at > time.monotonic():
                metrics.increment("store.read_cache_hit")
                return list(self._snapshot)
            investors = await asyncio.to_thread(self._repository.get_all)
            self._remember(investors)
            return list(investors)

    async def get_by_id(self, investor_id: str) -> Investor | None:
        async with self._lock:
            if self._snapshot is not None and self._expires_at > time.monotonic():
                for investor in self._snapshot:
                    if investor.id == investor_id:
                        return investor
        return await asyncio.to_thread(self._repository.get_by_id, investor_id)

    async def upsert_many(self, investors: Iterable[Investor]) -> None:
        batch = list(investors)
        if not batch:
            return
        async with self._lock:
            try:
                await asyncio.to_thread(self._repository.upsert_many, batch)
            finally:
                self._invalidate()
            self._remember(await asyncio.to_thread(self._repository.get_all))
        logger.info("investor_store.upserted", extra={"count": len(batch)})

    async def replace_all(self, investors: Iterable[Investor]) -> None:
        batch = list(investors)
        async with self._lock:
            try:
                await asyncio.to_thread(self._repository.replace_all, batch)
            finally:
                self._invalidate()
            self._remember(batch)
        logger.info("investor_store.replaced", extra={"count": len(batch)})

    async def delete(self, investor_id: str) -> None:
        async with self._lock:
            try:
                await asyncio.to_thread(self._repository.delete, investor_id)
            finally:
                self._invalidate()
        logger.info("investor_store.deleted", extra={"investor_id": investor_id})

    def _remember(self, investors: list[Investor]) -> None:
        self._snapshot = list(investors)
        self._expires_at = time.monotonic() + self._ttl

    def _invalidate(self) -> None:
        self._snapshot = None
        self._expires_at = 0.0


def _coerce_sync_database_url(url: URL) -> tuple[str, dict[str, Any], str]:
    """Convert async connection strings into sync SQLAlchemy URLs."""
    drivername = url.drivername
    connect_args: dict[str, Any] = {}
    if drivername.endswith("+asyncpg"):
        drivername = drivername.replace("+asyncpg", "+psycopg2")
    elif drivername.endswith("+psycopg"):
        drivername = drivername.replace("+psycopg", "+psycopg2")
    elif drivername.endswith("+aiosqlite"):
        drivername = drivername.replace("+aiosqlite", "")
    sync_url = url.set(drivername=drivername)
    if drivername.startswith("sqlite"):
        connect_args.setdefault("check_same_thread", False)
    return sync_url.render_as_string(hide_password=False), connect_args, drivername


def build_investor_store(database_url: str | None = None) -> InvestorStore:
    """Instantiate an InvestorStore using DATABASE_URL when available."""
    resolved_url = database_url or settings.database_url
    if not resolved_url:
        logger.info("investor_store.initialized", extra={"backend": "memory"})
        return InvestorStore(InMemoryInvestorRepository())
    try:
        repository = SqlInvestorRepository(
            resolved_url,
            pool_min_size=settings.db_pool_min_size,
            pool_max_size=settings.db_pool_max_size,
            auto_create_schema=make_url(resolved_url).drivername.startswith("sqlite"),
        )
        logger.info("investor_store.initialized", extra={"backend": "database"})
        return InvestorStore(repository)
    except Exception:
        logger.exception("investor_store.init_failed", extra={"backend": "database"})
        raise
