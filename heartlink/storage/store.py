"""
Relational store access.

A ``Store`` owns one SQLAlchemy engine and session factory and is handed to
every component at construction. Nothing in this package keeps a
module-level connection pool.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any

import structlog
from sqlalchemy import Engine, create_engine, event, func, text
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from heartlink.config import DatabaseConfig
from heartlink.errors import StoreUnavailableError
from heartlink.storage.tables import Base, DailyAggregateRow

logger = structlog.get_logger(__name__)

SUPPORTED_DIALECTS = ("sqlite", "postgresql", "mysql")


def _build_engine(config: DatabaseConfig) -> Engine:
    if not config.is_sqlite:
        return create_engine(
            config.url,
            echo=config.echo,
            pool_size=config.pool_size,
            max_overflow=config.max_overflow,
            pool_timeout=config.pool_timeout,
            pool_pre_ping=True,
        )

    kwargs: dict[str, Any] = {
        "echo": config.echo,
        "connect_args": {"check_same_thread": False, "timeout": config.busy_timeout},
    }
    if config.url in {"sqlite://", "sqlite:///:memory:"}:
        # one shared connection, otherwise every checkout sees an empty database
        kwargs["poolclass"] = StaticPool
    engine = create_engine(config.url, **kwargs)

    # pysqlite defers BEGIN until the first write; take the write lock up front
    # so concurrent writers queue on the busy timeout instead of deadlocking.
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


class Store:
    """Transactional relational store shared by the identity, graph and aggregation components."""

    def __init__(self, config: DatabaseConfig, engine: Engine | None = None) -> None:
        self.config = config
        self.engine = engine or _build_engine(config)
        if self.dialect_name not in SUPPORTED_DIALECTS:
            raise ValueError(f"Unsupported database dialect: {self.dialect_name}")
        self._session_factory = sessionmaker(
            bind=self.engine, autoflush=False, expire_on_commit=False
        )
        self.logger = logger.bind(component="store", dialect=self.dialect_name)

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    def create_schema(self) -> None:
        """Create any missing tables."""
        try:
            Base.metadata.create_all(bind=self.engine)
        except SQLAlchemyError as e:
            self.logger.error("schema_creation_failed", error=str(e))
            raise StoreUnavailableError() from e
        self.logger.info("schema_ready")

    @contextmanager
    def session(self) -> Iterator[Session]:
        """
        One unit of work: commit on success, roll back on any error.

        ``IntegrityError`` propagates unchanged so callers can translate a
        constraint violation into a domain error. Every other store failure
        becomes ``StoreUnavailableError`` with the original as its cause.
        """
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except IntegrityError:
            session.rollback()
            raise
        except SQLAlchemyError as e:
            session.rollback()
            self.logger.error("store_query_failed", error=str(e), exc_info=True)
            raise StoreUnavailableError() from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def ping(self) -> None:
        """Round-trip a trivial query. Raises ``StoreUnavailableError`` on failure."""
        with self.session() as session:
            session.execute(text("SELECT 1"))

    def dispose(self) -> None:
        self.engine.dispose()


def daily_aggregate_upsert(
    dialect_name: str, user_id: int, calendar_day: date, value: float, now: datetime
) -> Any:
    """
    Build a single-statement insert-or-fold for one sample into its daily row.

    On conflict with ``(user_id, calendar_day)`` the database itself computes
    ``mean = (mean + value) / 2``, ``min = least(min, value)``,
    ``max = greatest(max, value)`` and ``sample_count + 1``, so concurrent
    writers never read a stale row in application code.
    """
    table = DailyAggregateRow.__table__
    values = {
        "user_id": user_id,
        "calendar_day": calendar_day,
        "mean_value": value,
        "min_value": value,
        "max_value": value,
        "sample_count": 1,
        "updated_at": now,
    }

    if dialect_name == "mysql":
        stmt = mysql.insert(table).values(**values)
        new = stmt.inserted
        return stmt.on_duplicate_key_update(
            mean_value=(table.c.mean_value + new.mean_value) / 2,
            min_value=func.least(table.c.min_value, new.min_value),
            max_value=func.greatest(table.c.max_value, new.max_value),
            sample_count=table.c.sample_count + 1,
            updated_at=new.updated_at,
        )

    if dialect_name == "postgresql":
        stmt = postgresql.insert(table).values(**values)
        least, greatest = func.least, func.greatest
    elif dialect_name == "sqlite":
        stmt = sqlite.insert(table).values(**values)
        # multi-argument min()/max() are scalar functions in SQLite
        least, greatest = func.min, func.max
    else:
        raise ValueError(f"Unsupported database dialect: {dialect_name}")

    new = stmt.excluded
    return stmt.on_conflict_do_update(
        index_elements=[table.c.user_id, table.c.calendar_day],
        set_={
            "mean_value": (table.c.mean_value + new.mean_value) / 2,
            "min_value": least(table.c.min_value, new.min_value),
            "max_value": greatest(table.c.max_value, new.max_value),
            "sample_count": table.c.sample_count + 1,
            "updated_at": new.updated_at,
        },
    )
