# storefront/database.py
from contextlib import contextmanager
from typing import Any, Dict, Iterator

import structlog
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from .config import Settings
from .errors import TransientStoreFailure
from .models import Base

logger = structlog.get_logger(__name__)

# This file holds the engine, the session factory and the one transaction
# scope every service runs its work inside.

# PostgreSQL: serialization failure / deadlock detected
PG_RETRY_ERRCODES = {"40001", "40P01"}
# SQLite busy/locked, PostgreSQL lock and statement timeouts
TRANSIENT_MESSAGES = ("database is locked", "database is busy", "lock timeout", "statement timeout")


def _pgcode_from(exc: DBAPIError):
    return getattr(exc.orig, "pgcode", None)


def is_transient(exc: DBAPIError) -> bool:
    if exc.connection_invalidated:
        return True
    if _pgcode_from(exc) in PG_RETRY_ERRCODES:
        return True
    msg = str(exc).lower()
    if isinstance(exc, OperationalError) and any(k in msg for k in TRANSIENT_MESSAGES):
        return True
    return any(k in msg for k in ("deadlock detected", "could not serialize access"))


def _connect_args(url: str, timeout: float) -> Dict[str, Any]:
    backend = make_url(url).get_backend_name()
    if backend == "sqlite":
        return {"timeout": timeout, "check_same_thread": False}
    if backend == "postgresql":
        return {"options": f"-c statement_timeout={int(timeout * 1000)}"}
    return {}


def _install_sqlite_locking(engine: Engine) -> None:
    # pysqlite's own BEGIN handling is turned off so that every transaction
    # takes the write lock up front; concurrent writers queue behind it
    # (bounded by the connect timeout) the same way row locks would.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class Database:
    def __init__(self, settings: Settings):
        self.url = settings.database_url
        self.engine = create_engine(
            self.url,
            echo=settings.db_echo,
            connect_args=_connect_args(self.url, settings.db_timeout),
        )
        if self.engine.dialect.name == "sqlite":
            _install_sqlite_locking(self.engine)
        self.session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    @property
    def supports_row_locks(self) -> bool:
        return self.engine.dialect.name != "sqlite"

    def create_all(self) -> None:
        Base.metadata.create_all(self.engine)

    def drop_all(self) -> None:
        Base.metadata.drop_all(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """All-or-nothing unit of work.

        Commits when the block exits cleanly and rolls back on any exception,
        cancellation included. Lock timeouts, deadlocks and dropped connections
        surface as TransientStoreFailure; the caller may retry the whole call.
        """
        session = self.session_factory()
        try:
            with session.begin():
                yield session
        except PoolTimeoutError as exc:
            logger.error("Connection pool exhausted", error=str(exc))
            raise TransientStoreFailure() from exc
        except DBAPIError as exc:
            if is_transient(exc):
                logger.error("Transaction aborted", error=str(exc.orig))
                raise TransientStoreFailure() from exc
            raise
        finally:
            session.close()
