"""Engine construction and the transaction scope used by every write.

``transaction()`` mirrors a classic DB-API block: acquire a connection, run
everything inside one explicit transaction, commit on success, roll back on
any failure, and always release the connection.
"""

import logging
from contextlib import contextmanager
from typing import Any, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from metacfg.core.errors import DatabaseConnectionError, RepositoryError, RollbackError

logger = logging.getLogger(__name__)


def make_engine(url: str, **kwargs: Any) -> Engine:
    """
    Create an engine.

    SQLite connections get foreign-key enforcement so cascades work, and
    SQLAlchemy emits BEGIN itself so SAVEPOINTs nest inside the write
    transaction.
    """
    engine = create_engine(url, **kwargs)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _configure_sqlite_connection)
        event.listen(engine, "begin", _begin_sqlite_transaction)
    return engine


def _configure_sqlite_connection(dbapi_connection, connection_record) -> None:
    # pysqlite must not issue its own BEGIN
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _begin_sqlite_transaction(conn: Connection) -> None:
    conn.exec_driver_sql("BEGIN")


def connect(engine: Engine) -> Connection:
    try:
        return engine.connect()
    except SQLAlchemyError as exc:
        raise DatabaseConnectionError(f"failed to acquire a database connection: {exc}") from exc


@contextmanager
def transaction(engine: Engine, message: str) -> Generator[Connection, None, None]:
    """
    Yield a connection inside one transaction.

    Any exception raised in the block rolls the whole transaction back and is
    re-raised as ``RepositoryError`` whose text is ``message`` followed by the
    original error, which is also chained as the cause.
    A failing rollback raises ``RollbackError`` that still carries the
    original error.
    """
    conn = connect(engine)
    trans = conn.begin()
    try:
        yield conn
        trans.commit()
    except Exception as exc:
        try:
            trans.rollback()
        except SQLAlchemyError as rollback_exc:
            logger.error("%s: rollback failed: %s", message, rollback_exc)
            raise RollbackError(message, original=exc) from rollback_exc
        logger.warning("%s: rolled back: %s", message, exc)
        raise RepositoryError(f"{message}: {exc}") from exc
    finally:
        conn.close()
