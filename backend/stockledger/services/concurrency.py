# Overview: Transaction boundary and row-locking helpers shared by the inventory services.

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db

logger = logging.getLogger(__name__)


class TransactionFailure(Exception):
    """
    500-level: unexpected database failure inside an atomic operation.

    Raised only after the session has been rolled back, so stock and ledger
    are never left half-applied.
    """
    def __init__(self, operation: str, cause: Exception):
        super().__init__(f"{operation} failed: {cause}")
        self.operation = operation
        self.cause = cause


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    begin_write_transaction() covers SQLite.
    """
    return query.with_for_update()


def begin_write_transaction() -> None:
    """
    Start the DB transaction in write mode.

    SQLite has no row locks; BEGIN IMMEDIATE takes the database write lock up
    front so concurrent writers queue here and re-read stock once they get in.
    Other backends rely on lock_for_update().
    """
    connection = db.session.connection()
    if connection.dialect.name != "sqlite":
        return
    dbapi_connection = connection.connection.dbapi_connection
    if not dbapi_connection.in_transaction:
        connection.exec_driver_sql("BEGIN IMMEDIATE")


def run_in_transaction(func, *, operation: str):
    """
    Execute func() as one atomic unit: commit on success, roll back on any error.

    Domain errors (validation, not found, insufficient stock, conflicts) are
    re-raised unchanged after rollback. Database errors (lock timeouts,
    constraint violations, optimistic-lock conflicts) become TransactionFailure.
    No retries: retry policy belongs to the caller.
    """
    try:
        begin_write_transaction()
        result = func()
        db.session.commit()
        return result
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("%s rolled back after database error: %s", operation, exc)
        raise TransactionFailure(operation, exc) from exc
    except Exception:
        db.session.rollback()
        raise
