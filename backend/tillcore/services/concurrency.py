# Overview: Transaction helpers shared by the settlement and loyalty services.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    SELECT ... FOR UPDATE on backends that support it.

    SQLite ignores the clause; there BEGIN IMMEDIATE already holds the write
    lock for the whole transaction.
    """
    return query.with_for_update()


def configure_sqlite_transactions(engine) -> None:
    """
    Make SQLite transactions explicit: every transaction starts with BEGIN IMMEDIATE.

    The pysqlite driver otherwise defers BEGIN until the first DML statement,
    which breaks SAVEPOINT semantics (releasing the outermost savepoint
    commits) and upgrades to the write lock halfway through a settlement.
    BEGIN IMMEDIATE serializes writers at the start instead. Foreign keys are
    switched on so ON DELETE CASCADE is honoured.
    """
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.1):
    """
    Run a write transaction, retrying on lock contention.

    `func` must be re-runnable from scratch: on OperationalError (SQLite's
    "database is locked", deadlocks elsewhere) or StaleDataError the session is
    rolled back and `func` is called again, up to DB_RETRY_ATTEMPTS times with
    exponential backoff. Domain errors propagate on the first attempt.
    """
    if attempts is None:
        attempts = current_app.config.get("DB_RETRY_ATTEMPTS", 3)

    for attempt in range(1, attempts + 1):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts:
                raise
            current_app.logger.warning("Write conflict (attempt %s/%s), retrying: %s", attempt, attempts, exc)
            time.sleep(backoff_base * (2 ** (attempt - 1)))
