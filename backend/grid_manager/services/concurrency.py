# Overview: Service-layer helpers for transaction boundaries and row locking.

from __future__ import annotations

import time

from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking and refresh already-loaded instances.

    SQLite ignores SELECT ... FOR UPDATE; begin_write() covers it there.
    populate_existing() makes sure a status read under the lock is the
    committed value, not a stale identity-map copy.
    """
    return query.with_for_update().populate_existing()


def begin_write() -> None:
    """
    Take the database write lock up front on SQLite.

    Other backends serialize through the row locks taken by lock_for_update.
    """
    if db.engine.dialect.name != "sqlite":
        return
    dbapi_conn = db.session.connection().connection.dbapi_connection
    if not dbapi_conn.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on lock contention.

    Only for idempotent creations (document numbering); status transitions
    are never retried.
    """
    for attempt in range(attempts):
        try:
            return func()
        except OperationalError:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
