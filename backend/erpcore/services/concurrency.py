# Overview: Transaction boundary and row-locking helpers shared by every mutating service.

from __future__ import annotations

from contextlib import contextmanager

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    populate_existing() refreshes rows already in the identity map so the
    caller always decides on the values read under the lock.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update().populate_existing()


@contextmanager
def unit_of_work(session=None):
    """
    One database transaction per mutating request.

    Yields the session services must receive. Commits when the block exits
    cleanly; any exception rolls back every write made inside the block and
    is re-raised unchanged. There is no retry: lock waits and deadlocks
    surface to the caller.
    """
    session = session or db.session
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
