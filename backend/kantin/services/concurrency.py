# Overview: Transaction helpers shared by services that must write several rows at once.

from __future__ import annotations

from contextlib import contextmanager

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE. Rows that carry a version_id
    column still fail with StaleDataError on a concurrent write there.
    """
    return query.with_for_update()


@contextmanager
def atomic():
    """
    Run a block as one database transaction.

    Commits when the block exits cleanly; rolls back and re-raises otherwise,
    so either every write in the block lands or none does. Nothing is retried.
    """
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
