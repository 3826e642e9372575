"""Bounded write transactions and row locking.

PostgreSQL gets a real ``SELECT ... FOR UPDATE`` with ``lock_timeout`` set
for the current transaction only. SQLite ignores ``FOR UPDATE``, so the
write lock is taken up front with ``BEGIN IMMEDIATE`` and the wait is
bounded by the driver's busy timeout.
"""

from contextlib import contextmanager

from sqlalchemy import select
from sqlalchemy.exc import OperationalError

_LOCK_ERROR_MARKERS = (
    "database is locked",
    "lock timeout",
    "canceling statement due to lock timeout",
    "could not obtain lock",
)


def _dialect_name(session):
    return session.get_bind().dialect.name


def is_lock_error(exc):
    """True when *exc* means a lock could not be acquired in time."""
    if not isinstance(exc, OperationalError):
        return False
    message = str(exc.orig if exc.orig is not None else exc).lower()
    return any(marker in message for marker in _LOCK_ERROR_MARKERS)


def _begin_write(session, lock_timeout_ms):
    dialect = _dialect_name(session)
    if dialect == "sqlite":
        connection = session.connection()
        # Earlier flushed writes already hold the database write lock.
        if not connection.connection.dbapi_connection.in_transaction:
            connection.exec_driver_sql("BEGIN IMMEDIATE")
    elif dialect == "postgresql":
        session.connection().exec_driver_sql(f"SET LOCAL lock_timeout = {int(lock_timeout_ms)}")


@contextmanager
def write_transaction(session, lock_timeout_ms=5000):
    """Run the block as one transaction: commit on success, roll back on any exit path."""
    try:
        _begin_write(session, lock_timeout_ms)
        yield session
        session.commit()
    except BaseException:
        session.rollback()
        raise


def lock_row(session, model, ident):
    """Fetch *model* by primary key holding a row write lock until the transaction ends.

    ``populate_existing`` refreshes any stale copy already in the identity map,
    so preconditions are always checked against the committed row.
    """
    stmt = (
        select(model)
        .where(model.id == ident)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return session.execute(stmt).scalar_one_or_none()
