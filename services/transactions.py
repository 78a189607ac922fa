"""Transaction boundary for the tournament services.

Every multi-statement operation runs inside :func:`atomic`. It commits on
success, rolls back on any exception and translates store failures into the
error taxonomy in :mod:`errors`:

- unique constraint violations become ``ConflictError``
- lock wait timeouts, deadlocks and connection pool timeouts become
  ``ResourceBusyError``
- anything else raised by SQLAlchemy becomes ``InternalError``
"""

import logging
from contextlib import contextmanager

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import (
    IntegrityError,
    OperationalError,
    SQLAlchemyError,
    TimeoutError as PoolTimeoutError,
)

from errors import (
    ConflictError,
    InternalError,
    ResourceBusyError,
    TournamentError,
)
from models import db, BracketLock

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT_SECONDS = 10

# lock_not_available, deadlock_detected, serialization_failure
POSTGRES_BUSY_CODES = {'55P03', '40P01', '40001'}
# ER_LOCK_WAIT_TIMEOUT, ER_LOCK_DEADLOCK
MYSQL_BUSY_CODES = {1205, 1213}

BUSY_MESSAGES = (
    'database is locked',
    'lock wait timeout',
    'lock timeout',
    'deadlock',
    'could not obtain lock',
)

# Column names (SQLite, PostgreSQL detail) or constraint names (MySQL, PostgreSQL).
CONFLICT_MESSAGES = (
    (
        ('uq_team_member_student_sport', 'student_id'),
        'Conflict: student already assigned to another team. Please refresh and try again.',
    ),
    (
        ('uq_team_name_sport', 'team_name'),
        'Conflict: team name already exists for this sport. Please refresh and try again.',
    ),
    (('roll_number',), 'Roll number already exists'),
    (
        ('uq_match_slot', 'match_number'),
        'Conflict: bracket was changed by another request. Please refresh and try again.',
    ),
)


def lock_timeout_seconds() -> float:
    return float(current_app.config.get('LOCK_TIMEOUT_SECONDS', DEFAULT_LOCK_TIMEOUT_SECONDS))


def apply_lock_timeout(session) -> None:
    """Bound how long this transaction may wait on row locks."""
    dialect = session.get_bind().dialect.name
    seconds = lock_timeout_seconds()

    if dialect == 'postgresql':
        session.execute(text(f"SET LOCAL lock_timeout = '{int(seconds * 1000)}ms'"))
    elif dialect in ('mysql', 'mariadb'):
        session.execute(text(f'SET SESSION innodb_lock_wait_timeout = {max(1, int(seconds))}'))
    # sqlite: busy timeout is set on connect through connect_args


def is_busy_error(exc: Exception) -> bool:
    orig = getattr(exc, 'orig', None)

    sqlstate = getattr(orig, 'pgcode', None) or getattr(orig, 'sqlstate', None)
    if sqlstate in POSTGRES_BUSY_CODES:
        return True

    args = getattr(orig, 'args', ()) or ()
    if args and args[0] in MYSQL_BUSY_CODES:
        return True

    message = str(orig if orig is not None else exc).lower()
    return any(fragment in message for fragment in BUSY_MESSAGES)


def describe_integrity_error(exc: IntegrityError, fallback: str = None) -> str:
    message = str(getattr(exc, 'orig', exc))
    for fragments, description in CONFLICT_MESSAGES:
        if any(fragment in message for fragment in fragments):
            return description
    return fallback or ConflictError.default_message


@contextmanager
def atomic(operation: str, conflict_message: str = None):
    """Run the enclosed block as one transaction on the shared session."""
    session = db.session
    try:
        apply_lock_timeout(session)
        yield session
        session.commit()
    except TournamentError:
        session.rollback()
        raise
    except IntegrityError as exc:
        session.rollback()
        logger.warning('%s rejected by a uniqueness constraint: %s', operation, exc.orig)
        raise ConflictError(describe_integrity_error(exc, conflict_message)) from exc
    except PoolTimeoutError as exc:
        session.rollback()
        logger.warning('%s timed out waiting for a database connection', operation)
        raise ResourceBusyError() from exc
    except OperationalError as exc:
        session.rollback()
        if is_busy_error(exc):
            logger.warning('%s timed out waiting for a lock: %s', operation, exc.orig)
            raise ResourceBusyError() from exc
        logger.exception('%s failed', operation)
        raise InternalError(detail=str(exc)) from exc
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception('%s failed', operation)
        raise InternalError(detail=str(exc)) from exc
    except Exception:
        session.rollback()
        raise


def lock_sport(sport: str) -> BracketLock:
    """Take the per-sport row lock that serializes bracket writers.

    The row is also written so that backends without ``FOR UPDATE``
    (SQLite) take their write lock here rather than at the first insert.
    """
    lock = BracketLock.query.filter_by(sport=sport).with_for_update().first()
    if lock is None:
        lock = BracketLock(sport=sport)
        db.session.add(lock)
    lock.touch()
    db.session.flush()
    return lock
