"""
emporium.database.engine — Database Connection, Transactions & Retry
=====================================================================

Every economy mutation (ledger + stock + redemption [+ entitlement]) runs
inside one :func:`get_session` block: the block commits on success and
rolls back on *any* exception, so a failed redemption can never leave a
user debited without a matching Redemption row.

Driver errors are translated on the way out:

* serialization failures, deadlocks and SQLite "database is locked"
  become :class:`~emporium.errors.ConcurrentConflict` (retryable);
* every other ``OperationalError`` / ``InterfaceError`` becomes
  :class:`~emporium.errors.StoreUnavailable`.

:func:`retry_on_conflict` re-runs a whole transaction function a bounded
number of times when it raises ``ConcurrentConflict`` and then fails
closed by re-raising the last conflict.

Usage::

    from emporium.database.engine import create_db_engine, get_session, retry_on_conflict

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)

    with get_session(engine) as session:
        session.add(User(id=1, display_name="drew"))

    # Re-run a whole transaction on CONCURRENT_CONFLICT:
    redemption = retry_on_conflict(_redeem_once, engine, user_id, reward_id, attempts=3)
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.orm import Session
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from emporium.database.models import Base
from emporium.errors import ConcurrentConflict, StoreUnavailable

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

# PostgreSQL SQLSTATEs that mean "another transaction won, try again"
_RETRYABLE_PGCODES = frozenset({"40001", "40P01"})


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine(url: str | None = None) -> Engine:
    """Build a SQLAlchemy :class:`Engine` from ``DATABASE_URL``.

    * ``pool_size=5`` / ``max_overflow=10`` — sized for a small game backend.
    * ``pool_pre_ping=True`` — reconnect stale connections automatically.
    * ``pool_timeout=10`` — fail after 10 s if no connection is available.

    Raises
    ------
    RuntimeError
        If ``DATABASE_URL`` is not set.
    """
    url = url or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )

    engine = create_engine(
        url,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_timeout=10,
        pool_recycle=3600,
    )
    logger.info("Database engine created → %s", engine.url.host)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables defined in :mod:`emporium.database.models`.

    .. note::

        In production the schema is managed by Alembic (``alembic upgrade
        head``).  ``create_all`` is retained for dev/test environments.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------
def _is_retryable(exc: DBAPIError) -> bool:
    orig = exc.orig
    if getattr(orig, "pgcode", None) in _RETRYABLE_PGCODES:
        return True
    return "database is locked" in str(orig).lower()


def translate_db_error(exc: DBAPIError) -> Exception:
    """Map a driver-level error onto the engine's error taxonomy."""
    if _is_retryable(exc):
        return ConcurrentConflict(f"Transaction lost a race: {exc.orig}")
    if isinstance(exc, (OperationalError, InterfaceError)):
        return StoreUnavailable(f"Backing store unavailable: {exc.orig}")
    return exc


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine) -> Iterator[Session]:
    """Yield a :class:`Session` that commits on success and rolls back
    on exception.

    ``expire_on_commit=False`` keeps returned ORM rows readable after the
    block exits.

    Usage::

        with get_session(engine) as session:
            session.add(Reward(...))
            # commit happens automatically on block exit
    """
    session = Session(engine, expire_on_commit=False)
    try:
        yield session
        session.commit()
    except DBAPIError as exc:
        session.rollback()
        translated = translate_db_error(exc)
        if translated is exc:
            raise
        raise translated from exc
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Bounded retry on optimistic-concurrency conflicts
# ---------------------------------------------------------------------------
def retry_on_conflict(
    func: Callable[P, T],
    *args: P.args,
    **kwargs: P.kwargs,
) -> T:
    """Call *func* and re-run it when it raises :class:`ConcurrentConflict`.

    The attempt budget comes from the ``attempts`` keyword (popped before
    *func* is called, default 3).  Between attempts tenacity sleeps a few
    milliseconds with random exponential backoff so racing writers spread
    out.  When the budget is exhausted the last conflict propagates
    unchanged; any other exception propagates on the first attempt.
    """
    attempts = int(kwargs.pop("attempts", 3))  # type: ignore[arg-type]
    retrying = Retrying(
        stop=stop_after_attempt(attempts),
        wait=wait_random_exponential(multiplier=0.005, max=0.2),
        retry=retry_if_exception_type(ConcurrentConflict),
        before_sleep=before_sleep_log(logger, logging.INFO),
        reraise=True,
    )
    try:
        return retrying(func, *args, **kwargs)
    except ConcurrentConflict:
        logger.warning(
            "%s: conflict persisted after %d attempts, giving up",
            getattr(func, "__name__", "transaction"), attempts,
        )
        raise
