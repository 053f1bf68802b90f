import asyncio
import logging
import time
from contextlib import contextmanager
from typing import Callable, Iterator, TypeVar

from sqlalchemy import create_engine
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from inbox.config import get_settings
from inbox.core.errors import TransientInfraError
from inbox.monitoring.metrics import db_retries_total

logger = logging.getLogger(__name__)

settings = get_settings()

T = TypeVar("T")


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    # pool_pre_ping: verify connections before using them
    return {"pool_size": 10, "max_overflow": 20, "pool_recycle": 3600}


engine = create_engine(
    settings.database_url,
    echo=settings.debug,
    future=True,
    pool_pre_ping=True,
    **_engine_options(settings.database_url),
)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> sessionmaker[Session]:
    """Session factory for work that outlives the request, such as broadcast runs."""

    return SessionLocal


@contextmanager
def get_db_session(factory: sessionmaker[Session] | None = None) -> Iterator[Session]:
    """Context manager for short-lived database sessions.

    Use this in streaming handlers and background tasks instead of
    Depends(get_db) to avoid holding a connection for the whole lifetime.
    """
    db = (factory or SessionLocal)()
    try:
        yield db
    finally:
        db.close()


def _is_transient(exc: DBAPIError) -> bool:
    return isinstance(exc, OperationalError) or bool(getattr(exc, "connection_invalidated", False))


class _RetryPolicy:
    """Attempt budget and backoff shared by the sync and async retry loops."""

    def __init__(
        self,
        attempts: int | None,
        base_delay: float | None,
        max_delay: float | None,
    ) -> None:
        self.total = max(1, attempts if attempts is not None else settings.database_retry_attempts)
        self.base = settings.database_retry_base_delay if base_delay is None else base_delay
        self.ceiling = settings.database_retry_max_delay if max_delay is None else max_delay

    def backoff(self, db: Session, exc: DBAPIError, attempt: int) -> float:
        """Roll back after a failed attempt and return how long to wait before the next one."""

        db.rollback()
        if not _is_transient(exc):
            raise exc
        if attempt + 1 >= self.total:
            db_retries_total.labels("exhausted").inc()
            logger.error("Database unavailable after %s attempts", self.total)
            raise TransientInfraError("Database temporarily unavailable") from exc
        db_retries_total.labels("retried").inc()
        delay = min(self.base * (2**attempt), self.ceiling)
        logger.warning(
            "Transient database error (attempt %s/%s), retrying in %.2fs",
            attempt + 1,
            self.total,
            delay,
            exc_info=logger.isEnabledFor(logging.DEBUG),
        )
        return delay


def run_with_retry(
    db: Session,
    work: Callable[[Session], T],
    *,
    attempts: int | None = None,
    base_delay: float | None = None,
    max_delay: float | None = None,
) -> T:
    """Run ``work`` and commit, retrying when the database connection drops.

    ``work`` must be safe to run again after a rollback: everything it adds to
    the session is discarded before the next attempt. Errors that are not
    connection failures propagate unchanged. When every attempt fails the last
    error is wrapped in :class:`TransientInfraError`.

    The backoff blocks the calling thread; coroutines use
    :func:`run_with_retry_async` instead.
    """

    policy = _RetryPolicy(attempts, base_delay, max_delay)
    for attempt in range(policy.total):
        try:
            result = work(db)
            db.commit()
        except DBAPIError as exc:
            delay = policy.backoff(db, exc, attempt)
            if delay:
                time.sleep(delay)
            continue
        return result
    raise AssertionError("unreachable")  # pragma: no cover


async def run_with_retry_async(
    db: Session,
    work: Callable[[Session], T],
    *,
    attempts: int | None = None,
    base_delay: float | None = None,
    max_delay: float | None = None,
) -> T:
    """:func:`run_with_retry` for code running on the event loop.

    The wait between attempts yields to the loop, so other requests and
    event streams keep moving while the database is away.
    """

    policy = _RetryPolicy(attempts, base_delay, max_delay)
    for attempt in range(policy.total):
        try:
            result = work(db)
            db.commit()
        except DBAPIError as exc:
            delay = policy.backoff(db, exc, attempt)
            if delay:
                await asyncio.sleep(delay)
            continue
        return result
    raise AssertionError("unreachable")  # pragma: no cover
