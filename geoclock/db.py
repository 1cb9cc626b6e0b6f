from __future__ import annotations

import logging
import time
from collections.abc import Callable, Generator
from typing import Any, TypeVar

from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from geoclock.settings import get_settings

logger = logging.getLogger("geoclock.db")

T = TypeVar("T")


class Base(DeclarativeBase):
    pass


def _connect_args(database_url: str) -> dict[str, Any]:
    settings = get_settings()
    if database_url.startswith("postgresql"):
        timeout_ms = max(0, int(settings.db_statement_timeout_ms))
        return {
            "connect_timeout": max(1, int(settings.db_pool_timeout_seconds)),
            "options": f"-c statement_timeout={timeout_ms}",
        }
    return {}


def build_engine(database_url: str | None = None):  # type: ignore[no-untyped-def]
    settings = get_settings()
    url = database_url or settings.database_url
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_timeout=max(1, int(settings.db_pool_timeout_seconds)),
        connect_args=_connect_args(url),
    )


engine = build_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def retry_transient_storage(
    db: Session,
    operation: Callable[[], T],
    *,
    attempts: int = 2,
    backoff_seconds: float | None = None,
) -> T:
    """Run a unit of storage work, retrying once on transient connection errors.

    The session is rolled back between attempts so ``operation`` must redo
    every write it needs.
    """
    delay = get_settings().storage_retry_backoff_seconds if backoff_seconds is None else backoff_seconds
    attempts = max(1, attempts)
    attempt = 1
    while True:
        try:
            return operation()
        except OperationalError as exc:
            db.rollback()
            logger.warning(
                "storage_transient_error",
                extra={"attempt": attempt, "attempts": attempts, "error_type": exc.__class__.__name__},
            )
            if attempt >= attempts:
                raise
        time.sleep(max(0.0, delay))
        attempt += 1
