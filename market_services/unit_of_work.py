"""
market_services.unit_of_work -- atomic units of work with bounded retry.

Responsibility:
    ``UnitOfWork`` owns one session and one database transaction.  Every
    engine operation runs inside exactly one: all reads that feed a write
    decision and all resulting writes commit together or not at all.

    ``TransactionRunner`` executes a unit of work and retries it, a
    bounded number of times with exponential backoff, when it loses a
    concurrency race.

Architecture position:
    Services -- the single place where ``session.commit()`` and
    ``session.rollback()`` are called.  Kernel services only flush.

Invariants enforced:
    - All-or-nothing: any exception inside the unit of work rolls the
      whole transaction back; business-rule errors therefore never leave
      partial effects and never need compensation.
    - Notifications are published only after a successful commit.
    - Retry is bounded: ``ConcurrencyConflictError`` is retried at most
      ``max_attempts - 1`` times.  ``PersistenceFailureError`` is never
      retried because the outcome of the failed attempt is unknown.

Failure modes:
    - ConcurrencyConflictError (retries_exhausted=True) when every attempt
      lost a race.
    - PersistenceFailureError for any other storage error, logged at
      ERROR with the traceback.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any, TypeVar

from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from market_config.schema import RetryConfig
from market_kernel.exceptions import (
    ConcurrencyConflictError,
    PersistenceFailureError,
    StorageError,
)
from market_kernel.logging_config import LogContext, get_logger
from market_services.notifications import NotificationEmitter, NotificationEvent

logger = get_logger("services.unit_of_work")

T = TypeVar("T")

# serialization_failure, deadlock_detected, lock_not_available
_CONFLICT_SQLSTATES = frozenset({"40001", "40P01", "55P03"})

_CONFLICT_MESSAGES = (
    "database is locked",
    "deadlock detected",
    "could not serialize access",
    "lock timeout",
)


def translate_storage_error(exc: SQLAlchemyError, operation: str) -> StorageError:
    """Map a SQLAlchemy error onto ConcurrencyConflictError or PersistenceFailureError."""
    orig = getattr(exc, "orig", None) if isinstance(exc, DBAPIError) else None
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    detail = str(orig if orig is not None else exc).strip().splitlines()[0]

    if sqlstate in _CONFLICT_SQLSTATES or any(
        marker in detail.lower() for marker in _CONFLICT_MESSAGES
    ):
        return ConcurrencyConflictError(operation, detail)
    return PersistenceFailureError(operation, detail)


class UnitOfWork:
    """
    One session, one transaction.

    Usage:
        with UnitOfWork(session_factory, emitter, "wallet.deposit") as uow:
            LedgerStore(uow.session, clock).credit(...)
            uow.add_event(NotificationEvent(...))
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        emitter: NotificationEmitter | None = None,
        operation: str = "unit_of_work",
    ):
        self._session_factory = session_factory
        self._emitter = emitter
        self.operation = operation
        self.session: Session | None = None
        self.events: list[NotificationEvent] = []

    def add_event(self, event: NotificationEvent) -> None:
        self.events.append(event)

    def __enter__(self) -> UnitOfWork:
        self.session = self._session_factory()
        self.events = []
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> bool:
        session = self.session
        try:
            if exc_value is not None:
                session.rollback()
                logger.debug(
                    "unit_of_work_rolled_back",
                    extra={"operation": self.operation, "error": exc_type.__name__},
                )
                if isinstance(exc_value, SQLAlchemyError):
                    self._raise_translated(exc_value)
                return False

            try:
                session.commit()
            except SQLAlchemyError as commit_error:
                session.rollback()
                self._raise_translated(commit_error)
        finally:
            session.close()
            self.session = None

        if self._emitter is not None and self.events:
            self._emitter.publish(self.events)
        return False

    def _raise_translated(self, exc: SQLAlchemyError) -> None:
        error = translate_storage_error(exc, self.operation)
        if isinstance(error, PersistenceFailureError):
            logger.error(
                "persistence_failure",
                extra={"operation": self.operation, "detail": error.detail},
                exc_info=exc,
            )
        else:
            logger.warning(
                "unit_of_work_conflict",
                extra={"operation": self.operation, "detail": error.detail},
            )
        raise error from exc


class TransactionRunner:
    """
    Runs callables inside a UnitOfWork with bounded retry.

    Contract:
        ``run(operation, fn, **log_fields)`` calls ``fn(uow)`` in a fresh unit
        of work, with ``log_fields`` bound on the LogContext.
        On ConcurrencyConflictError the whole unit of work is discarded
        and ``fn`` is called again in a new one, up to
        ``retry.max_attempts`` attempts in total.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        emitter: NotificationEmitter | None = None,
        retry: RetryConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session_factory = session_factory
        self.emitter = emitter
        self.retry = retry or RetryConfig()
        self._sleep = sleep

    def run(self, operation: str, fn: Callable[[UnitOfWork], T], **log_fields: Any) -> T:
        backoff = self.retry.backoff_seconds
        with LogContext.bind(operation=operation, **log_fields):
            for attempt in range(1, self.retry.max_attempts + 1):
                try:
                    with UnitOfWork(self.session_factory, self.emitter, operation) as uow:
                        return fn(uow)
                except ConcurrencyConflictError as exc:
                    if attempt >= self.retry.max_attempts:
                        logger.error(
                            "unit_of_work_retries_exhausted",
                            extra={"operation": operation, "attempts": attempt},
                        )
                        raise ConcurrencyConflictError(
                            operation, exc.detail, retries_exhausted=True
                        ) from exc
                    logger.warning(
                        "unit_of_work_retry",
                        extra={
                            "operation": operation,
                            "attempt": attempt,
                            "backoff_seconds": backoff,
                        },
                    )
                    self._sleep(backoff)
                    backoff *= self.retry.backoff_multiplier
        raise AssertionError("unreachable: retry loop exited without result")
