"""
IdempotencyStore -- deduplication of client-retried requests.

Responsibility:
    Remembers the result of an operation submitted with a client-supplied
    idempotency key, so that a retry of the same request within the
    retention window returns the first result instead of repeating the
    effect.

Architecture position:
    Kernel > Services -- imperative shell.  Used by the order lifecycle and
    wallet operations engines for place_order and deposit.

Invariants enforced:
    - The key record is written in the same unit of work as the effect it
      guards: if the effect rolls back, so does the record.
    - Two concurrent submissions of one key cannot both commit.  The loser
      hits the unique constraint, its whole unit of work is rolled back as
      a concurrency conflict, and its retry finds the winner's result.
"""

import json
from datetime import timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import and_, delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from market_kernel.domain.clock import Clock
from market_kernel.domain.validation import require_text
from market_kernel.exceptions import ConcurrencyConflictError
from market_kernel.logging_config import get_logger
from market_kernel.models.idempotency import IdempotencyRecord
from market_kernel.services.base import BaseService

logger = get_logger("services.idempotency_store")

DEFAULT_TTL_SECONDS = 86400


class IdempotencyStore(BaseService):

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
    ):
        super().__init__(session, clock)
        self.ttl_seconds = ttl_seconds

    def _key_filter(self, user_id: UUID, operation: str, key: str):
        return and_(
            IdempotencyRecord.user_id == user_id,
            IdempotencyRecord.operation == operation,
            IdempotencyRecord.idempotency_key == key,
        )

    def lookup(self, user_id: UUID, operation: str, key: str) -> dict[str, Any] | None:
        """Stored result for an unexpired key, or None."""
        key = require_text("idempotency_key", key, max_length=100)
        response = self.session.execute(
            select(IdempotencyRecord.response).where(
                and_(
                    self._key_filter(user_id, operation, key),
                    IdempotencyRecord.expires_at > self.clock.now(),
                )
            )
        ).scalar_one_or_none()
        if response is None:
            return None
        logger.info(
            "idempotent_replay",
            extra={"user_id": str(user_id), "operation": operation, "idempotency_key": key},
        )
        return json.loads(response)

    def remember(
        self, user_id: UUID, operation: str, key: str, response: dict[str, Any]
    ) -> IdempotencyRecord:
        """
        Store the result of the first execution of ``key``.

        An expired record for the same key is replaced.

        Raises:
            ConcurrencyConflictError: another unit of work holds the key.
        """
        key = require_text("idempotency_key", key, max_length=100)
        now = self.clock.now()
        self.session.execute(
            delete(IdempotencyRecord)
            .where(
                and_(
                    self._key_filter(user_id, operation, key),
                    IdempotencyRecord.expires_at <= now,
                )
            )
            .execution_options(synchronize_session=False)
        )

        savepoint = self.session.begin_nested()
        try:
            record = IdempotencyRecord(
                user_id=user_id,
                operation=operation,
                idempotency_key=key,
                response=json.dumps(response, sort_keys=True),
                expires_at=now + timedelta(seconds=self.ttl_seconds),
                created_at=now,
                updated_at=now,
            )
            self.session.add(record)
            self.session.flush()
            savepoint.commit()
        except IntegrityError as exc:
            savepoint.rollback()
            logger.info(
                "idempotency_key_race",
                extra={"user_id": str(user_id), "operation": operation, "idempotency_key": key},
            )
            raise ConcurrencyConflictError(
                operation, f"idempotency key {key!r} claimed by a concurrent request"
            ) from exc
        return record
