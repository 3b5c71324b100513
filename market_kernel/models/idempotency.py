"""
Module: market_kernel.models.idempotency
Responsibility: Stored results of operations submitted with a client
    idempotency key.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - (user_id, operation, idempotency_key) is unique, so two concurrent
      submissions of the same key cannot both commit an effect.
    - The record is written in the same unit of work as the effect it
      guards; a rolled-back effect leaves no record behind.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from market_kernel.db.base import TrackedBase, UUIDString


class IdempotencyRecord(TrackedBase):
    __tablename__ = "idempotency_records"

    __table_args__ = (
        UniqueConstraint(
            "user_id", "operation", "idempotency_key", name="uq_idempotency_key"
        ),
    )

    user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    operation: Mapped[str] = mapped_column(String(50), nullable=False)

    idempotency_key: Mapped[str] = mapped_column(String(100), nullable=False)

    # JSON document of the original result
    response: Mapped[str] = mapped_column(Text, nullable=False)

    expires_at: Mapped[datetime] = mapped_column(nullable=False)
