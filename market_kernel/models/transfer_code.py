"""
Module: market_kernel.models.transfer_code
Responsibility: Single-use codes a user hands out to receive a wallet transfer.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - code is unique.
    - used flips from False to True exactly once, via a conditional update
      that also checks expires_at.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from market_kernel.db.base import TrackedBase, UUIDString


class TransferCode(TrackedBase):
    __tablename__ = "transfer_codes"

    __table_args__ = (UniqueConstraint("code", name="uq_transfer_code"),)

    user_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("users.id"),
        nullable=False,
    )

    code: Mapped[str] = mapped_column(String(16), nullable=False)

    expires_at: Mapped[datetime] = mapped_column(nullable=False)

    used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    used_at: Mapped[datetime | None] = mapped_column(nullable=True)

    used_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
