"""
Module: market_kernel.models.ledger
Responsibility: ORM persistence for ledger entries -- one row per money
    movement against a wallet.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - amount is signed: credits (deposit, refund, incoming transfer) are
      positive, debits (withdrawal, purchase, outgoing transfer) negative.
    - Only completed entries count towards the wallet balance.  For every
      wallet:  balance == opening_balance + SUM(amount WHERE completed).
    - transaction_id is unique.
    - A completed entry is never modified.  The only legal status changes
      are pending -> completed and pending -> failed/cancelled.
"""

from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from market_kernel.db.base import TrackedBase, UUIDString


class LedgerEntryType(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    PURCHASE = "purchase"
    REFUND = "refund"


class LedgerEntryStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class LedgerMethod(str, Enum):
    """Channel through which money moved."""

    WALLET = "wallet"
    MANUAL = "manual"
    BANK = "bank"
    TRANSFER = "transfer"
    TRANSFER_CODE = "transfer_code"


class LedgerEntry(TrackedBase):
    """A single financial movement against one user's wallet."""

    __tablename__ = "ledger_entries"

    __table_args__ = (
        UniqueConstraint("transaction_id", name="uq_ledger_transaction_id"),
        Index("idx_ledger_user_status", "user_id", "status"),
        Index("idx_ledger_user_type_created", "user_id", "entry_type", "created_at"),
        Index("idx_ledger_order", "order_id"),
    )

    transaction_id: Mapped[str] = mapped_column(String(40), nullable=False)

    user_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("users.id"),
        nullable=False,
    )

    amount: Mapped[int] = mapped_column(nullable=False)

    entry_type: Mapped[LedgerEntryType] = mapped_column(String(20), nullable=False)

    method: Mapped[str] = mapped_column(String(30), nullable=False)

    status: Mapped[LedgerEntryStatus] = mapped_column(String(20), nullable=False)

    # Informational fee charged by the payout or transfer channel
    fee: Mapped[int] = mapped_column(nullable=False, default=0)

    order_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    counterparty_user_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    notes: Mapped[str | None] = mapped_column(String(500), nullable=True)

    @property
    def is_credit(self) -> bool:
        return self.amount > 0

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry {self.transaction_id} {self.entry_type} "
            f"{self.amount} ({self.status})>"
        )
