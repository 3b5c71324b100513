"""
Module: market_kernel.models.wallet
Responsibility: ORM persistence for per-user wallet balances.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - balance >= 0 (ck_wallet_balance_non_negative).  The conditional debit in
      LedgerStore is the primary guard; the CHECK constraint is the backstop.
    - One wallet per user (uq_wallet_user).
    - opening_balance is written once at creation and never changes.  It is
      the reference point for ledger reconciliation:
          balance == opening_balance + SUM(completed ledger amounts)

Failure modes:
    - IntegrityError on a second wallet for the same user (handled by
      LedgerStore.ensure_wallet via savepoint).
"""

from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from market_kernel.db.base import TrackedBase, UUIDString


class Wallet(TrackedBase):
    """
    Stored balance of one user, in minor currency units.

    Only LedgerStore writes ``balance``, and always together with a ledger
    entry in the same unit of work.
    """

    __tablename__ = "wallets"

    __table_args__ = (
        UniqueConstraint("user_id", name="uq_wallet_user"),
        CheckConstraint("balance >= 0", name="ck_wallet_balance_non_negative"),
        CheckConstraint("opening_balance >= 0", name="ck_wallet_opening_non_negative"),
    )

    user_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("users.id"),
        nullable=False,
    )

    balance: Mapped[int] = mapped_column(nullable=False, default=0)

    opening_balance: Mapped[int] = mapped_column(nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<Wallet user={self.user_id} balance={self.balance}>"
