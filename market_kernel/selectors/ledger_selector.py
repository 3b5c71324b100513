"""
Module: market_kernel.selectors.ledger_selector
Responsibility: Read models over wallets and ledger entries: wallet summary,
    recent entries and balance reconciliation.
Architecture position: Kernel > Selectors.

Reconciliation compares the stored balance with the ledger:

    balance == opening_balance + SUM(amount WHERE status = 'completed')

A mismatch means a balance was written without its ledger entry (or the
reverse) and is always a bug.
"""

from uuid import UUID

from sqlalchemy import and_, func, select

from market_kernel.domain.dtos import LedgerEntryView, ReconciliationResult, WalletSummary
from market_kernel.exceptions import UserNotFoundError
from market_kernel.models.ledger import LedgerEntry, LedgerEntryStatus, LedgerEntryType
from market_kernel.models.wallet import Wallet
from market_kernel.selectors.base import BaseSelector

RECENT_ENTRY_LIMIT = 10


def entry_view(entry: LedgerEntry) -> LedgerEntryView:
    return LedgerEntryView(
        transaction_id=entry.transaction_id,
        entry_type=entry.entry_type,
        amount=entry.amount,
        method=entry.method,
        status=entry.status,
        fee=entry.fee,
        created_at=entry.created_at,
        order_id=entry.order_id,
        counterparty_user_id=entry.counterparty_user_id,
        reference=entry.reference,
        notes=entry.notes,
    )


class LedgerSelector(BaseSelector):

    def entries_for_user(
        self, user_id: UUID, limit: int | None = None
    ) -> list[LedgerEntryView]:
        """Newest first."""
        stmt = (
            select(LedgerEntry)
            .where(LedgerEntry.user_id == user_id)
            .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return [entry_view(e) for e in self.session.execute(stmt).scalars()]

    def wallet_summary(self, user_id: UUID) -> WalletSummary:
        balance = self.session.execute(
            select(Wallet.balance).where(Wallet.user_id == user_id)
        ).scalar_one_or_none()

        rows = self.session.execute(
            select(LedgerEntry.entry_type, func.sum(LedgerEntry.amount))
            .where(
                and_(
                    LedgerEntry.user_id == user_id,
                    LedgerEntry.status == LedgerEntryStatus.COMPLETED.value,
                )
            )
            .group_by(LedgerEntry.entry_type)
        ).all()
        totals = {t.value: 0 for t in LedgerEntryType}
        for entry_type, total in rows:
            totals[entry_type] = int(total or 0)

        pending = self.session.execute(
            select(func.coalesce(func.sum(LedgerEntry.amount), 0)).where(
                and_(
                    LedgerEntry.user_id == user_id,
                    LedgerEntry.entry_type == LedgerEntryType.DEPOSIT.value,
                    LedgerEntry.status == LedgerEntryStatus.PENDING.value,
                )
            )
        ).scalar_one()

        return WalletSummary(
            user_id=user_id,
            balance=balance or 0,
            totals=totals,
            pending_deposits=int(pending),
            recent=tuple(self.entries_for_user(user_id, limit=RECENT_ENTRY_LIMIT)),
        )

    def reconcile(self, user_id: UUID) -> ReconciliationResult:
        wallet = self.session.execute(
            select(Wallet.balance, Wallet.opening_balance).where(Wallet.user_id == user_id)
        ).first()
        if wallet is None:
            raise UserNotFoundError(user_id)
        return ReconciliationResult(
            user_id=user_id,
            balance=wallet.balance,
            opening_balance=wallet.opening_balance,
            ledger_total=self._completed_total(user_id),
        )

    def reconcile_all(self) -> list[ReconciliationResult]:
        totals = (
            select(
                LedgerEntry.user_id.label("user_id"),
                func.sum(LedgerEntry.amount).label("total"),
            )
            .where(LedgerEntry.status == LedgerEntryStatus.COMPLETED.value)
            .group_by(LedgerEntry.user_id)
            .subquery()
        )
        rows = self.session.execute(
            select(
                Wallet.user_id,
                Wallet.balance,
                Wallet.opening_balance,
                func.coalesce(totals.c.total, 0),
            )
            .outerjoin(totals, totals.c.user_id == Wallet.user_id)
            .order_by(Wallet.created_at, Wallet.id)
        ).all()
        return [
            ReconciliationResult(
                user_id=user_id,
                balance=balance,
                opening_balance=opening,
                ledger_total=int(total),
            )
            for user_id, balance, opening, total in rows
        ]

    def _completed_total(self, user_id: UUID) -> int:
        total = self.session.execute(
            select(func.coalesce(func.sum(LedgerEntry.amount), 0)).where(
                and_(
                    LedgerEntry.user_id == user_id,
                    LedgerEntry.status == LedgerEntryStatus.COMPLETED.value,
                )
            )
        ).scalar_one()
        return int(total)
