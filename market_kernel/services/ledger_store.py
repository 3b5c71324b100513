"""
LedgerStore -- wallet balances and the ledger of money movements.

Responsibility:
    The only code path that writes ``wallets.balance`` or inserts ledger
    entries.  Every balance change is paired with a completed ledger entry
    written in the same unit of work, so

        balance == opening_balance + SUM(amount of completed entries)

    holds for every wallet at every commit.

Architecture position:
    Kernel > Services -- imperative shell.  Called by the order lifecycle
    engine (purchase, refund) and the wallet operations engine (deposit,
    withdrawal, transfer).

Invariants enforced:
    - Non-negative balance: debits are a single conditional UPDATE
      ``SET balance = balance - :n WHERE balance >= :n``; zero affected
      rows means the wallet cannot cover the debit.  The database CHECK
      constraint is the backstop.
    - Exactly-once credit: a pending deposit is completed with a
      conditional UPDATE on ``status = 'pending'``; the wallet is only
      credited when that UPDATE affected exactly one row.
    - Monotonic ``updated_at`` on wallets.

Failure modes:
    - InsufficientBalanceError when a debit cannot be covered.
    - LedgerEntryNotFoundError for an unknown transaction id.
    - InvalidTransitionError when a pending entry was already decided the
      other way (e.g. confirming a rejected deposit).
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import and_, case, func, select, update
from sqlalchemy.exc import IntegrityError

from market_kernel.domain.codes import generate_transaction_id
from market_kernel.exceptions import (
    InsufficientBalanceError,
    InvalidTransitionError,
    LedgerEntryNotFoundError,
)
from market_kernel.invariants import MarketInvariant
from market_kernel.logging_config import get_logger
from market_kernel.models.ledger import (
    LedgerEntry,
    LedgerEntryStatus,
    LedgerEntryType,
    LedgerMethod,
)
from market_kernel.models.wallet import Wallet
from market_kernel.services.base import BaseService

logger = get_logger("services.ledger_store")


class LedgerStore(BaseService):
    """
    Wallet balance mutations and ledger entry bookkeeping.

    Amounts passed in are always positive; the sign stored on the ledger
    entry is derived from the direction of the movement.
    """

    # ------------------------------------------------------------------
    # Wallets
    # ------------------------------------------------------------------

    def ensure_wallet(self, user_id: UUID, opening_balance: int = 0) -> Wallet:
        """
        Return the user's wallet, creating it if it does not exist yet.

        Concurrent creation is resolved with a savepoint: the loser of the
        unique-constraint race rolls back only its insert and re-reads the
        winner's row.
        """
        wallet = self.session.execute(
            select(Wallet).where(Wallet.user_id == user_id)
        ).scalar_one_or_none()
        if wallet is not None:
            return wallet

        now = self.clock.now()
        savepoint = self.session.begin_nested()
        try:
            wallet = Wallet(
                user_id=user_id,
                balance=opening_balance,
                opening_balance=opening_balance,
                created_at=now,
                updated_at=now,
            )
            self.session.add(wallet)
            self.session.flush()
            savepoint.commit()
            logger.info(
                "wallet_opened",
                extra={"user_id": str(user_id), "opening_balance": opening_balance},
            )
            return wallet
        except IntegrityError:
            logger.debug("wallet_create_race_retry", extra={"user_id": str(user_id)})
            savepoint.rollback()
            return self.session.execute(
                select(Wallet)
                .where(Wallet.user_id == user_id)
                .execution_options(populate_existing=True)
            ).scalar_one()

    def lock_wallet(self, user_id: UUID) -> Wallet:
        """
        Lock the wallet row for the rest of the unit of work.

        Used where a decision spans more than one statement, such as the
        rolling withdrawal cap.  On SQLite the writer lock taken by
        BEGIN IMMEDIATE already serializes the transaction.
        """
        self.ensure_wallet(user_id)
        return self.session.execute(
            select(Wallet)
            .where(Wallet.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one()

    def balance_of(self, user_id: UUID) -> int:
        """Current stored balance; 0 for a user without a wallet."""
        balance = self.session.execute(
            select(Wallet.balance).where(Wallet.user_id == user_id)
        ).scalar_one_or_none()
        return balance or 0

    def _touch(self, now: datetime):
        return case((Wallet.updated_at < now, now), else_=Wallet.updated_at)

    def _credit_balance(self, user_id: UUID, amount: int) -> int:
        self.ensure_wallet(user_id)
        now = self.clock.now()
        self.session.execute(
            update(Wallet)
            .where(Wallet.user_id == user_id)
            .values(balance=Wallet.balance + amount, updated_at=self._touch(now))
            .execution_options(synchronize_session=False)
        )
        return self.balance_of(user_id)

    def _debit_balance(self, user_id: UUID, amount: int) -> int:
        now = self.clock.now()
        result = self.session.execute(
            update(Wallet)
            .where(and_(Wallet.user_id == user_id, Wallet.balance >= amount))
            .values(balance=Wallet.balance - amount, updated_at=self._touch(now))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            available = self.balance_of(user_id)
            logger.info(
                "wallet_debit_rejected",
                extra={
                    "user_id": str(user_id),
                    "required": amount,
                    "available": available,
                    "invariant": MarketInvariant.NON_NEGATIVE_BALANCE.value,
                },
            )
            raise InsufficientBalanceError(
                user_id=user_id, required=amount, available=available
            )
        return self.balance_of(user_id)

    # ------------------------------------------------------------------
    # Ledger entries
    # ------------------------------------------------------------------

    def _add_entry(
        self,
        user_id: UUID,
        amount: int,
        entry_type: LedgerEntryType,
        method: str,
        status: LedgerEntryStatus,
        fee: int = 0,
        order_id: UUID | None = None,
        counterparty_user_id: UUID | None = None,
        reference: str | None = None,
        notes: str | None = None,
    ) -> LedgerEntry:
        now = self.clock.now()
        entry = LedgerEntry(
            transaction_id=generate_transaction_id(now),
            user_id=user_id,
            amount=amount,
            entry_type=entry_type.value,
            method=method,
            status=status.value,
            fee=fee,
            order_id=order_id,
            counterparty_user_id=counterparty_user_id,
            reference=reference,
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        self.session.add(entry)
        self.session.flush()
        return entry

    def credit(
        self,
        user_id: UUID,
        amount: int,
        entry_type: LedgerEntryType,
        method: str,
        **entry_fields,
    ) -> tuple[LedgerEntry, int]:
        """
        Credit ``amount`` and record a completed entry of ``+amount``.

        Returns the entry and the new balance.
        """
        new_balance = self._credit_balance(user_id, amount)
        entry = self._add_entry(
            user_id,
            amount,
            entry_type,
            method,
            LedgerEntryStatus.COMPLETED,
            **entry_fields,
        )
        logger.info(
            "wallet_credited",
            extra={
                "user_id": str(user_id),
                "transaction_id": entry.transaction_id,
                "entry_type": entry.entry_type,
                "amount": amount,
                "new_balance": new_balance,
            },
        )
        return entry, new_balance

    def debit(
        self,
        user_id: UUID,
        amount: int,
        entry_type: LedgerEntryType,
        method: str,
        **entry_fields,
    ) -> tuple[LedgerEntry, int]:
        """
        Debit ``amount`` and record a completed entry of ``-amount``.

        Raises:
            InsufficientBalanceError: balance < amount.  Nothing was written.
        """
        new_balance = self._debit_balance(user_id, amount)
        entry = self._add_entry(
            user_id,
            -amount,
            entry_type,
            method,
            LedgerEntryStatus.COMPLETED,
            **entry_fields,
        )
        logger.info(
            "wallet_debited",
            extra={
                "user_id": str(user_id),
                "transaction_id": entry.transaction_id,
                "entry_type": entry.entry_type,
                "amount": amount,
                "new_balance": new_balance,
            },
        )
        return entry, new_balance

    def record_pending_deposit(
        self,
        user_id: UUID,
        amount: int,
        method: str,
        reference: str | None = None,
        notes: str | None = None,
    ) -> LedgerEntry:
        """Record a deposit awaiting confirmation.  The balance is untouched."""
        self.ensure_wallet(user_id)
        entry = self._add_entry(
            user_id,
            amount,
            LedgerEntryType.DEPOSIT,
            method,
            LedgerEntryStatus.PENDING,
            reference=reference,
            notes=notes,
        )
        logger.info(
            "deposit_pending",
            extra={
                "user_id": str(user_id),
                "transaction_id": entry.transaction_id,
                "amount": amount,
                "method": method,
            },
        )
        return entry

    def get_entry(self, transaction_id: str) -> LedgerEntry:
        entry = self.session.execute(
            select(LedgerEntry)
            .where(LedgerEntry.transaction_id == transaction_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if entry is None:
            raise LedgerEntryNotFoundError(transaction_id)
        return entry

    def _decide_pending(
        self, transaction_id: str, target: LedgerEntryStatus
    ) -> tuple[LedgerEntry, bool]:
        now = self.clock.now()
        result = self.session.execute(
            update(LedgerEntry)
            .where(
                and_(
                    LedgerEntry.transaction_id == transaction_id,
                    LedgerEntry.entry_type == LedgerEntryType.DEPOSIT.value,
                    LedgerEntry.status == LedgerEntryStatus.PENDING.value,
                )
            )
            .values(status=target.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        entry = self.get_entry(transaction_id)
        if result.rowcount == 1:
            return entry, True
        if entry.status == target.value:
            # Retried decision; the first one already took effect
            return entry, False
        raise InvalidTransitionError(
            entity_id=transaction_id, current=entry.status, target=target.value
        )

    def complete_pending_deposit(self, transaction_id: str) -> tuple[LedgerEntry, bool, int]:
        """
        Move a pending deposit to completed and credit the wallet once.

        Returns ``(entry, credited, balance)``.  ``credited`` is False when
        the deposit had already been completed by an earlier call, in which
        case the wallet is left untouched.
        """
        entry, changed = self._decide_pending(transaction_id, LedgerEntryStatus.COMPLETED)
        if not changed:
            logger.info(
                "deposit_already_completed",
                extra={
                    "transaction_id": transaction_id,
                    "invariant": MarketInvariant.EXACTLY_ONCE_CREDIT.value,
                },
            )
            return entry, False, self.balance_of(entry.user_id)

        new_balance = self._credit_balance(entry.user_id, entry.amount)
        logger.info(
            "deposit_confirmed",
            extra={
                "user_id": str(entry.user_id),
                "transaction_id": transaction_id,
                "amount": entry.amount,
                "new_balance": new_balance,
            },
        )
        return entry, True, new_balance

    def fail_pending_deposit(self, transaction_id: str) -> tuple[LedgerEntry, bool]:
        """Move a pending deposit to failed.  No money moves."""
        entry, changed = self._decide_pending(transaction_id, LedgerEntryStatus.FAILED)
        logger.info(
            "deposit_rejected" if changed else "deposit_already_rejected",
            extra={"user_id": str(entry.user_id), "transaction_id": transaction_id},
        )
        return entry, changed

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    def withdrawn_since(self, user_id: UUID, since: datetime) -> int:
        """
        Sum of completed payouts since ``since``, as a positive number.

        Outgoing transfers are withdrawal-type entries too but do not count
        towards the payout cap.
        """
        total = self.session.execute(
            select(func.coalesce(func.sum(LedgerEntry.amount), 0)).where(
                and_(
                    LedgerEntry.user_id == user_id,
                    LedgerEntry.entry_type == LedgerEntryType.WITHDRAWAL.value,
                    LedgerEntry.status == LedgerEntryStatus.COMPLETED.value,
                    LedgerEntry.method.not_in(
                        [LedgerMethod.TRANSFER.value, LedgerMethod.TRANSFER_CODE.value]
                    ),
                    LedgerEntry.created_at >= since,
                )
            )
        ).scalar_one()
        return -int(total)
