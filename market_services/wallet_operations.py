"""
market_services.wallet_operations -- Wallet Operations Engine.

Responsibility:
    Deposits (instant and manually confirmed), withdrawals with limits and
    a rolling daily cap, peer transfers (direct and by single-use transfer
    code), the wallet summary and ledger reconciliation.  Each public
    method is one unit of work run by the TransactionRunner.

Architecture position:
    Services -- stateless orchestration over LedgerStore.  Independent of
    orders except for the shared wallet balances.

Fee rules:
    - Withdrawal: fee = max(fee_minimum, amount * fee_rate).  The wallet is
      debited exactly ``amount``; the fee is recorded on the ledger entry
      for the payout channel, which pays out ``amount - fee``.
    - Transfer: fee = max(fee_minimum, amount * fee_rate), added on top.
      The sender is debited ``amount + fee``, the recipient credited
      ``amount``; the fee is retained by the platform.

Invariants enforced:
    - Both legs of a transfer, with their ledger entries, commit together.
      Both wallets are locked in user-id order before either is touched.
    - The daily cap is checked under the wallet lock, so two concurrent
      withdrawals cannot both fit under the same remaining allowance.
    - A pending deposit is credited at most once, however often its
      confirmation is retried.
"""

from __future__ import annotations

from datetime import timedelta
from uuid import UUID

from sqlalchemy import and_, select, update

from market_config.schema import IdempotencyConfig, WalletConfig
from market_kernel.domain.authorization import Action, authorize
from market_kernel.domain.caller import CallerContext
from market_kernel.domain.clock import Clock, SystemClock
from market_kernel.domain.codes import generate_transfer_code
from market_kernel.domain.dtos import (
    DepositDecision,
    DepositResult,
    ReconciliationResult,
    TransferCodeView,
    TransferResult,
    WalletSummary,
    WithdrawalResult,
)
from market_kernel.domain.fees import proportional_fee
from market_kernel.domain.validation import (
    require_choice,
    require_positive_int,
    require_text,
    require_uuid,
)
from market_kernel.exceptions import (
    SelfTransferNotAllowedError,
    TransferCodeInvalidError,
    ValidationError,
    WithdrawalLimitError,
)
from market_kernel.invariants import MarketInvariant
from market_kernel.logging_config import get_logger
from market_kernel.models.ledger import LedgerEntryStatus, LedgerEntryType, LedgerMethod
from market_kernel.models.transfer_code import TransferCode
from market_kernel.selectors.ledger_selector import LedgerSelector
from market_kernel.services.account_service import AccountService
from market_kernel.services.idempotency_store import IdempotencyStore
from market_kernel.services.ledger_store import LedgerStore
from market_services.notifications import NotificationEvent
from market_services.unit_of_work import TransactionRunner, UnitOfWork

logger = get_logger("services.wallet_operations")

DEPOSIT_OPERATION = "wallet.deposit"

DAILY_WINDOW = timedelta(hours=24)


def mask_account_number(account_number: str) -> str:
    """Keep the last four characters."""
    tail = account_number[-4:]
    return "*" * max(len(account_number) - 4, 0) + tail


class WalletOperationsEngine:
    """Deposits, withdrawals, transfers and ledger reads for one wallet per user."""

    def __init__(
        self,
        runner: TransactionRunner,
        config: WalletConfig | None = None,
        idempotency: IdempotencyConfig | None = None,
        clock: Clock | None = None,
    ):
        self._runner = runner
        self.config = config or WalletConfig()
        self.idempotency = idempotency or IdempotencyConfig()
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Deposits
    # ------------------------------------------------------------------

    def deposit(
        self,
        ctx: CallerContext,
        amount: int,
        method: str,
        reference: str | None = None,
        notes: str | None = None,
        idempotency_key: str | None = None,
    ) -> DepositResult:
        """
        Record a deposit.  Instant methods credit the wallet immediately;
        manual methods stay pending until an admin confirms them.

        Raises:
            ValidationError: amount outside the deposit limits, unknown method,
                or an overlong reference or notes.
        """
        authorize(ctx, Action.DEPOSIT)
        limits = self.config.deposit
        amount = require_positive_int("amount", amount)
        if not limits.minimum <= amount <= limits.maximum:
            raise ValidationError(
                "amount", f"deposit must be between {limits.minimum} and {limits.maximum}"
            )
        method = require_choice("method", method, limits.methods)
        if reference is not None:
            reference = require_text("reference", reference, max_length=100)
        if notes is not None:
            notes = require_text("notes", notes, max_length=500)

        def work(uow: UnitOfWork) -> DepositResult:
            store = IdempotencyStore(uow.session, self._clock, self.idempotency.ttl_seconds)
            if idempotency_key is not None:
                stored = store.lookup(ctx.user_id, DEPOSIT_OPERATION, idempotency_key)
                if stored is not None:
                    return DepositResult.from_payload(stored)

            AccountService(uow.session, self._clock).require_active_user(ctx.user_id)
            ledger = LedgerStore(uow.session, self._clock)

            if method in limits.instant_methods:
                entry, new_balance = ledger.credit(
                    ctx.user_id,
                    amount,
                    LedgerEntryType.DEPOSIT,
                    method,
                    reference=reference,
                    notes=notes,
                )
                result = DepositResult(
                    transaction_id=entry.transaction_id,
                    amount=amount,
                    status=LedgerEntryStatus.COMPLETED.value,
                    new_balance=new_balance,
                )
                uow.add_event(
                    NotificationEvent(
                        type="deposit_completed",
                        user_id=ctx.user_id,
                        title="Deposit received",
                        message=f"{amount} was added to your wallet",
                        kind="wallet",
                        amount=amount,
                    )
                )
            else:
                entry = ledger.record_pending_deposit(
                    ctx.user_id, amount, method, reference=reference, notes=notes
                )
                result = DepositResult(
                    transaction_id=entry.transaction_id,
                    amount=amount,
                    status=LedgerEntryStatus.PENDING.value,
                    new_balance=None,
                )
                uow.add_event(
                    NotificationEvent(
                        type="deposit_pending",
                        user_id=ctx.user_id,
                        title="Deposit pending",
                        message=f"Your deposit of {amount} is awaiting confirmation",
                        kind="wallet",
                        amount=amount,
                    )
                )

            if idempotency_key is not None:
                store.remember(ctx.user_id, DEPOSIT_OPERATION, idempotency_key, result.to_payload())
            return result

        return self._runner.run(DEPOSIT_OPERATION, work, **ctx.log_fields())

    def confirm_deposit(self, ctx: CallerContext, transaction_id: str) -> DepositDecision:
        """
        Admin confirmation of a pending deposit.  Credits the wallet exactly
        once; confirming an already completed deposit is a no-op.

        Raises:
            LedgerEntryNotFoundError, InvalidTransitionError (deposit was
            rejected), AuthorizationError.
        """
        authorize(ctx, Action.CONFIRM_DEPOSIT)
        transaction_id = require_text("transactionId", transaction_id, max_length=40)

        def work(uow: UnitOfWork) -> DepositDecision:
            entry, credited, balance = LedgerStore(
                uow.session, self._clock
            ).complete_pending_deposit(transaction_id)
            if credited:
                uow.add_event(
                    NotificationEvent(
                        type="deposit_confirmed",
                        user_id=entry.user_id,
                        title="Deposit confirmed",
                        message=f"{entry.amount} was added to your wallet",
                        kind="wallet",
                        amount=entry.amount,
                    )
                )
            return DepositDecision(
                transaction_id=transaction_id,
                user_id=entry.user_id,
                status=entry.status,
                credited=credited,
                new_balance=balance,
            )

        return self._runner.run(
            "wallet.confirm_deposit", work, **ctx.log_fields(), transaction_id=transaction_id
        )

    def reject_deposit(
        self, ctx: CallerContext, transaction_id: str, reason: str | None = None
    ) -> DepositDecision:
        """Admin rejection of a pending deposit.  No money moves."""
        authorize(ctx, Action.REJECT_DEPOSIT)
        transaction_id = require_text("transactionId", transaction_id, max_length=40)

        def work(uow: UnitOfWork) -> DepositDecision:
            entry, changed = LedgerStore(uow.session, self._clock).fail_pending_deposit(
                transaction_id
            )
            if changed:
                uow.add_event(
                    NotificationEvent(
                        type="deposit_rejected",
                        user_id=entry.user_id,
                        title="Deposit rejected",
                        message=reason or "Your deposit could not be confirmed",
                        kind="wallet",
                        amount=entry.amount,
                    )
                )
            return DepositDecision(
                transaction_id=transaction_id,
                user_id=entry.user_id,
                status=entry.status,
                credited=False,
            )

        return self._runner.run(
            "wallet.reject_deposit", work, **ctx.log_fields(), transaction_id=transaction_id
        )

    # ------------------------------------------------------------------
    # Withdrawals
    # ------------------------------------------------------------------

    def withdraw(
        self,
        ctx: CallerContext,
        amount: int,
        method: str,
        account_number: str,
        account_name: str,
    ) -> WithdrawalResult:
        """
        Pay out ``amount`` from the caller's wallet.

        Raises:
            WithdrawalLimitError: below the minimum, above the per-request
                maximum, or over the rolling 24h cap.
            InsufficientBalanceError: balance < amount.
        """
        authorize(ctx, Action.WITHDRAW)
        limits = self.config.withdrawal
        amount = require_positive_int("amount", amount)
        if amount < limits.minimum:
            raise WithdrawalLimitError(
                amount, limits.minimum, f"minimum withdrawal is {limits.minimum}"
            )
        if amount > limits.maximum:
            raise WithdrawalLimitError(
                amount, limits.maximum, f"maximum withdrawal is {limits.maximum}"
            )
        method = require_choice("method", method, limits.methods)
        account_number = require_text("accountNumber", account_number, max_length=64)
        account_name = require_text("accountName", account_name, max_length=120)
        fee = proportional_fee(amount, limits.fee_rate, limits.fee_minimum)

        def work(uow: UnitOfWork) -> WithdrawalResult:
            AccountService(uow.session, self._clock).require_active_user(ctx.user_id)
            ledger = LedgerStore(uow.session, self._clock)
            ledger.lock_wallet(ctx.user_id)

            since = self._clock.now() - DAILY_WINDOW
            withdrawn = ledger.withdrawn_since(ctx.user_id, since)
            if withdrawn + amount > limits.daily_cap:
                logger.info(
                    "withdrawal_daily_cap_exceeded",
                    extra={
                        "user_id": str(ctx.user_id),
                        "amount": amount,
                        "withdrawn_24h": withdrawn,
                        "daily_cap": limits.daily_cap,
                    },
                )
                raise WithdrawalLimitError(
                    amount,
                    limits.daily_cap,
                    f"daily withdrawal cap of {limits.daily_cap} would be exceeded "
                    f"({withdrawn} already withdrawn)",
                )

            entry, new_balance = ledger.debit(
                ctx.user_id,
                amount,
                LedgerEntryType.WITHDRAWAL,
                method,
                fee=fee,
                reference=mask_account_number(account_number),
                notes=account_name,
            )
            uow.add_event(
                NotificationEvent(
                    type="withdrawal_completed",
                    user_id=ctx.user_id,
                    title="Withdrawal processed",
                    message=f"{amount} was withdrawn (fee {fee})",
                    kind="wallet",
                    amount=amount,
                )
            )
            return WithdrawalResult(
                transaction_id=entry.transaction_id,
                amount=amount,
                fee=fee,
                new_balance=new_balance,
            )

        return self._runner.run("wallet.withdraw", work, **ctx.log_fields())

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def _validate_transfer_amount(self, amount: int) -> int:
        amount = require_positive_int("amount", amount)
        if amount < self.config.transfer.minimum:
            raise ValidationError(
                "amount", f"minimum transfer is {self.config.transfer.minimum}"
            )
        return amount

    def _transfer(
        self,
        uow: UnitOfWork,
        sender_id: UUID,
        recipient_id: UUID,
        amount: int,
        note: str | None,
        method: str,
    ) -> TransferResult:
        accounts = AccountService(uow.session, self._clock)
        accounts.require_active_user(sender_id)
        accounts.require_active_user(recipient_id)

        ledger = LedgerStore(uow.session, self._clock)
        for user_id in sorted((sender_id, recipient_id), key=str):
            ledger.lock_wallet(user_id)

        limits = self.config.transfer
        fee = proportional_fee(amount, limits.fee_rate, limits.fee_minimum)
        sent, new_balance = ledger.debit(
            sender_id,
            amount + fee,
            LedgerEntryType.WITHDRAWAL,
            method,
            fee=fee,
            counterparty_user_id=recipient_id,
            notes=note,
        )
        received, _ = ledger.credit(
            recipient_id,
            amount,
            LedgerEntryType.DEPOSIT,
            method,
            counterparty_user_id=sender_id,
            reference=sent.transaction_id,
            notes=note,
        )

        uow.add_event(
            NotificationEvent(
                type="transfer_sent",
                user_id=sender_id,
                title="Transfer sent",
                message=f"You sent {amount} (fee {fee})",
                kind="wallet",
                amount=amount + fee,
            )
        )
        uow.add_event(
            NotificationEvent(
                type="transfer_received",
                user_id=recipient_id,
                title="Transfer received",
                message=f"You received {amount}",
                kind="wallet",
                amount=amount,
            )
        )
        logger.info(
            "transfer_completed",
            extra={
                "sender_id": str(sender_id),
                "recipient_id": str(recipient_id),
                "amount": amount,
                "fee": fee,
                "sender_transaction_id": sent.transaction_id,
                "recipient_transaction_id": received.transaction_id,
            },
        )
        return TransferResult(
            sender_transaction_id=sent.transaction_id,
            recipient_transaction_id=received.transaction_id,
            recipient_id=recipient_id,
            amount=amount,
            fee=fee,
            new_balance=new_balance,
        )

    def transfer(
        self,
        ctx: CallerContext,
        to_user_id: UUID,
        amount: int,
        note: str | None = None,
    ) -> TransferResult:
        """
        Move ``amount`` to another user's wallet, charging the fee on top.

        Raises:
            SelfTransferNotAllowedError, UserNotFoundError, ValidationError,
            InsufficientBalanceError (balance < amount + fee).
        """
        authorize(ctx, Action.TRANSFER)
        to_user_id = require_uuid("toUserId", to_user_id)
        amount = self._validate_transfer_amount(amount)
        if note is not None:
            note = require_text("note", note, max_length=500)
        if to_user_id == ctx.user_id:
            raise SelfTransferNotAllowedError(ctx.user_id)

        def work(uow: UnitOfWork) -> TransferResult:
            return self._transfer(
                uow, ctx.user_id, to_user_id, amount, note, LedgerMethod.TRANSFER.value
            )

        return self._runner.run("wallet.transfer", work, **ctx.log_fields())

    def issue_transfer_code(self, ctx: CallerContext) -> TransferCodeView:
        """A single-use code others can use to send money to the caller."""
        authorize(ctx, Action.ISSUE_TRANSFER_CODE)

        def work(uow: UnitOfWork) -> TransferCodeView:
            AccountService(uow.session, self._clock).require_active_user(ctx.user_id)
            now = self._clock.now()
            code = TransferCode(
                user_id=ctx.user_id,
                code=generate_transfer_code(),
                expires_at=now + timedelta(hours=self.config.transfer.code_ttl_hours),
                used=False,
                created_at=now,
                updated_at=now,
            )
            uow.session.add(code)
            uow.session.flush()
            logger.info(
                "transfer_code_issued",
                extra={"user_id": str(ctx.user_id), "expires_at": code.expires_at},
            )
            return TransferCodeView(code=code.code, expires_at=code.expires_at)

        return self._runner.run("wallet.issue_transfer_code", work, **ctx.log_fields())

    def transfer_by_code(
        self,
        ctx: CallerContext,
        code: str,
        amount: int,
        note: str | None = None,
    ) -> TransferResult:
        """
        Redeem a transfer code: a normal fee-bearing transfer to the code's
        owner.  The code is consumed in the same unit of work, so a failed
        transfer leaves it usable.

        Raises:
            TransferCodeInvalidError: unknown, used or expired code.
            SelfTransferNotAllowedError: redeeming one's own code.
        """
        authorize(ctx, Action.TRANSFER)
        code = require_text("code", code, max_length=16).upper()
        amount = self._validate_transfer_amount(amount)
        if note is not None:
            note = require_text("note", note, max_length=500)

        def work(uow: UnitOfWork) -> TransferResult:
            owner_id = uow.session.execute(
                select(TransferCode.user_id).where(TransferCode.code == code)
            ).scalar_one_or_none()
            if owner_id is None:
                raise TransferCodeInvalidError(code)
            if owner_id == ctx.user_id:
                raise SelfTransferNotAllowedError(ctx.user_id)

            now = self._clock.now()
            claimed = uow.session.execute(
                update(TransferCode)
                .where(
                    and_(
                        TransferCode.code == code,
                        TransferCode.used.is_(False),
                        TransferCode.expires_at > now,
                    )
                )
                .values(used=True, used_at=now, used_by_id=ctx.user_id, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                raise TransferCodeInvalidError(code)

            return self._transfer(
                uow, ctx.user_id, owner_id, amount, note, LedgerMethod.TRANSFER_CODE.value
            )

        return self._runner.run("wallet.transfer_by_code", work, **ctx.log_fields())

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_wallet(self, ctx: CallerContext) -> WalletSummary:
        authorize(ctx, Action.VIEW_WALLET)
        return self._runner.run(
            "wallet.get",
            lambda uow: LedgerSelector(uow.session).wallet_summary(ctx.user_id),
            **ctx.log_fields(),
        )

    def reconcile(self, ctx: CallerContext, user_id: UUID) -> ReconciliationResult:
        """Compare one wallet's balance with its ledger (admin)."""
        authorize(ctx, Action.RECONCILE)
        result = self._runner.run(
            "wallet.reconcile",
            lambda uow: LedgerSelector(uow.session).reconcile(user_id),
            **ctx.log_fields(),
        )
        self._report([result])
        return result

    def reconcile_all(self, ctx: CallerContext) -> list[ReconciliationResult]:
        """Compare every wallet's balance with its ledger (admin)."""
        authorize(ctx, Action.RECONCILE)
        results = self._runner.run(
            "wallet.reconcile_all",
            lambda uow: LedgerSelector(uow.session).reconcile_all(),
            **ctx.log_fields(),
        )
        self._report(results)
        return results

    def _report(self, results: list[ReconciliationResult]) -> None:
        mismatches = [r for r in results if not r.is_reconciled]
        for result in mismatches:
            logger.error(
                "ledger_reconciliation_mismatch",
                extra={
                    "user_id": str(result.user_id),
                    "balance": result.balance,
                    "expected_balance": result.expected_balance,
                    "difference": result.difference,
                    "invariant": MarketInvariant.LEDGER_RECONCILIATION.value,
                },
            )
        logger.info(
            "ledger_reconciled",
            extra={"wallets": len(results), "mismatches": len(mismatches)},
        )
