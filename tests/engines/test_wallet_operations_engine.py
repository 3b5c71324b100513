"""
Wallet Operations Engine: deposits, withdrawals, transfers, transfer codes
and reconciliation.
"""

from decimal import Decimal

import pytest

from market_kernel.exceptions import (
    AuthorizationError,
    InsufficientBalanceError,
    InvalidTransitionError,
    LedgerEntryNotFoundError,
    SelfTransferNotAllowedError,
    TransferCodeInvalidError,
    UserNotFoundError,
    ValidationError,
    WithdrawalLimitError,
)
from market_kernel.models.ledger import LedgerEntryStatus, LedgerEntryType
from market_kernel.models.user import UserRole
from tests.helpers import balance_of, caller, ledger_entries


@pytest.fixture
def holder(make_user):
    return make_user(UserRole.BUYER, balance=50_000)


@pytest.fixture
def holder_ctx(holder):
    return caller(holder)


class TestDeposit:

    def test_instant_deposit_credits(self, services, holder, holder_ctx, notification_sink):
        result = services.wallet.deposit(holder_ctx, 5_000, "wallet", reference="topup")
        assert result.status == "completed"
        assert result.new_balance == 55_000
        assert balance_of(services, holder.id) == 55_000
        assert [n[1] for n in notification_sink.for_user(holder.id)] == ["Deposit received"]

    def test_manual_deposit_waits_for_confirmation(self, services, holder, holder_ctx):
        result = services.wallet.deposit(holder_ctx, 5_000, "bank", reference="IBAN-REF")
        assert result.status == "pending"
        assert result.new_balance is None
        assert "newBalance" not in result.to_payload()
        assert balance_of(services, holder.id) == 50_000
        assert services.wallet.get_wallet(holder_ctx).pending_deposits == 5_000

    @pytest.mark.parametrize("amount", [999, 10_000_001, 0, -5])
    def test_amount_limits(self, services, holder_ctx, amount):
        with pytest.raises(ValidationError):
            services.wallet.deposit(holder_ctx, amount, "wallet")

    def test_unknown_method(self, services, holder_ctx):
        with pytest.raises(ValidationError) as exc_info:
            services.wallet.deposit(holder_ctx, 5_000, "crypto")
        assert exc_info.value.field == "method"

    @pytest.mark.parametrize(
        "kwargs, field",
        [
            ({"reference": "R" * 101}, "reference"),
            ({"notes": "n" * 501}, "notes"),
            ({"reference": 12345}, "reference"),
            ({"notes": ["memo"]}, "notes"),
        ],
    )
    def test_reference_and_notes_are_checked(
        self, services, session_factory, holder, holder_ctx, kwargs, field
    ):
        with pytest.raises(ValidationError) as exc_info:
            services.wallet.deposit(holder_ctx, 5_000, "bank", **kwargs)
        assert exc_info.value.field == field
        assert ledger_entries(session_factory, holder.id) == []

    def test_reference_and_notes_at_column_width(self, services, session_factory, holder, holder_ctx):
        services.wallet.deposit(holder_ctx, 5_000, "bank", reference="R" * 100, notes="n" * 500)
        [entry] = ledger_entries(session_factory, holder.id)
        assert len(entry.reference) == 100
        assert len(entry.notes) == 500

    def test_idempotency_key_replays(self, services, session_factory, holder, holder_ctx):
        first = services.wallet.deposit(holder_ctx, 5_000, "wallet", idempotency_key="dep-1")
        again = services.wallet.deposit(holder_ctx, 5_000, "wallet", idempotency_key="dep-1")
        assert again == first
        assert balance_of(services, holder.id) == 55_000
        assert len(ledger_entries(session_factory, holder.id)) == 1


class TestDepositDecisions:

    @pytest.fixture
    def pending(self, services, holder_ctx):
        return services.wallet.deposit(holder_ctx, 8_000, "manual").transaction_id

    def test_confirm_credits_exactly_once(self, services, holder, admin_ctx, pending):
        first = services.wallet.confirm_deposit(admin_ctx, pending)
        second = services.wallet.confirm_deposit(admin_ctx, pending)

        assert first.credited and first.new_balance == 58_000
        assert not second.credited
        assert second.status == LedgerEntryStatus.COMPLETED.value
        assert balance_of(services, holder.id) == 58_000

    def test_reject_then_confirm(self, services, holder, admin_ctx, pending, notification_sink):
        decision = services.wallet.reject_deposit(admin_ctx, pending, reason="No transfer found")
        assert decision.status == "failed"
        assert not decision.credited
        assert "Deposit rejected" in [n[1] for n in notification_sink.for_user(holder.id)]

        with pytest.raises(InvalidTransitionError):
            services.wallet.confirm_deposit(admin_ctx, pending)
        assert balance_of(services, holder.id) == 50_000

    def test_only_admins_decide(self, services, holder_ctx, pending):
        with pytest.raises(AuthorizationError):
            services.wallet.confirm_deposit(holder_ctx, pending)

    def test_unknown_transaction(self, services, admin_ctx):
        with pytest.raises(LedgerEntryNotFoundError):
            services.wallet.confirm_deposit(admin_ctx, "TXN-missing")


class TestWithdraw:

    def test_fee_is_recorded_not_deducted(self, services, session_factory, holder, holder_ctx):
        result = services.wallet.withdraw(holder_ctx, 20_000, "bank", "QA12345678", "Holder")

        assert result.fee == 200
        assert result.new_balance == 30_000
        assert result.to_payload()["netPayout"] == 19_800

        [entry] = ledger_entries(session_factory, holder.id)
        assert entry.entry_type == LedgerEntryType.WITHDRAWAL.value
        assert entry.amount == -20_000
        assert entry.fee == 200
        assert entry.reference == "******5678"
        assert entry.notes == "Holder"

    def test_minimum_fee(self, services, holder_ctx):
        assert services.wallet.withdraw(holder_ctx, 1_000, "bank", "1234", "H").fee == 100

    @pytest.mark.parametrize("amount", [999, 1_000_001])
    def test_per_request_limits(self, services, holder_ctx, amount):
        with pytest.raises(WithdrawalLimitError):
            services.wallet.withdraw(holder_ctx, amount, "bank", "1234", "H")

    def test_insufficient_balance(self, services, holder, holder_ctx):
        with pytest.raises(InsufficientBalanceError):
            services.wallet.withdraw(holder_ctx, 50_001, "bank", "1234", "H")
        assert balance_of(services, holder.id) == 50_000

    def test_daily_cap_is_rolling(self, services, make_user, deterministic_clock):
        rich = make_user(UserRole.SELLER, balance=5_000_000)
        ctx = caller(rich)
        services.wallet.withdraw(ctx, 1_000_000, "bank", "1234", "R")
        deterministic_clock.advance(3600)
        services.wallet.withdraw(ctx, 1_000_000, "bank", "1234", "R")

        with pytest.raises(WithdrawalLimitError) as exc_info:
            services.wallet.withdraw(ctx, 1_000, "bank", "1234", "R")
        assert exc_info.value.limit == 2_000_000

        deterministic_clock.advance(23 * 3600 + 1)
        services.wallet.withdraw(ctx, 1_000_000, "bank", "1234", "R")
        assert balance_of(services, rich.id) == 2_000_000

    def test_transfers_do_not_count_towards_cap(self, services, make_user):
        rich = make_user(UserRole.SELLER, balance=5_000_000)
        friend = make_user(UserRole.BUYER)
        ctx = caller(rich)
        services.wallet.transfer(ctx, friend.id, 1_500_000)
        services.wallet.withdraw(ctx, 1_000_000, "bank", "1234", "R")
        services.wallet.withdraw(ctx, 1_000_000, "bank", "1234", "R")


class TestTransfer:

    def test_fee_on_top(self, services, session_factory, make_user, notification_sink):
        """A (2000) sends 1000 with a 100 fee to B (0)."""
        a = make_user(UserRole.BUYER, balance=2_000)
        b = make_user(UserRole.BUYER, balance=0)

        result = services.wallet.transfer(caller(a), b.id, 1_000, note="rent")

        assert result.fee == 100
        assert result.new_balance == 900
        assert balance_of(services, a.id) == 900
        assert balance_of(services, b.id) == 1_000

        [sent] = ledger_entries(session_factory, a.id)
        [received] = ledger_entries(session_factory, b.id)
        assert (sent.amount, sent.fee, sent.counterparty_user_id) == (-1_100, 100, b.id)
        assert (received.amount, received.counterparty_user_id) == (1_000, a.id)
        assert received.reference == sent.transaction_id
        assert notification_sink.for_user(a.id) and notification_sink.for_user(b.id)

    def test_fee_scales_with_amount(self, services, holder_ctx, make_user):
        b = make_user(UserRole.BUYER)
        assert services.wallet.transfer(holder_ctx, b.id, 30_000).fee == 300

    def test_amount_plus_fee_must_be_covered(self, services, make_user):
        a = make_user(UserRole.BUYER, balance=1_000)
        b = make_user(UserRole.BUYER)
        with pytest.raises(InsufficientBalanceError) as exc_info:
            services.wallet.transfer(caller(a), b.id, 1_000)
        assert exc_info.value.required == 1_100
        assert balance_of(services, a.id) == 1_000
        assert balance_of(services, b.id) == 0

    def test_self_transfer(self, services, holder, holder_ctx):
        with pytest.raises(SelfTransferNotAllowedError):
            services.wallet.transfer(holder_ctx, holder.id, 1_000)

    def test_unknown_recipient(self, services, holder_ctx):
        from uuid import uuid4

        with pytest.raises(UserNotFoundError):
            services.wallet.transfer(holder_ctx, uuid4(), 1_000)

    def test_below_minimum(self, services, holder_ctx, make_user):
        with pytest.raises(ValidationError):
            services.wallet.transfer(holder_ctx, make_user().id, 99)

    def test_custom_fee_rate(self, config, session_factory, deterministic_clock, make_user):
        from dataclasses import replace

        from market_services.container import MarketplaceServices

        wallet = replace(
            config.wallet,
            transfer=replace(config.wallet.transfer, fee_rate=Decimal("0.05"), fee_minimum=0),
        )
        services = MarketplaceServices(
            replace(config, wallet=wallet), session_factory, clock=deterministic_clock
        )
        a = make_user(UserRole.BUYER, balance=10_000)
        b = make_user(UserRole.BUYER)
        assert services.wallet.transfer(caller(a), b.id, 1_000).fee == 50


class TestTransferCodes:

    def test_redeem_pays_code_owner(self, services, holder, holder_ctx, make_user):
        owner = make_user(UserRole.SELLER)
        issued = services.wallet.issue_transfer_code(caller(owner))
        assert len(issued.code) == 16

        result = services.wallet.transfer_by_code(holder_ctx, issued.code.lower(), 2_000)

        assert result.recipient_id == owner.id
        assert balance_of(services, owner.id) == 2_000
        assert balance_of(services, holder.id) == 50_000 - 2_100

    def test_code_is_single_use(self, services, holder_ctx, make_user):
        owner = make_user(UserRole.SELLER)
        code = services.wallet.issue_transfer_code(caller(owner)).code
        services.wallet.transfer_by_code(holder_ctx, code, 1_000)
        with pytest.raises(TransferCodeInvalidError):
            services.wallet.transfer_by_code(holder_ctx, code, 1_000)

    def test_expired_code(self, services, deterministic_clock, holder_ctx, make_user):
        owner = make_user(UserRole.SELLER)
        code = services.wallet.issue_transfer_code(caller(owner)).code
        deterministic_clock.advance(24 * 3600 + 1)
        with pytest.raises(TransferCodeInvalidError):
            services.wallet.transfer_by_code(holder_ctx, code, 1_000)

    def test_unknown_code(self, services, holder_ctx):
        with pytest.raises(TransferCodeInvalidError):
            services.wallet.transfer_by_code(holder_ctx, "0123456789ABCDEF", 1_000)

    def test_own_code(self, services, holder_ctx):
        code = services.wallet.issue_transfer_code(holder_ctx).code
        with pytest.raises(SelfTransferNotAllowedError):
            services.wallet.transfer_by_code(holder_ctx, code, 1_000)

    def test_failed_transfer_leaves_code_usable(self, services, make_user):
        owner = make_user(UserRole.SELLER)
        poor = make_user(UserRole.BUYER, balance=500)
        code = services.wallet.issue_transfer_code(caller(owner)).code

        with pytest.raises(InsufficientBalanceError):
            services.wallet.transfer_by_code(caller(poor), code, 1_000)

        services.wallet.deposit(caller(poor), 1_000, "wallet")
        services.wallet.transfer_by_code(caller(poor), code, 1_000)
        assert balance_of(services, owner.id) == 1_000


class TestSummaryAndReconciliation:

    def test_wallet_summary(self, services, holder_ctx, make_user):
        services.wallet.deposit(holder_ctx, 5_000, "wallet")
        services.wallet.deposit(holder_ctx, 3_000, "bank")
        services.wallet.withdraw(holder_ctx, 2_000, "bank", "1234", "H")

        summary = services.wallet.get_wallet(holder_ctx)

        assert summary.balance == 53_000
        assert summary.totals["deposit"] == 5_000
        assert summary.totals["withdrawal"] == -2_000
        assert summary.totals["refund"] == 0
        assert summary.pending_deposits == 3_000
        assert len(summary.recent) == 3

    def test_recent_is_capped(self, services, holder_ctx):
        for _ in range(12):
            services.wallet.deposit(holder_ctx, 1_000, "wallet")
        assert len(services.wallet.get_wallet(holder_ctx).recent) == 10

    def test_every_wallet_reconciles_after_mixed_activity(
        self, services, admin_ctx, holder, holder_ctx, make_user, make_product
    ):
        other = make_user(UserRole.BUYER, balance=1_000)
        services.wallet.transfer(holder_ctx, other.id, 4_000)
        placed = services.orders.place_order(
            caller(other),
            [{"productId": str(make_product(price=2_000).id), "quantity": 1}],
            shipping_address="West Bay",
            payment_method="wallet",
        )
        services.orders.cancel_order(caller(other), placed.order_id)
        services.wallet.withdraw(holder_ctx, 3_000, "bank", "1234", "H")

        results = services.wallet.reconcile_all(admin_ctx)

        assert results and all(r.is_reconciled for r in results)
        assert services.wallet.reconcile(admin_ctx, holder.id).expected_balance == 50_000 - 4_100 - 3_000

    def test_mismatch_is_logged(self, services, session_factory, admin_ctx, holder, captured_logs):
        from sqlalchemy import update

        from market_kernel.models.wallet import Wallet

        with session_factory() as s:
            s.execute(update(Wallet).where(Wallet.user_id == holder.id).values(balance=1))
            s.commit()

        result = services.wallet.reconcile(admin_ctx, holder.id)

        assert not result.is_reconciled
        [record] = [
            r for r in captured_logs() if r["message"] == "ledger_reconciliation_mismatch"
        ]
        assert record["level"] == "ERROR"
        assert record["invariant"] == "ledger_reconciliation"
        assert record["difference"] == 1 - 50_000

    def test_only_admins_reconcile(self, services, holder, holder_ctx):
        with pytest.raises(AuthorizationError):
            services.wallet.reconcile(holder_ctx, holder.id)
