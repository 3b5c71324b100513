"""
Property-based tests for wallet and order invariants.

Hypothesis drives random sequences of deposits, withdrawals and transfers
through the real engine and checks after every sequence that:
- no wallet balance is negative
- every wallet still reconciles with its ledger
- money is conserved except for deposits, withdrawals and transfer fees

Order placement and cancellation sequences are checked the same way
against stock levels and buyer balances.  Fee arithmetic and identifier
shapes are fuzzed on their own.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from market_config.schema import TransferConfig
from market_kernel.domain.codes import generate_order_code, generate_transaction_id
from market_kernel.domain.fees import proportional_fee
from market_kernel.exceptions import (
    InsufficientBalanceError,
    NotCancellableError,
    OutOfStockError,
    WithdrawalLimitError,
)
from market_kernel.models.user import UserRole
from tests.helpers import balance_of, caller, stock_of

HOLDERS = 3

_db_settings = settings(
    max_examples=25,
    deadline=None,
    suppress_health_check=[HealthCheck.function_scoped_fixture, HealthCheck.too_slow],
)

deposits = st.tuples(
    st.just("deposit"),
    st.integers(0, HOLDERS - 1),
    st.integers(1_000, 50_000),
)
withdrawals = st.tuples(
    st.just("withdraw"),
    st.integers(0, HOLDERS - 1),
    st.integers(1_000, 30_000),
)
transfers = st.tuples(
    st.just("transfer"),
    st.integers(0, HOLDERS - 1),
    st.integers(1, HOLDERS - 1),
    st.integers(100, 30_000),
)
operations = st.lists(st.one_of(deposits, withdrawals, transfers), min_size=1, max_size=8)


@pytest.fixture
def holders(make_user):
    return [make_user(UserRole.BUYER, balance=20_000) for _ in range(HOLDERS)]


@pytest.fixture
def shoppers(make_user):
    return [make_user(UserRole.BUYER, balance=20_000) for _ in range(2)]


@pytest.fixture
def stocked(make_product):
    return [make_product(price=1_000, quantity=5) for _ in range(2)]


def apply(services, holders, op) -> int:
    """Run one operation; return its effect on the total money held in wallets."""
    kind, who = op[0], holders[op[1]]
    ctx = caller(who)
    try:
        if kind == "deposit":
            services.wallet.deposit(ctx, op[2], "wallet")
            return op[2]
        if kind == "withdraw":
            services.wallet.withdraw(ctx, op[2], "bank", "QA001122", "Holder")
            return -op[2]
        # Offset by 1..HOLDERS-1 so the recipient is never the sender.
        recipient = holders[(op[1] + op[2]) % HOLDERS]
        result = services.wallet.transfer(ctx, recipient.id, op[3])
        return -result.fee
    except (InsufficientBalanceError, WithdrawalLimitError):
        return 0


class TestWalletSequences:

    @_db_settings
    @given(ops=operations)
    def test_balances_stay_reconciled(self, services, admin_ctx, holders, ops):
        before = sum(balance_of(services, h.id) for h in holders)
        expected_delta = sum(apply(services, holders, op) for op in ops)

        balances = [balance_of(services, h.id) for h in holders]
        assert all(b >= 0 for b in balances)
        assert sum(balances) == before + expected_delta
        assert all(r.is_reconciled for r in services.wallet.reconcile_all(admin_ctx))


class TestFeeProperties:

    @given(
        amount=st.integers(0, 10**9),
        minimum=st.integers(0, 10_000),
        rate=st.decimals(min_value=Decimal("0"), max_value=Decimal("0.2"), places=4),
    )
    def test_fee_is_at_least_the_minimum(self, amount, minimum, rate):
        assert proportional_fee(amount, rate, minimum) >= minimum

    @given(a=st.integers(0, 10**9), b=st.integers(0, 10**9))
    def test_fee_is_monotone_in_amount(self, a, b):
        cfg = TransferConfig()
        low, high = sorted((a, b))
        assert proportional_fee(low, cfg.fee_rate, cfg.fee_minimum) <= proportional_fee(
            high, cfg.fee_rate, cfg.fee_minimum
        )

    @given(amount=st.integers(10_000, 10**9))
    def test_fee_tracks_rate_above_the_floor(self, amount):
        cfg = TransferConfig()
        fee = proportional_fee(amount, cfg.fee_rate, cfg.fee_minimum)
        assert abs(fee - amount * cfg.fee_rate) <= Decimal("0.5")


class TestIdentifierProperties:

    @given(
        prefix=st.sampled_from(["QAT", "ORD", "X"]),
        now=st.datetimes(
            min_value=datetime(2020, 1, 1), max_value=datetime(2040, 1, 1), timezones=st.just(timezone.utc)
        ),
    )
    def test_order_code_shape(self, prefix, now):
        code = generate_order_code(prefix, now)
        assert code.startswith(prefix)
        assert len(code) == len(prefix) + 12
        assert code[len(prefix):].isalnum()

    def test_transaction_ids_are_distinct_within_one_millisecond(self):
        now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
        ids = {generate_transaction_id(now) for _ in range(50)}
        assert len(ids) == 50


placements = st.tuples(
    st.just("place"),
    st.integers(0, 1),
    st.integers(0, 1),
    st.integers(1, 4),
    st.sampled_from(["wallet", "cash"]),
)
cancellations = st.tuples(st.just("cancel"), st.integers(0, 7))
order_operations = st.lists(st.one_of(placements, cancellations), min_size=1, max_size=8)


class TestOrderSequences:

    @_db_settings
    @given(ops=order_operations)
    def test_stock_and_balances_follow_live_orders(
        self, services, session_factory, admin_ctx, shoppers, stocked, ops
    ):
        buyers, products = shoppers, stocked

        stock_before = [stock_of(session_factory, p.id) for p in products]
        balance_before = [balance_of(services, b.id) for b in buyers]
        reserved = [0, 0]
        spent = [0, 0]
        placed = []

        for op in ops:
            if op[0] == "place":
                _, b, p, qty, method = op
                try:
                    order = services.orders.place_order(
                        caller(buyers[b]),
                        [{"productId": str(products[p].id), "quantity": qty}],
                        shipping_address="Lusail Marina 3",
                        payment_method=method,
                    )
                except (OutOfStockError, InsufficientBalanceError):
                    continue
                reserved[p] += qty
                if method == "wallet":
                    spent[b] += order.total
                placed.append((order.order_id, b, p, qty, method, order.total))
            elif placed:
                order_id, b, p, qty, method, total = placed[op[1] % len(placed)]
                try:
                    services.orders.cancel_order(caller(buyers[b]), order_id)
                except NotCancellableError:
                    continue
                reserved[p] -= qty
                if method == "wallet":
                    spent[b] -= total

        for i, product in enumerate(products):
            stock = stock_of(session_factory, product.id)
            assert stock >= 0
            assert stock == stock_before[i] - reserved[i]
        for i, buyer in enumerate(buyers):
            assert balance_of(services, buyer.id) == balance_before[i] - spent[i]
        assert all(r.is_reconciled for r in services.wallet.reconcile_all(admin_ctx))
