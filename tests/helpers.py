"""Shared helpers for marketplace tests."""

from uuid import UUID

from market_kernel.domain.caller import CallerContext
from market_kernel.models.ledger import LedgerEntry
from market_kernel.models.product import Product
from market_kernel.models.user import UserRole


def caller(user, role: UserRole | str | None = None) -> CallerContext:
    return CallerContext(user_id=user.id, role=role or user.role)


def balance_of(services, user_id: UUID) -> int:
    return services.wallet.get_wallet(
        CallerContext(user_id=user_id, role=UserRole.BUYER)
    ).balance


def stock_of(session_factory, product_id: UUID) -> int:
    with session_factory() as s:
        return s.get(Product, product_id).quantity


def product_status(session_factory, product_id: UUID) -> str:
    with session_factory() as s:
        return s.get(Product, product_id).status


def ledger_entries(session_factory, user_id: UUID) -> list[LedgerEntry]:
    from sqlalchemy import select

    with session_factory() as s:
        return list(
            s.execute(
                select(LedgerEntry)
                .where(LedgerEntry.user_id == user_id)
                .order_by(LedgerEntry.created_at, LedgerEntry.transaction_id)
            ).scalars()
        )
