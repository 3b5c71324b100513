"""
DTOs -- immutable results returned by the engines.

Responsibility:
    Engines and selectors return these frozen dataclasses instead of ORM
    rows, so callers never hold a live session object after the unit of
    work has closed.  ``to_payload()`` renders the logical response shape
    used by the command gateway; the results of idempotent operations are
    also stored in that form and rebuilt with ``from_payload()``.

Architecture position:
    Kernel > Domain -- pure data, zero I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _str(value: UUID | None) -> str | None:
    return str(value) if value is not None else None


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OrderLine:
    """One requested cart line."""

    product_id: UUID
    quantity: int


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PlacedOrder:
    order_id: UUID
    order_code: str
    total: int
    status: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "orderId": str(self.order_id),
            "orderCode": self.order_code,
            "total": self.total,
            "status": self.status,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> PlacedOrder:
        return cls(
            order_id=UUID(payload["orderId"]),
            order_code=payload["orderCode"],
            total=payload["total"],
            status=payload["status"],
        )


@dataclass(frozen=True)
class OrderStatusChange:
    order_id: UUID
    status: str

    def to_payload(self) -> dict[str, Any]:
        return {"orderId": str(self.order_id), "status": self.status}


@dataclass(frozen=True)
class DriverSummary:
    driver_id: UUID
    user_id: UUID
    name: str
    vehicle_type: str | None
    status: str
    rating: float | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": str(self.driver_id),
            "userId": str(self.user_id),
            "name": self.name,
            "vehicleType": self.vehicle_type,
            "status": self.status,
            "rating": self.rating,
        }


@dataclass(frozen=True)
class DriverAssignment:
    order_id: UUID
    status: str
    driver: DriverSummary
    previous_driver_id: UUID | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "orderId": str(self.order_id),
            "status": self.status,
            "driver": self.driver.to_payload(),
        }


@dataclass(frozen=True)
class OrderItemView:
    product_id: UUID
    seller_id: UUID
    product_name: str
    quantity: int
    unit_price: int
    total_price: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "productId": str(self.product_id),
            "sellerId": str(self.seller_id),
            "productName": self.product_name,
            "quantity": self.quantity,
            "unitPrice": self.unit_price,
            "totalPrice": self.total_price,
        }


@dataclass(frozen=True)
class OrderView:
    """An order with its item snapshots and tracking data."""

    order_id: UUID
    order_code: str
    buyer_id: UUID
    status: str
    total: int
    wash_quantity: int
    wash_fee: int
    payment_method: str
    shipping_address: str
    created_at: datetime
    estimated_delivery: datetime
    items: tuple[OrderItemView, ...]
    driver: DriverSummary | None = None
    shipped_at: datetime | None = None
    delivered_at: datetime | None = None
    cancelled_at: datetime | None = None
    driver_rating: int | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "orderId": str(self.order_id),
            "orderCode": self.order_code,
            "buyerId": str(self.buyer_id),
            "status": self.status,
            "total": self.total,
            "washQuantity": self.wash_quantity,
            "washFee": self.wash_fee,
            "paymentMethod": self.payment_method,
            "shippingAddress": self.shipping_address,
            "items": [item.to_payload() for item in self.items],
            "driver": self.driver.to_payload() if self.driver else None,
            "driverRating": self.driver_rating,
            "tracking": {
                "createdAt": _iso(self.created_at),
                "shippedAt": _iso(self.shipped_at),
                "deliveredAt": _iso(self.delivered_at),
                "cancelledAt": _iso(self.cancelled_at),
                "estimatedDelivery": _iso(self.estimated_delivery),
            },
        }


@dataclass(frozen=True)
class DriverRating:
    order_id: UUID
    driver_id: UUID
    rating: int
    average: float | None

    def to_payload(self) -> dict[str, Any]:
        return {
            "orderId": str(self.order_id),
            "driverId": str(self.driver_id),
            "rating": self.rating,
            "driverAverage": self.average,
        }


@dataclass(frozen=True)
class DriverAvailability:
    driver_id: UUID
    status: str

    def to_payload(self) -> dict[str, Any]:
        return {"driverId": str(self.driver_id), "status": self.status}


# ---------------------------------------------------------------------------
# Wallet
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LedgerEntryView:
    transaction_id: str
    entry_type: str
    amount: int
    method: str
    status: str
    fee: int
    created_at: datetime
    order_id: UUID | None = None
    counterparty_user_id: UUID | None = None
    reference: str | None = None
    notes: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "transactionId": self.transaction_id,
            "type": self.entry_type,
            "amount": self.amount,
            "method": self.method,
            "status": self.status,
            "fee": self.fee,
            "createdAt": _iso(self.created_at),
            "orderId": _str(self.order_id),
            "counterpartyUserId": _str(self.counterparty_user_id),
            "reference": self.reference,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class DepositResult:
    transaction_id: str
    amount: int
    status: str
    new_balance: int | None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "transactionId": self.transaction_id,
            "amount": self.amount,
            "status": self.status,
        }
        # Only instant deposits change the balance immediately
        if self.new_balance is not None:
            payload["newBalance"] = self.new_balance
        return payload

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> DepositResult:
        return cls(
            transaction_id=payload["transactionId"],
            amount=payload["amount"],
            status=payload["status"],
            new_balance=payload.get("newBalance"),
        )


@dataclass(frozen=True)
class DepositDecision:
    """Outcome of an administrative confirm/reject of a pending deposit."""

    transaction_id: str
    user_id: UUID
    status: str
    credited: bool
    new_balance: int | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "transactionId": self.transaction_id,
            "userId": str(self.user_id),
            "status": self.status,
            "credited": self.credited,
        }
        if self.new_balance is not None:
            payload["newBalance"] = self.new_balance
        return payload


@dataclass(frozen=True)
class WithdrawalResult:
    transaction_id: str
    amount: int
    fee: int
    new_balance: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "transactionId": self.transaction_id,
            "amount": self.amount,
            "fee": self.fee,
            "netPayout": self.amount - self.fee,
            "newBalance": self.new_balance,
        }


@dataclass(frozen=True)
class TransferResult:
    sender_transaction_id: str
    recipient_transaction_id: str
    recipient_id: UUID
    amount: int
    fee: int
    new_balance: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "transactionId": self.sender_transaction_id,
            "recipientId": str(self.recipient_id),
            "amount": self.amount,
            "fee": self.fee,
            "totalDebited": self.amount + self.fee,
            "newBalance": self.new_balance,
        }


@dataclass(frozen=True)
class TransferCodeView:
    code: str
    expires_at: datetime

    def to_payload(self) -> dict[str, Any]:
        return {"code": self.code, "expiresAt": _iso(self.expires_at)}


@dataclass(frozen=True)
class WalletSummary:
    user_id: UUID
    balance: int
    totals: dict[str, int]
    pending_deposits: int
    recent: tuple[LedgerEntryView, ...] = field(default_factory=tuple)

    def to_payload(self) -> dict[str, Any]:
        return {
            "userId": str(self.user_id),
            "balance": self.balance,
            "totals": dict(self.totals),
            "pendingDeposits": self.pending_deposits,
            "recent": [entry.to_payload() for entry in self.recent],
        }


@dataclass(frozen=True)
class ReconciliationResult:
    user_id: UUID
    balance: int
    opening_balance: int
    ledger_total: int

    @property
    def expected_balance(self) -> int:
        return self.opening_balance + self.ledger_total

    @property
    def difference(self) -> int:
        return self.balance - self.expected_balance

    @property
    def is_reconciled(self) -> bool:
        return self.difference == 0

    def to_payload(self) -> dict[str, Any]:
        return {
            "userId": str(self.user_id),
            "balance": self.balance,
            "openingBalance": self.opening_balance,
            "ledgerTotal": self.ledger_total,
            "expectedBalance": self.expected_balance,
            "difference": self.difference,
            "reconciled": self.is_reconciled,
        }
