"""
market_services.commands -- CommandGateway.

Responsibility:
    Maps logical operation names (``order.place``, ``wallet.deposit``, ...)
    onto engine calls.  Payloads are plain mappings with camelCase keys;
    the gateway checks their shape, calls the engine and wraps the result
    in an envelope:

        {"ok": True,  "data": {...}}
        {"ok": False, "error": {"code": ..., "message": ..., ...}}

Architecture position:
    Services -- the outermost seam of the package.  Transport layers
    (HTTP, queues, CLIs) authenticate the caller, build a CallerContext
    and hand the raw payload to ``execute``.

Failure modes:
    - Every MarketKernelError is returned as an error envelope.
    - Anything else propagates; it is a defect, not a business outcome.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from market_kernel.domain.caller import CallerContext
from market_kernel.domain.validation import require_uuid
from market_kernel.exceptions import MarketKernelError, ValidationError
from market_kernel.logging_config import get_logger
from market_services.order_lifecycle import OrderLifecycleEngine
from market_services.wallet_operations import WalletOperationsEngine

logger = get_logger("services.commands")

Handler = Callable[[CallerContext, Mapping[str, Any]], Any]


def _optional(payload: Mapping[str, Any], key: str, default: Any = None) -> Any:
    value = payload.get(key)
    return default if value is None else value


def _payload_of(result: Any) -> Any:
    if isinstance(result, list):
        return [_payload_of(item) for item in result]
    to_payload = getattr(result, "to_payload", None)
    return to_payload() if to_payload is not None else result


class CommandGateway:
    """Dispatches named operations to the order and wallet engines."""

    def __init__(self, orders: OrderLifecycleEngine, wallet: WalletOperationsEngine):
        self.orders = orders
        self.wallet = wallet
        self._handlers: dict[str, Handler] = {
            "order.place": self._place_order,
            "order.cancel": self._cancel_order,
            "order.get": self._get_order,
            "order.markPaid": self._mark_paid,
            "order.markPreparing": self._mark_preparing,
            "order.assignDriver": self._assign_driver,
            "order.markDelivered": self._mark_delivered,
            "order.rateDriver": self._rate_driver,
            "driver.setAvailability": self._set_availability,
            "wallet.get": self._get_wallet,
            "wallet.deposit": self._deposit,
            "wallet.confirmDeposit": self._confirm_deposit,
            "wallet.rejectDeposit": self._reject_deposit,
            "wallet.withdraw": self._withdraw,
            "wallet.transfer": self._transfer,
            "wallet.issueTransferCode": self._issue_transfer_code,
            "wallet.transferByCode": self._transfer_by_code,
            "wallet.reconcile": self._reconcile,
            "wallet.reconcileAll": self._reconcile_all,
        }

    @property
    def operations(self) -> tuple[str, ...]:
        return tuple(self._handlers)

    def execute(
        self,
        ctx: CallerContext,
        operation: str,
        payload: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        payload = payload if payload is not None else {}
        handler = self._handlers.get(operation)
        try:
            if handler is None:
                raise ValidationError("operation", f"unknown operation {operation!r}")
            if not isinstance(payload, Mapping):
                raise ValidationError("payload", "must be an object")
            result = handler(ctx, payload)
        except MarketKernelError as exc:
            logger.info(
                "command_rejected",
                extra={
                    "command": operation,
                    "error_code": exc.code,
                    "actor_id": str(ctx.user_id),
                },
            )
            return {"ok": False, "error": exc.to_dict()}
        return {"ok": True, "data": _payload_of(result)}

    # Orders

    def _place_order(self, ctx, payload):
        items = payload.get("items")
        if not isinstance(items, list):
            raise ValidationError("items", "must be a list")
        return self.orders.place_order(
            ctx,
            items,
            shipping_address=payload.get("shippingAddress"),
            payment_method=payload.get("paymentMethod"),
            wash_quantity=_optional(payload, "washQuantity", 0),
            idempotency_key=payload.get("idempotencyKey"),
        )

    def _cancel_order(self, ctx, payload):
        return self.orders.cancel_order(ctx, require_uuid("orderId", payload.get("orderId")))

    def _get_order(self, ctx, payload):
        return self.orders.get_order(ctx, require_uuid("orderId", payload.get("orderId")))

    def _mark_paid(self, ctx, payload):
        return self.orders.mark_paid(ctx, require_uuid("orderId", payload.get("orderId")))

    def _mark_preparing(self, ctx, payload):
        return self.orders.mark_preparing(ctx, require_uuid("orderId", payload.get("orderId")))

    def _assign_driver(self, ctx, payload):
        return self.orders.assign_driver(
            ctx,
            require_uuid("orderId", payload.get("orderId")),
            require_uuid("driverId", payload.get("driverId")),
        )

    def _mark_delivered(self, ctx, payload):
        return self.orders.mark_delivered(ctx, require_uuid("orderId", payload.get("orderId")))

    def _rate_driver(self, ctx, payload):
        return self.orders.rate_driver(
            ctx,
            require_uuid("orderId", payload.get("orderId")),
            payload.get("rating"),
            comment=payload.get("comment"),
        )

    def _set_availability(self, ctx, payload):
        return self.orders.set_driver_availability(ctx, payload.get("status"))

    # Wallet

    def _get_wallet(self, ctx, payload):
        return self.wallet.get_wallet(ctx)

    def _deposit(self, ctx, payload):
        return self.wallet.deposit(
            ctx,
            payload.get("amount"),
            payload.get("method"),
            reference=payload.get("reference"),
            notes=payload.get("notes"),
            idempotency_key=payload.get("idempotencyKey"),
        )

    def _confirm_deposit(self, ctx, payload):
        return self.wallet.confirm_deposit(ctx, payload.get("transactionId"))

    def _reject_deposit(self, ctx, payload):
        return self.wallet.reject_deposit(
            ctx, payload.get("transactionId"), reason=payload.get("reason")
        )

    def _withdraw(self, ctx, payload):
        return self.wallet.withdraw(
            ctx,
            payload.get("amount"),
            payload.get("method"),
            account_number=payload.get("accountNumber"),
            account_name=payload.get("accountName"),
        )

    def _transfer(self, ctx, payload):
        return self.wallet.transfer(
            ctx,
            require_uuid("toUserId", payload.get("toUserId")),
            payload.get("amount"),
            note=payload.get("note"),
        )

    def _issue_transfer_code(self, ctx, payload):
        return self.wallet.issue_transfer_code(ctx)

    def _transfer_by_code(self, ctx, payload):
        return self.wallet.transfer_by_code(
            ctx, payload.get("code"), payload.get("amount"), note=payload.get("note")
        )

    def _reconcile(self, ctx, payload):
        return self.wallet.reconcile(ctx, require_uuid("userId", payload.get("userId")))

    def _reconcile_all(self, ctx, payload):
        return self.wallet.reconcile_all(ctx)
