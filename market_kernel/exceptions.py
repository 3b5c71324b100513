"""
Typed Exception Hierarchy for the Market Kernel.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from MarketKernelError:

    MarketKernelError (base)
    |
    +-- ValidationError
    |   +-- WithdrawalLimitError
    |   +-- TransferCodeInvalidError
    |
    +-- NotFoundError
    |   +-- UserNotFoundError
    |   +-- ProductNotFoundError
    |   +-- OrderNotFoundError
    |   +-- DriverNotFoundError
    |   +-- LedgerEntryNotFoundError
    |
    +-- OutOfStockError
    +-- InsufficientBalanceError
    +-- NotCancellableError
    +-- InvalidTransitionError
    +-- DriverUnavailableError
    +-- SelfTransferNotAllowedError
    +-- AuthorizationError
    |
    +-- StorageError
        +-- ConcurrencyConflictError
        +-- PersistenceFailureError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                        | When Raised
----------------------------|--------------------------------------------------
VALIDATION_ERROR            | Malformed or missing input
WITHDRAWAL_LIMIT            | Withdrawal outside min/max or over the daily cap
TRANSFER_CODE_INVALID       | Transfer code unknown, used or expired
NOT_FOUND                   | Order/product/driver/user/ledger entry missing
OUT_OF_STOCK                | Product inactive or not enough quantity
INSUFFICIENT_BALANCE        | Wallet cannot cover the debit
NOT_CANCELLABLE             | Order not owned by caller or past pending/paid
INVALID_TRANSITION          | Order/driver status change out of sequence
DRIVER_UNAVAILABLE          | Driver is busy or offline
SELF_TRANSFER_NOT_ALLOWED   | Sender and recipient are the same user
FORBIDDEN                   | Caller role or ownership does not permit action
CONCURRENCY_CONFLICT        | Serialization failure / lock conflict (retryable)
PERSISTENCE_FAILURE         | Storage error, NOT safe to retry automatically

===============================================================================
HANDLING PATTERNS
===============================================================================

1. Business-rule errors are raised before any write reaches the database
   and the unit of work rolls back, so no compensation is ever needed.

2. ConcurrencyConflictError is retried by TransactionRunner a bounded
   number of times; when the budget is spent it is re-raised with
   ``retries_exhausted=True``.

3. PersistenceFailureError is never retried. It is logged with the
   traceback and surfaced to the caller.
"""

from uuid import UUID


class MarketKernelError(Exception):
    """
    Base exception for all market kernel errors.

    All subclasses carry a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "MARKET_KERNEL_ERROR"

    def to_dict(self) -> dict:
        """Structured form used by the command gateway and the log formatter."""
        payload = {"code": self.code, "message": str(self)}
        for key, value in vars(self).items():
            if key.startswith("_"):
                continue
            payload[key] = str(value) if isinstance(value, UUID) else value
        return payload


# Validation


class ValidationError(MarketKernelError):
    """Input is malformed or missing."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class WithdrawalLimitError(ValidationError):
    """Withdrawal amount violates the minimum, maximum or rolling daily cap."""

    code: str = "WITHDRAWAL_LIMIT"

    def __init__(self, amount: int, limit: int, reason: str):
        self.amount = amount
        self.limit = limit
        super().__init__("amount", reason)


class TransferCodeInvalidError(ValidationError):
    """Transfer code does not exist, was already used, or has expired."""

    code: str = "TRANSFER_CODE_INVALID"

    def __init__(self, transfer_code: str):
        self.transfer_code = transfer_code
        super().__init__("code", "transfer code is invalid, used or expired")


# Lookups


class NotFoundError(MarketKernelError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"

    entity: str = "entity"

    def __init__(self, entity_id: UUID | str):
        self.entity_id = entity_id
        super().__init__(f"{self.entity.capitalize()} not found: {entity_id}")


class UserNotFoundError(NotFoundError):
    entity = "user"


class ProductNotFoundError(NotFoundError):
    entity = "product"


class OrderNotFoundError(NotFoundError):
    entity = "order"


class DriverNotFoundError(NotFoundError):
    entity = "driver"


class LedgerEntryNotFoundError(NotFoundError):
    entity = "ledger entry"


# Business rules


class OutOfStockError(MarketKernelError):
    """Product is not active or has less quantity than requested."""

    code: str = "OUT_OF_STOCK"

    def __init__(self, product_id: UUID, requested: int, available: int | None = None):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Product {product_id} cannot supply {requested} unit(s)"
            + (f" (available: {available})" if available is not None else "")
        )


class InsufficientBalanceError(MarketKernelError):
    """Wallet balance cannot cover the requested debit."""

    code: str = "INSUFFICIENT_BALANCE"

    def __init__(self, user_id: UUID, required: int, available: int | None = None):
        self.user_id = user_id
        self.required = required
        self.available = available
        super().__init__(
            f"Wallet of user {user_id} cannot cover {required}"
            + (f" (balance: {available})" if available is not None else "")
        )


class NotCancellableError(MarketKernelError):
    """Order cannot be cancelled by this caller in its current state."""

    code: str = "NOT_CANCELLABLE"

    def __init__(self, order_id: UUID, status: str | None, reason: str):
        self.order_id = order_id
        self.status = status
        self.reason = reason
        super().__init__(f"Order {order_id} cannot be cancelled: {reason}")


class InvalidTransitionError(MarketKernelError):
    """Status change requested out of sequence."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, entity_id: UUID, current: str, target: str):
        self.entity_id = entity_id
        self.current = current
        self.target = target
        super().__init__(f"Cannot move {entity_id} from '{current}' to '{target}'")


class DriverUnavailableError(MarketKernelError):
    """Driver is not in the available state."""

    code: str = "DRIVER_UNAVAILABLE"

    def __init__(self, driver_id: UUID, status: str | None):
        self.driver_id = driver_id
        self.status = status
        super().__init__(f"Driver {driver_id} is not available (status: {status})")


class SelfTransferNotAllowedError(MarketKernelError):
    """Sender and recipient of a transfer are the same user."""

    code: str = "SELF_TRANSFER_NOT_ALLOWED"

    def __init__(self, user_id: UUID):
        self.user_id = user_id
        super().__init__(f"User {user_id} cannot transfer to their own wallet")


class AuthorizationError(MarketKernelError):
    """Caller is not permitted to perform the action."""

    code: str = "FORBIDDEN"

    def __init__(self, user_id: UUID, role: str, action: str, reason: str | None = None):
        self.user_id = user_id
        self.role = role
        self.action = action
        self.reason = reason
        super().__init__(
            f"User {user_id} ({role}) may not perform {action}"
            + (f": {reason}" if reason else "")
        )


# Storage


class StorageError(MarketKernelError):
    """Base exception for failures reported by the backing store."""

    code: str = "STORAGE_ERROR"


class ConcurrencyConflictError(StorageError):
    """
    The unit of work lost a race with a concurrent writer.

    Safe to retry: nothing was committed.
    """

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, operation: str, detail: str, retries_exhausted: bool = False):
        self.operation = operation
        self.detail = detail
        self.retries_exhausted = retries_exhausted
        super().__init__(
            f"Concurrent update conflict during {operation}: {detail}"
            + (" (retries exhausted, try again)" if retries_exhausted else "")
        )


class PersistenceFailureError(StorageError):
    """
    The backing store failed for a reason other than a concurrency conflict.

    Not retried automatically: the effect of the failed attempt is unknown
    to the caller and blind retries risk duplicate money movement.
    """

    code: str = "PERSISTENCE_FAILURE"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Persistence failure during {operation}: {detail}")
