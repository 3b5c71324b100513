"""
AccountService -- user registration.

Responsibility:
    Creates a user together with their wallet and, for drivers, the driver
    profile, in one unit of work.  The wallet's opening balance is fixed at
    creation and is the reference point for ledger reconciliation.

Architecture position:
    Kernel > Services -- imperative shell.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from market_kernel.domain.clock import Clock
from market_kernel.domain.validation import require_non_negative_int, require_text
from market_kernel.exceptions import UserNotFoundError, ValidationError
from market_kernel.logging_config import get_logger
from market_kernel.models.user import User, UserRole, UserStatus
from market_kernel.services.base import BaseService
from market_kernel.services.driver_coordinator import DriverAssignmentCoordinator
from market_kernel.services.ledger_store import LedgerStore

logger = get_logger("services.account")


class AccountService(BaseService):

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)
        self._ledger = LedgerStore(session, self.clock)
        self._drivers = DriverAssignmentCoordinator(session, self.clock)

    def register_user(
        self,
        name: str,
        role: UserRole | str,
        email: str | None = None,
        phone: str | None = None,
        opening_balance: int = 0,
        vehicle_type: str | None = None,
        market_id: UUID | None = None,
    ) -> User:
        """
        Create a user, their wallet and (for drivers) an offline driver profile.

        Raises:
            ValidationError: bad name, role, opening balance, phone or vehicle
                type, or the email is already registered.
        """
        name = require_text("name", name, max_length=120)
        try:
            role = UserRole(role)
        except ValueError:
            raise ValidationError("role", f"unknown role {role!r}") from None
        opening_balance = require_non_negative_int("opening_balance", opening_balance)

        if email is not None:
            email = require_text("email", email, max_length=255).lower()
            taken = self.session.execute(
                select(User.id).where(User.email == email)
            ).scalar_one_or_none()
            if taken is not None:
                raise ValidationError("email", "already registered")
        if phone is not None:
            phone = require_text("phone", phone, max_length=30)
        if vehicle_type is not None:
            vehicle_type = require_text("vehicle_type", vehicle_type, max_length=50)

        now = self.clock.now()
        user = User(
            name=name,
            role=role.value,
            email=email,
            phone=phone,
            status=UserStatus.ACTIVE.value,
            created_at=now,
            updated_at=now,
        )
        self.session.add(user)
        self.session.flush()

        self._ledger.ensure_wallet(user.id, opening_balance=opening_balance)
        if role == UserRole.DRIVER:
            self._drivers.register_driver(
                user.id, vehicle_type=vehicle_type, market_id=market_id
            )

        logger.info(
            "user_registered",
            extra={
                "user_id": str(user.id),
                "role": role.value,
                "opening_balance": opening_balance,
            },
        )
        return user

    def get_user(self, user_id: UUID) -> User:
        user = self.session.get(User, user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    def require_active_user(self, user_id: UUID) -> User:
        user = self.get_user(user_id)
        if not user.is_active:
            raise ValidationError("user_id", f"user {user_id} is not active")
        return user
