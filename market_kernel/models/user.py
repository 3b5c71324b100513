"""
Module: market_kernel.models.user
Responsibility: ORM persistence for marketplace users and their role.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - role is fixed for the lifetime of a session; the kernel never changes it.
    - Every user owns exactly one Wallet (see models/wallet.py).
"""

from enum import Enum

from sqlalchemy import Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from market_kernel.db.base import TrackedBase


class UserRole(str, Enum):
    """Role of a marketplace user."""

    BUYER = "buyer"
    SELLER = "seller"
    DRIVER = "driver"
    ADMIN = "admin"


class UserStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"


class User(TrackedBase):
    """
    A buyer, seller, driver or administrator.

    Authentication data lives outside the kernel; this row only carries the
    identity and role the kernel needs for authorization and notifications.
    """

    __tablename__ = "users"

    __table_args__ = (
        UniqueConstraint("email", name="uq_user_email"),
        Index("idx_user_role", "role"),
    )

    name: Mapped[str] = mapped_column(String(120), nullable=False)

    email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    phone: Mapped[str | None] = mapped_column(String(30), nullable=True)

    role: Mapped[UserRole] = mapped_column(String(20), nullable=False)

    status: Mapped[UserStatus] = mapped_column(
        String(20),
        nullable=False,
        default=UserStatus.ACTIVE,
    )

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE

    def __repr__(self) -> str:
        return f"<User {self.name} ({self.role})>"
