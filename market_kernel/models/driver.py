"""
Module: market_kernel.models.driver
Responsibility: ORM persistence for delivery driver profiles.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One driver profile per user (uq_driver_user).
    - status is busy exactly while an order assigned to the driver is
      shipping.  Only DriverAssignmentCoordinator writes status.
"""

from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from market_kernel.db.base import TrackedBase, UUIDString


class DriverStatus(str, Enum):
    AVAILABLE = "available"
    BUSY = "busy"
    OFFLINE = "offline"


class Driver(TrackedBase):
    __tablename__ = "drivers"

    __table_args__ = (
        UniqueConstraint("user_id", name="uq_driver_user"),
        Index("idx_driver_status", "status"),
    )

    user_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("users.id"),
        nullable=False,
    )

    market_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    vehicle_type: Mapped[str | None] = mapped_column(String(50), nullable=True)

    status: Mapped[DriverStatus] = mapped_column(
        String(20),
        nullable=False,
        default=DriverStatus.OFFLINE,
    )

    rating_sum: Mapped[int] = mapped_column(nullable=False, default=0)

    rating_count: Mapped[int] = mapped_column(nullable=False, default=0)

    @property
    def rating(self) -> float | None:
        if not self.rating_count:
            return None
        return round(self.rating_sum / self.rating_count, 2)

    def __repr__(self) -> str:
        return f"<Driver user={self.user_id} ({self.status})>"
