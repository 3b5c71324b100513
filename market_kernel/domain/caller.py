"""
CallerContext -- explicit identity of the party invoking an operation.

Every engine operation receives a CallerContext argument.  Nothing in the
kernel reads the caller from ambient request or session state.
"""

from dataclasses import dataclass
from uuid import UUID

from market_kernel.models.user import UserRole


@dataclass(frozen=True)
class CallerContext:
    """Who is calling, and in which role."""

    user_id: UUID
    role: UserRole
    correlation_id: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.user_id, UUID):
            raise ValueError(f"user_id must be a UUID, got {type(self.user_id).__name__}")
        # Accept plain strings from the request layer
        object.__setattr__(self, "role", UserRole(self.role))

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def log_fields(self) -> dict[str, str | None]:
        """Fields for LogContext.bind()."""
        return {
            "actor_id": str(self.user_id),
            "actor_role": self.role.value,
            "correlation_id": self.correlation_id,
        }
