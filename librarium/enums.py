"""Status vocabularies shared by the circulation entities."""

from enum import Enum
from typing import Optional, Type, TypeVar

E = TypeVar("E", bound="StatusEnum")


class StatusEnum(str, Enum):
    """String-valued enum that parses loose user tokens."""

    @classmethod
    def parse(cls: Type[E], token: Optional[str]) -> Optional[E]:
        """Return the member for a case-insensitive token, or None if unknown."""
        if token is None:
            return None
        cleaned = token.strip().lower()
        for member in cls:
            if member.value == cleaned:
                return member
        return None

    def __str__(self) -> str:
        return self.value


class AccountStatus(StatusEnum):
    ACTIVE = "active"
    SUSPENDED = "suspended"


class Role(StatusEnum):
    MEMBER = "member"
    ADMIN = "admin"


class CopyStatus(StatusEnum):
    AVAILABLE = "available"
    LOANED = "loaned"
    RESERVED = "reserved"
    DAMAGED = "damaged"
    LOST = "lost"


class LoanStatus(StatusEnum):
    ACTIVE = "active"
    OVERDUE = "overdue"
    RETURNED = "returned"

    @property
    def is_open(self) -> bool:
        return self in (LoanStatus.ACTIVE, LoanStatus.OVERDUE)


class ReservationStatus(StatusEnum):
    PENDING = "pending"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"
