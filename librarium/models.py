from __future__ import annotations

import sqlite3
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from librarium.enums import AccountStatus, CopyStatus, LoanStatus, ReservationStatus, Role


def _parse_ts(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _serialize(data: Dict[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, datetime):
            out[key] = value.isoformat()
        elif hasattr(value, "value"):
            out[key] = value.value
        else:
            out[key] = value
    return out


@dataclass
class Member:
    """A registered patron; only ``account_status`` matters to circulation."""

    id: str
    email: str
    full_name: str
    password_hash: str
    role: Role
    account_status: AccountStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.account_status is AccountStatus.ACTIVE

    def to_dict(self) -> Dict[str, Any]:
        data = _serialize(asdict(self))
        # Credential hashes never leave the core
        data.pop("password_hash", None)
        return data

    @staticmethod
    def from_row(row: sqlite3.Row) -> "Member":
        return Member(
            id=row["id"],
            email=row["email"],
            full_name=row["full_name"],
            password_hash=row["password_hash"],
            role=Role(row["role"]),
            account_status=AccountStatus(row["account_status"]),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )


@dataclass
class Book:
    id: str
    title: str
    isbn: Optional[str] = None
    year: Optional[int] = None
    genre: Optional[str] = None
    authors: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_row(row: sqlite3.Row) -> "Book":
        return Book(
            id=row["id"],
            title=row["title"],
            isbn=row["isbn"],
            year=row["year"],
            genre=row["genre"],
            authors=row["authors"],
        )


@dataclass
class BookCopy:
    id: int
    book_id: str
    status: CopyStatus
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(asdict(self))

    @staticmethod
    def from_row(row: sqlite3.Row) -> "BookCopy":
        return BookCopy(
            id=row["id"],
            book_id=row["book_id"],
            status=CopyStatus(row["status"]),
            updated_at=_parse_ts(row["updated_at"]),
        )


@dataclass
class Loan:
    id: str
    member_id: str
    copy_id: int
    loan_date: datetime
    due_date: datetime
    status: LoanStatus
    return_date: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(asdict(self))

    @staticmethod
    def from_row(row: sqlite3.Row) -> "Loan":
        return Loan(
            id=row["id"],
            member_id=row["member_id"],
            copy_id=row["copy_id"],
            loan_date=_parse_ts(row["loan_date"]),
            due_date=_parse_ts(row["due_date"]),
            status=LoanStatus(row["status"]),
            return_date=_parse_ts(row["return_date"]),
        )


@dataclass
class Reservation:
    id: str
    book_id: str
    member_id: str
    reservation_date: datetime
    status: ReservationStatus
    queue_position: int
    # Copy held for this member once the reservation is fulfilled
    copy_id: Optional[int] = None

    @property
    def is_hold(self) -> bool:
        return self.status is ReservationStatus.FULFILLED and self.copy_id is not None

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(asdict(self))

    @staticmethod
    def from_row(row: sqlite3.Row) -> "Reservation":
        return Reservation(
            id=row["id"],
            book_id=row["book_id"],
            member_id=row["member_id"],
            reservation_date=_parse_ts(row["reservation_date"]),
            status=ReservationStatus(row["status"]),
            queue_position=row["queue_position"],
            copy_id=row["copy_id"],
        )
