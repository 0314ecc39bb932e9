"""Storage primitives over an open SQLite connection.

Repositories never commit: the caller owns the transaction (see
``database.transaction``). Lookups return ``None`` for missing or
soft-deleted rows and writes return affected-row counts; mapping those onto
the error taxonomy is the services' job.
"""

import sqlite3
import uuid
from datetime import datetime
from typing import List, Optional

from librarium.enums import AccountStatus, CopyStatus, LoanStatus, ReservationStatus
from librarium.models import Book, BookCopy, Loan, Member, Reservation
from librarium.pagination import Pagination


def _now() -> str:
    return datetime.now().isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


class _Repository:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn


class MemberRepository(_Repository):
    COLUMNS = "id, email, password_hash, full_name, role, account_status, created_at, updated_at"

    def create(self, member: Member) -> Member:
        now = _now()
        self.conn.execute(
            """
            INSERT INTO members (id, email, password_hash, full_name, role, account_status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (member.id, member.email, member.password_hash, member.full_name,
             member.role.value, member.account_status.value, now, now),
        )
        return self.get_by_id(member.id)

    def get_by_id(self, member_id: str) -> Optional[Member]:
        row = self.conn.execute(
            f"SELECT {self.COLUMNS} FROM members WHERE id = ? AND deleted_at IS NULL",
            (member_id,),
        ).fetchone()
        return Member.from_row(row) if row else None

    def update_status(self, member_id: str, status: AccountStatus) -> int:
        cursor = self.conn.execute(
            "UPDATE members SET account_status = ?, updated_at = ? WHERE id = ? AND deleted_at IS NULL",
            (status.value, _now(), member_id),
        )
        return cursor.rowcount

    def update_profile(self, member_id: str, email: Optional[str] = None, full_name: Optional[str] = None,
                       password_hash: Optional[str] = None) -> int:
        """Overwrite the given fields; ``None`` keeps the stored value."""
        cursor = self.conn.execute(
            """
            UPDATE members SET email = COALESCE(?, email), full_name = COALESCE(?, full_name),
                password_hash = COALESCE(?, password_hash), updated_at = ?
            WHERE id = ? AND deleted_at IS NULL
            """,
            (email, full_name, password_hash, _now(), member_id),
        )
        return cursor.rowcount

    def delete_by_id(self, member_id: str) -> int:
        now = _now()
        cursor = self.conn.execute(
            "UPDATE members SET deleted_at = ?, updated_at = ? WHERE id = ? AND deleted_at IS NULL",
            (now, now, member_id),
        )
        return cursor.rowcount

    def find_all(self, pagination: Pagination) -> List[Member]:
        rows = self.conn.execute(
            f"""
            SELECT {self.COLUMNS} FROM members WHERE deleted_at IS NULL
            ORDER BY created_at, id LIMIT ? OFFSET ?
            """,
            (pagination.limit, pagination.offset),
        ).fetchall()
        return [Member.from_row(row) for row in rows]


class BookRepository(_Repository):
    def create(self, book: Book) -> Book:
        now = _now()
        self.conn.execute(
            """
            INSERT INTO books (id, title, isbn, year, genre, authors, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (book.id, book.title, book.isbn, book.year, book.genre, book.authors, now, now),
        )
        return book

    def get_by_id(self, book_id: str) -> Optional[Book]:
        row = self.conn.execute(
            "SELECT id, title, isbn, year, genre, authors FROM books WHERE id = ? AND deleted_at IS NULL",
            (book_id,),
        ).fetchone()
        return Book.from_row(row) if row else None


class BookCopyRepository(_Repository):
    COLUMNS = "id, book_id, status, updated_at"

    def create_batch(self, book_id: str, status: CopyStatus, count: int) -> List[BookCopy]:
        now = _now()
        ids = []
        for _ in range(count):
            cursor = self.conn.execute(
                "INSERT INTO book_copies (book_id, status, created_at, updated_at) VALUES (?, ?, ?, ?)",
                (book_id, status.value, now, now),
            )
            ids.append(cursor.lastrowid)
        return [self.get_by_id(copy_id) for copy_id in ids]

    def get_by_id(self, copy_id: int) -> Optional[BookCopy]:
        row = self.conn.execute(
            f"SELECT {self.COLUMNS} FROM book_copies WHERE id = ? AND deleted_at IS NULL",
            (copy_id,),
        ).fetchone()
        return BookCopy.from_row(row) if row else None

    def update_status(self, copy_id: int, status: CopyStatus) -> int:
        cursor = self.conn.execute(
            "UPDATE book_copies SET status = ?, updated_at = ? WHERE id = ? AND deleted_at IS NULL",
            (status.value, _now(), copy_id),
        )
        return cursor.rowcount

    def transition_status(self, copy_id: int, from_status: CopyStatus, to_status: CopyStatus) -> int:
        """Conditional write: only flips the copy if it is still in ``from_status``."""
        cursor = self.conn.execute(
            """
            UPDATE book_copies SET status = ?, updated_at = ?
            WHERE id = ? AND status = ? AND deleted_at IS NULL
            """,
            (to_status.value, _now(), copy_id, from_status.value),
        )
        return cursor.rowcount

    def find_by_condition(self, pagination: Pagination, book_id: Optional[str] = None,
                          status: Optional[CopyStatus] = None) -> List[BookCopy]:
        clauses = ["deleted_at IS NULL"]
        params: list = []
        if book_id is not None:
            clauses.append("book_id = ?")
            params.append(book_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        params.extend([pagination.limit, pagination.offset])
        rows = self.conn.execute(
            f"""
            SELECT {self.COLUMNS} FROM book_copies
            WHERE {' AND '.join(clauses)}
            ORDER BY id LIMIT ? OFFSET ?
            """,
            params,
        ).fetchall()
        return [BookCopy.from_row(row) for row in rows]

    def available_ids(self, book_id: str) -> List[int]:
        rows = self.conn.execute(
            "SELECT id FROM book_copies WHERE book_id = ? AND status = ? AND deleted_at IS NULL ORDER BY id",
            (book_id, CopyStatus.AVAILABLE.value),
        ).fetchall()
        return [row["id"] for row in rows]

    def count_by_status(self, book_id: str, status: CopyStatus) -> int:
        row = self.conn.execute(
            "SELECT COUNT(*) FROM book_copies WHERE book_id = ? AND status = ? AND deleted_at IS NULL",
            (book_id, status.value),
        ).fetchone()
        return row[0]

    def delete_by_id(self, copy_id: int) -> int:
        now = _now()
        cursor = self.conn.execute(
            "UPDATE book_copies SET deleted_at = ?, updated_at = ? WHERE id = ? AND deleted_at IS NULL",
            (now, now, copy_id),
        )
        return cursor.rowcount


class LoanRepository(_Repository):
    COLUMNS = "id, member_id, copy_id, loan_date, due_date, return_date, status"

    def create(self, loan: Loan) -> Loan:
        now = _now()
        self.conn.execute(
            """
            INSERT INTO loans (id, member_id, copy_id, loan_date, due_date, status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (loan.id, loan.member_id, loan.copy_id, loan.loan_date.isoformat(),
             loan.due_date.isoformat(), loan.status.value, now, now),
        )
        return loan

    def get_by_id(self, loan_id: str) -> Optional[Loan]:
        row = self.conn.execute(
            f"SELECT {self.COLUMNS} FROM loans WHERE id = ? AND deleted_at IS NULL",
            (loan_id,),
        ).fetchone()
        return Loan.from_row(row) if row else None

    def find_open_by_copy(self, copy_id: int) -> Optional[Loan]:
        row = self.conn.execute(
            f"""
            SELECT {self.COLUMNS} FROM loans
            WHERE copy_id = ? AND status IN (?, ?) AND deleted_at IS NULL
            """,
            (copy_id, LoanStatus.ACTIVE.value, LoanStatus.OVERDUE.value),
        ).fetchone()
        return Loan.from_row(row) if row else None

    def update_status(self, loan_id: str, status: LoanStatus,
                      return_date: Optional[datetime] = None) -> int:
        cursor = self.conn.execute(
            """
            UPDATE loans SET status = ?, return_date = COALESCE(?, return_date), updated_at = ?
            WHERE id = ? AND deleted_at IS NULL
            """,
            (status.value, return_date.isoformat() if return_date else None, _now(), loan_id),
        )
        return cursor.rowcount

    def mark_overdue(self, now: datetime) -> int:
        cursor = self.conn.execute(
            """
            UPDATE loans SET status = ?, updated_at = ?
            WHERE status = ? AND due_date < ? AND deleted_at IS NULL
            """,
            (LoanStatus.OVERDUE.value, _now(), LoanStatus.ACTIVE.value, now.isoformat()),
        )
        return cursor.rowcount

    def delete_by_id(self, loan_id: str) -> int:
        now = _now()
        cursor = self.conn.execute(
            "UPDATE loans SET deleted_at = ?, updated_at = ? WHERE id = ? AND deleted_at IS NULL",
            (now, now, loan_id),
        )
        return cursor.rowcount

    def find_all(self, pagination: Pagination) -> List[Loan]:
        rows = self.conn.execute(
            f"""
            SELECT {self.COLUMNS} FROM loans WHERE deleted_at IS NULL
            ORDER BY loan_date, id LIMIT ? OFFSET ?
            """,
            (pagination.limit, pagination.offset),
        ).fetchall()
        return [Loan.from_row(row) for row in rows]


class ReservationRepository(_Repository):
    COLUMNS = "id, book_id, member_id, copy_id, reservation_date, status, queue_position"

    def create(self, reservation: Reservation) -> Reservation:
        now = _now()
        self.conn.execute(
            """
            INSERT INTO reservations (
                id, book_id, member_id, reservation_date, status, queue_position, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (reservation.id, reservation.book_id, reservation.member_id,
             reservation.reservation_date.isoformat(), reservation.status.value,
             reservation.queue_position, now, now),
        )
        return reservation

    def get_by_id(self, reservation_id: str) -> Optional[Reservation]:
        row = self.conn.execute(
            f"SELECT {self.COLUMNS} FROM reservations WHERE id = ? AND deleted_at IS NULL",
            (reservation_id,),
        ).fetchone()
        return Reservation.from_row(row) if row else None

    def last_pending_position(self, book_id: str) -> int:
        row = self.conn.execute(
            """
            SELECT COALESCE(MAX(queue_position), 0) FROM reservations
            WHERE book_id = ? AND status = ? AND deleted_at IS NULL
            """,
            (book_id, ReservationStatus.PENDING.value),
        ).fetchone()
        return row[0]

    def update_status(self, reservation_id: str, status: ReservationStatus,
                      copy_id: Optional[int] = None) -> int:
        cursor = self.conn.execute(
            """
            UPDATE reservations SET status = ?, copy_id = COALESCE(?, copy_id), updated_at = ?
            WHERE id = ? AND deleted_at IS NULL
            """,
            (status.value, copy_id, _now(), reservation_id),
        )
        return cursor.rowcount

    def compact_queue(self, book_id: str, after_position: int) -> int:
        """Close the gap left at ``after_position`` in the book's pending queue."""
        cursor = self.conn.execute(
            """
            UPDATE reservations SET queue_position = queue_position - 1, updated_at = ?
            WHERE book_id = ? AND status = ? AND queue_position > ? AND deleted_at IS NULL
            """,
            (_now(), book_id, ReservationStatus.PENDING.value, after_position),
        )
        return cursor.rowcount

    def find_pending(self, book_id: str) -> List[Reservation]:
        rows = self.conn.execute(
            f"""
            SELECT {self.COLUMNS} FROM reservations
            WHERE book_id = ? AND status = ? AND deleted_at IS NULL
            ORDER BY queue_position
            """,
            (book_id, ReservationStatus.PENDING.value),
        ).fetchall()
        return [Reservation.from_row(row) for row in rows]

    def find_hold(self, copy_id: int) -> Optional[Reservation]:
        """The fulfilled reservation currently holding ``copy_id``, if any."""
        row = self.conn.execute(
            f"""
            SELECT {self.COLUMNS} FROM reservations
            WHERE copy_id = ? AND status = ? AND deleted_at IS NULL
            ORDER BY updated_at DESC LIMIT 1
            """,
            (copy_id, ReservationStatus.FULFILLED.value),
        ).fetchone()
        return Reservation.from_row(row) if row else None

    def first_eligible(self, book_id: str) -> Optional[Reservation]:
        """Head of the book's queue, skipping members who cannot borrow right now."""
        columns = ", ".join(f"r.{c.strip()}" for c in self.COLUMNS.split(","))
        row = self.conn.execute(
            f"""
            SELECT {columns} FROM reservations r
            JOIN members m ON m.id = r.member_id
            WHERE r.book_id = ? AND r.status = ? AND r.deleted_at IS NULL
              AND m.account_status = ? AND m.deleted_at IS NULL
            ORDER BY r.queue_position LIMIT 1
            """,
            (book_id, ReservationStatus.PENDING.value, AccountStatus.ACTIVE.value),
        ).fetchone()
        return Reservation.from_row(row) if row else None

    def find_by_member(self, member_id: str, status: ReservationStatus) -> List[Reservation]:
        rows = self.conn.execute(
            f"""
            SELECT {self.COLUMNS} FROM reservations
            WHERE member_id = ? AND status = ? AND deleted_at IS NULL
            ORDER BY reservation_date, id
            """,
            (member_id, status.value),
        ).fetchall()
        return [Reservation.from_row(row) for row in rows]

    def requeue_at_head(self, reservation_id: str, book_id: str) -> int:
        """Put a reservation back in front of the book's pending queue."""
        now = _now()
        self.conn.execute(
            """
            UPDATE reservations SET queue_position = queue_position + 1, updated_at = ?
            WHERE book_id = ? AND status = ? AND deleted_at IS NULL
            """,
            (now, book_id, ReservationStatus.PENDING.value),
        )
        cursor = self.conn.execute(
            """
            UPDATE reservations SET status = ?, queue_position = 1, copy_id = NULL, updated_at = ?
            WHERE id = ? AND deleted_at IS NULL
            """,
            (ReservationStatus.PENDING.value, now, reservation_id),
        )
        return cursor.rowcount

    def release_hold(self, reservation_id: str) -> int:
        cursor = self.conn.execute(
            "UPDATE reservations SET copy_id = NULL, updated_at = ? WHERE id = ?",
            (_now(), reservation_id),
        )
        return cursor.rowcount

    def delete_by_id(self, reservation_id: str) -> int:
        now = _now()
        cursor = self.conn.execute(
            "UPDATE reservations SET deleted_at = ?, updated_at = ? WHERE id = ? AND deleted_at IS NULL",
            (now, now, reservation_id),
        )
        return cursor.rowcount

    def find_all(self, pagination: Pagination) -> List[Reservation]:
        rows = self.conn.execute(
            f"""
            SELECT {self.COLUMNS} FROM reservations WHERE deleted_at IS NULL
            ORDER BY reservation_date, id LIMIT ? OFFSET ?
            """,
            (pagination.limit, pagination.offset),
        ).fetchall()
        return [Reservation.from_row(row) for row in rows]
