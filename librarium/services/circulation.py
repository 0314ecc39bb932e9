"""Circulation desk: the entry point that sequences loans and reservations.

Returning a copy hands it to the head of the book's queue: the copy becomes
``reserved`` and that member's reservation is fulfilled with the copy as a
hold. Only the holder may then borrow it. ``LoanManager.update_loan`` stays
available for staff who need to pick the copy status themselves.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from librarium.context import RequestContext
from librarium.enums import CopyStatus, LoanStatus
from librarium.errors import BadRequestError, NotFoundError
from librarium.models import BookCopy, Loan, Reservation
from librarium.repositories import BookCopyRepository, BookRepository, ReservationRepository
from librarium.services.base import Service
from librarium.services.catalog import Catalog
from librarium.services.copy_ledger import CopyLedger
from librarium.services.holds import promote_head, settle_book
from librarium.services.loan_manager import LoanManager
from librarium.services.members import MemberDirectory, require_active_member
from librarium.services.reservation_queue import ReservationQueue


@dataclass
class RequestOutcome:
    """Result of ``request_book``: exactly one of ``loan``/``reservation`` is set."""

    loan: Optional[Loan] = None
    reservation: Optional[Reservation] = None

    @property
    def kind(self) -> str:
        return "loan" if self.loan is not None else "reservation"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "loan": self.loan.to_dict() if self.loan else None,
            "reservation": self.reservation.to_dict() if self.reservation else None,
        }


@dataclass
class ReturnOutcome:
    loan: Loan
    copy: BookCopy
    promoted: Optional[Reservation] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "loan": self.loan.to_dict(),
            "copy": self.copy.to_dict(),
            "promoted": self.promoted.to_dict() if self.promoted else None,
        }


class CirculationDesk(Service):
    def __init__(self, db_file: Optional[str] = None) -> None:
        super().__init__(db_file)
        self.members = MemberDirectory(db_file)
        self.catalog = Catalog(db_file)
        self.copies = CopyLedger(db_file)
        self.loans = LoanManager(db_file)
        self.reservations = ReservationQueue(db_file)

    def borrow(self, ctx: RequestContext, member_id: str, copy_id: int) -> Loan:
        """Lend a specific copy; a reserved copy only goes to the member it is held for."""
        logger = ctx.logger("CirculationDesk.borrow")
        logger.info("received borrow request member=%s copy=%s", member_id, copy_id)
        with self.unit_of_work(logger, entity="loan") as conn:
            require_active_member(conn, logger, member_id)
            copy = BookCopyRepository(conn).get_by_id(copy_id)
            if copy is None:
                raise NotFoundError("copy")

            from_status = CopyStatus.AVAILABLE
            hold = None
            if copy.status is CopyStatus.RESERVED:
                hold = ReservationRepository(conn).find_hold(copy_id)
                if hold is None or hold.member_id != member_id:
                    logger.warning("copy %s is held for another member", copy_id)
                    raise BadRequestError("copy unavailable")
                from_status = CopyStatus.RESERVED

            loan = self.loans.open_loan(conn, logger, member_id, copy_id, from_status=from_status)
            if hold is not None:
                ReservationRepository(conn).release_hold(hold.id)
                logger.info("hold from reservation %s collected", hold.id)
        logger.info("loan %s opened", loan.id)
        return loan

    def request_book(self, ctx: RequestContext, member_id: str, book_id: str) -> RequestOutcome:
        """Lend an available copy of the book, otherwise join its queue.

        Copies on the shelf are first offered to members already queued, so a
        newcomer only gets one that nobody in the queue can take.
        """
        logger = ctx.logger("CirculationDesk.request_book")
        logger.info("received request for book=%s member=%s", book_id, member_id)
        with self.unit_of_work(logger, entity="reservation", referenced="book") as conn:
            require_active_member(conn, logger, member_id)
            if BookRepository(conn).get_by_id(book_id) is None:
                raise NotFoundError("book")

            settle_book(conn, logger, book_id)
            available = BookCopyRepository(conn).available_ids(book_id)
            if available:
                # The write lock is held, so the lowest id cannot be taken in between
                loan = self.loans.open_loan(conn, logger, member_id, available[0])
                outcome = RequestOutcome(loan=loan)
            else:
                reservation = self.reservations.enqueue(conn, logger, book_id, member_id)
                outcome = RequestOutcome(reservation=reservation)
        logger.info("request for book %s resolved as %s", book_id, outcome.kind)
        return outcome

    def return_loan(self, ctx: RequestContext, loan_id: str) -> ReturnOutcome:
        """Close an open loan and hand the copy to the head of the queue, if any."""
        logger = ctx.logger("CirculationDesk.return_loan")
        logger.info("received return request loan=%s", loan_id)
        with self.unit_of_work(logger, entity="loan") as conn:
            loan = self.loans.close_loan(conn, logger, loan_id, LoanStatus.RETURNED, CopyStatus.AVAILABLE)
            copy = self.loans.copy_of(conn, loan)
            promoted = promote_head(conn, logger, copy)
            copy = BookCopyRepository(conn).get_by_id(copy.id)
        logger.info("loan %s returned, copy %s is %s", loan.id, copy.id, copy.status.value)
        return ReturnOutcome(loan=loan, copy=copy, promoted=promoted)
