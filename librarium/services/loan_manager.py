"""Loan Manager: checkout and return of a specific copy."""

import logging
import sqlite3
from datetime import datetime, timedelta
from typing import List, Optional

from librarium.config import settings
from librarium.context import RequestContext
from librarium.enums import CopyStatus, LoanStatus
from librarium.errors import BadRequestError, NotFoundError
from librarium.models import BookCopy, Loan
from librarium.pagination import Pagination
from librarium.repositories import BookCopyRepository, LoanRepository, new_id
from librarium.services.base import Service
from librarium.services.holds import promote_head
from librarium.services.members import require_active_member

# New statuses a caller may set on an open loan
UPDATABLE_LOAN_STATUSES = (LoanStatus.RETURNED, LoanStatus.OVERDUE)

DEFAULT_COPY_STATUS = {
    LoanStatus.RETURNED: CopyStatus.AVAILABLE,
    LoanStatus.OVERDUE: CopyStatus.LOANED,
}


def _parse_loan_status(token: Optional[str]) -> LoanStatus:
    status = LoanStatus.parse(token)
    if status not in UPDATABLE_LOAN_STATUSES:
        raise BadRequestError("status invalid")
    return status


def _resolve_copy_status(loan_status: LoanStatus, token: Optional[str]) -> CopyStatus:
    if not token:
        return DEFAULT_COPY_STATUS[loan_status]
    copy_status = CopyStatus.parse(token)
    if copy_status is None:
        raise BadRequestError("copy status invalid")
    # A returned loan must free its copy; an overdue one keeps it out.
    # Holds are only made by the queue, never by a return.
    if loan_status is LoanStatus.RETURNED and copy_status in (CopyStatus.LOANED, CopyStatus.RESERVED):
        raise BadRequestError("copy status invalid")
    if loan_status is LoanStatus.OVERDUE and copy_status is not CopyStatus.LOANED:
        raise BadRequestError("copy status invalid")
    return copy_status


class LoanManager(Service):
    def __init__(self, db_file: Optional[str] = None, loan_period_days: Optional[int] = None) -> None:
        super().__init__(db_file)
        self.loan_period = timedelta(days=loan_period_days or settings.loan_period_days)

    # ------------------------- Workflows ------------------------- #
    def create_loan(self, ctx: RequestContext, member_id: str, copy_id: int, *,
                    from_status: CopyStatus = CopyStatus.AVAILABLE) -> Loan:
        logger = ctx.logger("LoanManager.create_loan")
        logger.info("received create loan request member=%s copy=%s", member_id, copy_id)
        with self.unit_of_work(logger, entity="loan") as conn:
            loan = self.open_loan(conn, logger, member_id, copy_id, from_status=from_status)
        logger.info("loan %s created, due %s", loan.id, loan.due_date.isoformat())
        return loan

    def update_loan(self, ctx: RequestContext, loan_id: str, status: str,
                    copy_id: Optional[int] = None, copy_status: Optional[str] = None) -> Loan:
        """Mark a loan returned or overdue and write the copy status in the same transaction.

        ``copy_id`` and ``copy_status`` are supplied by the caller; they default
        to the loan's own copy and the natural status for the new loan state.
        A copy returned as ``available`` is offered to the book's queue first.
        """
        logger = ctx.logger("LoanManager.update_loan")
        logger.info("received update loan request loan=%s status=%s copy_status=%s", loan_id, status, copy_status)
        new_status = _parse_loan_status(status)
        target_copy_status = _resolve_copy_status(new_status, copy_status)

        with self.unit_of_work(logger, entity="loan") as conn:
            loan = self.close_loan(conn, logger, loan_id, new_status, target_copy_status, copy_id=copy_id)
            if target_copy_status is CopyStatus.AVAILABLE:
                promote_head(conn, logger, self.copy_of(conn, loan))
        logger.info("loan %s updated to %s", loan.id, loan.status.value)
        return loan

    def mark_overdue(self, ctx: RequestContext, now: Optional[datetime] = None) -> int:
        """Flag every active loan past its due date as overdue; copies stay loaned."""
        logger = ctx.logger("LoanManager.mark_overdue")
        cutoff = now or datetime.now()
        with self.unit_of_work(logger, entity="loan") as conn:
            count = LoanRepository(conn).mark_overdue(cutoff)
        logger.info("%d loans marked overdue (cutoff %s)", count, cutoff.isoformat())
        return count

    def delete_loan(self, ctx: RequestContext, loan_id: str) -> None:
        """Soft-delete a closed loan; open loans must be returned first."""
        logger = ctx.logger("LoanManager.delete_loan")
        logger.info("received delete loan request loan=%s", loan_id)
        with self.unit_of_work(logger, entity="loan") as conn:
            loans = LoanRepository(conn)
            loan = loans.get_by_id(loan_id)
            if loan is None:
                logger.warning("loan %s not found", loan_id)
                raise NotFoundError("loan")
            if loan.status.is_open:
                logger.warning("refusing to delete loan %s while %s", loan_id, loan.status.value)
                raise BadRequestError("loan not returned")
            loans.delete_by_id(loan_id)
        logger.info("loan %s deleted", loan_id)

    def get_loan_by_id(self, ctx: RequestContext, loan_id: str) -> Loan:
        logger = ctx.logger("LoanManager.get_loan_by_id")
        with self.unit_of_work(logger, entity="loan", write=False) as conn:
            loan = LoanRepository(conn).get_by_id(loan_id)
        if loan is None:
            logger.warning("loan %s not found", loan_id)
            raise NotFoundError("loan")
        return loan

    def get_all_loans(self, ctx: RequestContext, pagination: Optional[Pagination] = None) -> List[Loan]:
        logger = ctx.logger("LoanManager.get_all_loans")
        with self.unit_of_work(logger, entity="loan", write=False) as conn:
            loans = LoanRepository(conn).find_all(pagination or Pagination())
        logger.info("%d loans fetched", len(loans))
        return loans

    # ------------------------- Transaction steps ------------------------- #
    def open_loan(self, conn: sqlite3.Connection, logger: logging.LoggerAdapter, member_id: str,
                  copy_id: int, from_status: CopyStatus = CopyStatus.AVAILABLE) -> Loan:
        """Checkout inside the caller's transaction.

        The availability check and the flip to ``loaned`` are one conditional
        write, so two borrowers can never both win the same copy.
        """
        require_active_member(conn, logger, member_id)

        copies = BookCopyRepository(conn)
        if copies.get_by_id(copy_id) is None:
            logger.warning("copy %s not found", copy_id)
            raise NotFoundError("copy")
        if copies.transition_status(copy_id, from_status, CopyStatus.LOANED) == 0:
            logger.warning("copy %s is not %s", copy_id, from_status.value)
            raise BadRequestError("copy unavailable")

        now = datetime.now()
        loan = Loan(
            id=new_id(),
            member_id=member_id,
            copy_id=copy_id,
            loan_date=now,
            due_date=now + self.loan_period,
            status=LoanStatus.ACTIVE,
        )
        return LoanRepository(conn).create(loan)

    def close_loan(self, conn: sqlite3.Connection, logger: logging.LoggerAdapter, loan_id: str,
                   new_status: LoanStatus, copy_status: CopyStatus,
                   copy_id: Optional[int] = None) -> Loan:
        loans = LoanRepository(conn)
        loan = loans.get_by_id(loan_id)
        if loan is None:
            logger.warning("loan %s not found", loan_id)
            raise NotFoundError("loan")
        if not loan.status.is_open:
            logger.warning("loan %s is already returned", loan_id)
            raise BadRequestError("loan already returned")
        if copy_id is not None and copy_id != loan.copy_id:
            logger.warning("copy %s does not belong to loan %s", copy_id, loan_id)
            raise BadRequestError("copy does not belong to loan")

        return_date = datetime.now() if new_status is LoanStatus.RETURNED else None
        loans.update_status(loan_id, new_status, return_date=return_date)
        if BookCopyRepository(conn).update_status(loan.copy_id, copy_status) == 0:
            raise NotFoundError("copy")
        logger.info("copy %s set to %s", loan.copy_id, copy_status.value)
        return loans.get_by_id(loan_id)

    def copy_of(self, conn: sqlite3.Connection, loan: Loan) -> BookCopy:
        copy = BookCopyRepository(conn).get_by_id(loan.copy_id)
        if copy is None:
            raise NotFoundError("copy")
        return copy
