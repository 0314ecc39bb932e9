"""Copy Ledger: the status store for physical copies.

The ledger writes whatever status it is told to; the only rule it applies is
that a copy turning ``available`` is offered to the book's queue first (see
``services.holds``). Loan and queue transitions use the conditional
``BookCopyRepository.transition_status`` inside their own transactions.
"""

from typing import List, Optional

from librarium.context import RequestContext
from librarium.enums import CopyStatus
from librarium.errors import BadRequestError, NotFoundError
from librarium.models import BookCopy
from librarium.pagination import Pagination
from librarium.repositories import BookCopyRepository
from librarium.services.base import Service
from librarium.services.holds import requeue_holder, settle_book


def parse_copy_status(token: Optional[str]) -> CopyStatus:
    status = CopyStatus.parse(token)
    if status is None:
        raise BadRequestError("status invalid")
    return status


class CopyLedger(Service):
    def create_batch(self, ctx: RequestContext, book_id: str, initial_status: str = CopyStatus.AVAILABLE.value,
                     count: int = 1) -> List[BookCopy]:
        """Create ``count`` copies of a book; all or none are committed.

        New ``available`` copies go to the book's queue first.
        """
        logger = ctx.logger("CopyLedger.create_batch")
        logger.info("received create copies request book=%s status=%s count=%s", book_id, initial_status, count)
        status = parse_copy_status(initial_status)
        if count < 1:
            raise BadRequestError("count must be positive")

        with self.unit_of_work(logger, entity="copy", referenced="book") as conn:
            repo = BookCopyRepository(conn)
            created = repo.create_batch(book_id, status, count)
            if status is CopyStatus.AVAILABLE:
                settle_book(conn, logger, book_id)
            copies = [repo.get_by_id(c.id) for c in created]
        logger.info("%d copies created for book %s", len(copies), book_id)
        return copies

    def get_by_id(self, ctx: RequestContext, copy_id: int) -> BookCopy:
        logger = ctx.logger("CopyLedger.get_by_id")
        with self.unit_of_work(logger, entity="copy", write=False) as conn:
            copy = BookCopyRepository(conn).get_by_id(copy_id)
        if copy is None:
            logger.warning("copy %s not found", copy_id)
            raise NotFoundError("copy")
        return copy

    def set_status(self, ctx: RequestContext, copy_id: int, new_status: str) -> BookCopy:
        """Unconditional status write; the caller has already checked the prior status.

        Taking a held copy out of ``reserved`` sends its holder back to the
        head of the queue, and a copy made ``available`` is offered to the
        queue before it is shelved.
        """
        logger = ctx.logger("CopyLedger.set_status")
        status = parse_copy_status(new_status)
        logger.info("setting copy %s status to %s", copy_id, status.value)
        with self.unit_of_work(logger, entity="copy") as conn:
            repo = BookCopyRepository(conn)
            copy = repo.get_by_id(copy_id)
            if copy is None:
                logger.warning("copy %s not found", copy_id)
                raise NotFoundError("copy")
            if copy.status is CopyStatus.RESERVED and status is not CopyStatus.RESERVED:
                requeue_holder(conn, logger, copy_id)
            repo.update_status(copy_id, status)
            if status is CopyStatus.AVAILABLE:
                settle_book(conn, logger, copy.book_id)
            return repo.get_by_id(copy_id)

    def find_by_condition(self, ctx: RequestContext, book_id: Optional[str] = None,
                          status: Optional[str] = None,
                          pagination: Optional[Pagination] = None) -> List[BookCopy]:
        logger = ctx.logger("CopyLedger.find_by_condition")
        parsed = parse_copy_status(status) if status else None
        with self.unit_of_work(logger, entity="copy", write=False) as conn:
            copies = BookCopyRepository(conn).find_by_condition(
                pagination or Pagination(), book_id=book_id, status=parsed
            )
        logger.info("%d copies matched book=%s status=%s", len(copies), book_id, status)
        return copies

    def count_available(self, ctx: RequestContext, book_id: str) -> int:
        """Copies a borrower could take right now; damaged, lost and reserved copies never count."""
        logger = ctx.logger("CopyLedger.count_available")
        with self.unit_of_work(logger, entity="copy", write=False) as conn:
            return BookCopyRepository(conn).count_by_status(book_id, CopyStatus.AVAILABLE)

    def delete_copy(self, ctx: RequestContext, copy_id: int) -> None:
        logger = ctx.logger("CopyLedger.delete_copy")
        with self.unit_of_work(logger, entity="copy") as conn:
            repo = BookCopyRepository(conn)
            copy = repo.get_by_id(copy_id)
            if copy is None:
                raise NotFoundError("copy")
            if copy.status is CopyStatus.LOANED:
                logger.warning("refusing to delete copy %s while on loan", copy_id)
                raise BadRequestError("copy on loan")
            holder = requeue_holder(conn, logger, copy_id)
            repo.delete_by_id(copy_id)
            if holder is not None:
                settle_book(conn, logger, copy.book_id)
        logger.info("copy %s deleted", copy_id)
