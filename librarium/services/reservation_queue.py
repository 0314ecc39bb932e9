"""Reservation Queue: per-book wait lists.

Pending reservations of a book always hold positions ``1..n``. Positions are
handed out and compacted inside ``BEGIN IMMEDIATE`` transactions, so
concurrent requests for the same book serialize on the database write lock.
"""

import logging
import sqlite3
from datetime import datetime
from typing import List, Optional

from librarium.context import RequestContext
from librarium.enums import ReservationStatus
from librarium.errors import BadRequestError, NotFoundError
from librarium.models import Reservation
from librarium.pagination import Pagination
from librarium.repositories import ReservationRepository, new_id
from librarium.services.base import Service
from librarium.services.holds import cancel_hold, end_hold, settle_book
from librarium.services.members import require_active_member


class ReservationQueue(Service):
    def create_reservation(self, ctx: RequestContext, book_id: str, member_id: str) -> Reservation:
        """Join the book's queue; with a copy on the shelf the reservation is fulfilled straight away."""
        logger = ctx.logger("ReservationQueue.create_reservation")
        logger.info("received create reservation request book=%s member=%s", book_id, member_id)
        with self.unit_of_work(logger, entity="reservation", referenced="book") as conn:
            reservation = self.enqueue(conn, logger, book_id, member_id)
            if settle_book(conn, logger, book_id):
                reservation = ReservationRepository(conn).get_by_id(reservation.id)
        logger.info("reservation %s created at position %d", reservation.id, reservation.queue_position)
        return reservation

    def update_reservation(self, ctx: RequestContext, reservation_id: str, status: str) -> Reservation:
        """Move a pending reservation out of the queue, or cancel a hold.

        Cancelling a hold passes its copy to the next eligible member, or back
        to the shelf.
        """
        logger = ctx.logger("ReservationQueue.update_reservation")
        logger.info("received update reservation request reservation=%s status=%s", reservation_id, status)
        new_status = ReservationStatus.parse(status)
        if new_status is None:
            raise BadRequestError("status invalid")

        with self.unit_of_work(logger, entity="reservation") as conn:
            reservation = self._get(conn, logger, reservation_id)
            if reservation.is_hold and new_status is ReservationStatus.CANCELLED:
                cancel_hold(conn, logger, reservation)
            elif reservation.status is not ReservationStatus.PENDING:
                logger.warning("reservation %s is %s", reservation_id, reservation.status.value)
                raise BadRequestError("reservation not pending")
            elif new_status is not ReservationStatus.PENDING:
                self.leave_queue(conn, logger, reservation, new_status)
            return ReservationRepository(conn).get_by_id(reservation_id)

    def delete_reservation(self, ctx: RequestContext, reservation_id: str) -> None:
        logger = ctx.logger("ReservationQueue.delete_reservation")
        logger.info("received delete reservation request reservation=%s", reservation_id)
        with self.unit_of_work(logger, entity="reservation") as conn:
            reservation = self._get(conn, logger, reservation_id)
            repo = ReservationRepository(conn)
            repo.delete_by_id(reservation_id)
            if reservation.status is ReservationStatus.PENDING:
                self.compact_queue(conn, logger, reservation.book_id, reservation.queue_position)
            elif reservation.is_hold:
                end_hold(conn, logger, reservation)
        logger.info("reservation %s deleted", reservation_id)

    def get_reservation_by_id(self, ctx: RequestContext, reservation_id: str) -> Reservation:
        logger = ctx.logger("ReservationQueue.get_reservation_by_id")
        with self.unit_of_work(logger, entity="reservation", write=False) as conn:
            return self._get(conn, logger, reservation_id)

    def get_all_reservations(self, ctx: RequestContext,
                             pagination: Optional[Pagination] = None) -> List[Reservation]:
        logger = ctx.logger("ReservationQueue.get_all_reservations")
        with self.unit_of_work(logger, entity="reservation", write=False) as conn:
            reservations = ReservationRepository(conn).find_all(pagination or Pagination())
        logger.info("%d reservations fetched", len(reservations))
        return reservations

    def get_queue(self, ctx: RequestContext, book_id: str) -> List[Reservation]:
        """Pending reservations for a book, head first."""
        logger = ctx.logger("ReservationQueue.get_queue")
        with self.unit_of_work(logger, entity="reservation", write=False) as conn:
            return ReservationRepository(conn).find_pending(book_id)

    # ------------------------- Transaction steps ------------------------- #
    def enqueue(self, conn: sqlite3.Connection, logger: logging.LoggerAdapter,
                book_id: str, member_id: str) -> Reservation:
        require_active_member(conn, logger, member_id)
        repo = ReservationRepository(conn)
        reservation = Reservation(
            id=new_id(),
            book_id=book_id,
            member_id=member_id,
            reservation_date=datetime.now(),
            status=ReservationStatus.PENDING,
            queue_position=repo.last_pending_position(book_id) + 1,
        )
        return repo.create(reservation)

    def leave_queue(self, conn: sqlite3.Connection, logger: logging.LoggerAdapter, reservation: Reservation,
                    status: ReservationStatus, copy_id: Optional[int] = None) -> None:
        """Move a pending reservation to ``status`` and close the gap it leaves."""
        ReservationRepository(conn).update_status(reservation.id, status, copy_id=copy_id)
        self.compact_queue(conn, logger, reservation.book_id, reservation.queue_position)

    def compact_queue(self, conn: sqlite3.Connection, logger: logging.LoggerAdapter,
                      book_id: str, position: int) -> int:
        moved = ReservationRepository(conn).compact_queue(book_id, position)
        logger.info("queue for book %s compacted after position %d (%d moved)", book_id, position, moved)
        return moved

    def _get(self, conn: sqlite3.Connection, logger: logging.LoggerAdapter, reservation_id: str) -> Reservation:
        reservation = ReservationRepository(conn).get_by_id(reservation_id)
        if reservation is None:
            logger.warning("reservation %s not found", reservation_id)
            raise NotFoundError("reservation")
        return reservation
