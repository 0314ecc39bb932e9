"""Hand-over of free copies to the reservation queue.

A *hold* is a ``reserved`` copy tied to a fulfilled reservation through its
``copy_id``. These steps run inside the caller's transaction and keep one
rule: an ``available`` copy never sits next to a pending reservation whose
member could borrow it. Suspended members keep their queue position but are
skipped until they are reactivated.
"""

import logging
import sqlite3
from typing import List, Optional

from librarium.enums import CopyStatus, ReservationStatus
from librarium.models import BookCopy, Reservation
from librarium.repositories import BookCopyRepository, ReservationRepository


def promote_head(conn: sqlite3.Connection, logger: logging.LoggerAdapter,
                 copy: BookCopy) -> Optional[Reservation]:
    """Hold ``copy`` for the first eligible member in its book's queue, if there is one."""
    reservations = ReservationRepository(conn)
    head = reservations.first_eligible(copy.book_id)
    if head is None:
        return None
    BookCopyRepository(conn).update_status(copy.id, CopyStatus.RESERVED)
    reservations.update_status(head.id, ReservationStatus.FULFILLED, copy_id=copy.id)
    reservations.compact_queue(head.book_id, head.queue_position)
    logger.info("copy %s held for member %s (reservation %s)", copy.id, head.member_id, head.id)
    return reservations.get_by_id(head.id)


def pass_on(conn: sqlite3.Connection, logger: logging.LoggerAdapter,
            copy: BookCopy) -> Optional[Reservation]:
    """Route a freed copy to the queue head, or shelve it as ``available``."""
    promoted = promote_head(conn, logger, copy)
    if promoted is None:
        BookCopyRepository(conn).update_status(copy.id, CopyStatus.AVAILABLE)
    return promoted


def settle_book(conn: sqlite3.Connection, logger: logging.LoggerAdapter, book_id: str) -> List[Reservation]:
    """Give the book's available copies to its eligible queue, lowest copy id first."""
    copies = BookCopyRepository(conn)
    promoted = []
    for copy_id in copies.available_ids(book_id):
        head = promote_head(conn, logger, copies.get_by_id(copy_id))
        if head is None:
            break
        promoted.append(head)
    return promoted


def end_hold(conn: sqlite3.Connection, logger: logging.LoggerAdapter,
             reservation: Reservation) -> Optional[Reservation]:
    """Detach a hold from its reservation and pass the copy on."""
    reservations = ReservationRepository(conn)
    reservations.release_hold(reservation.id)
    copy = BookCopyRepository(conn).get_by_id(reservation.copy_id)
    if copy is None or copy.status is not CopyStatus.RESERVED:
        return None
    logger.info("hold on copy %s from reservation %s ended", copy.id, reservation.id)
    return pass_on(conn, logger, copy)


def cancel_hold(conn: sqlite3.Connection, logger: logging.LoggerAdapter,
                reservation: Reservation) -> Optional[Reservation]:
    ReservationRepository(conn).update_status(reservation.id, ReservationStatus.CANCELLED)
    return end_hold(conn, logger, reservation)


def requeue_holder(conn: sqlite3.Connection, logger: logging.LoggerAdapter, copy_id: int) -> Optional[Reservation]:
    """Copy is leaving circulation: its holder goes back to the front of the queue."""
    reservations = ReservationRepository(conn)
    hold = reservations.find_hold(copy_id)
    if hold is None:
        return None
    reservations.requeue_at_head(hold.id, hold.book_id)
    logger.info("reservation %s back at the head of the queue for book %s", hold.id, hold.book_id)
    return reservations.get_by_id(hold.id)


def withdraw_member(conn: sqlite3.Connection, logger: logging.LoggerAdapter, member_id: str,
                    drop_queue: bool = False) -> None:
    """Cancel a member's holds, and with ``drop_queue`` their pending reservations too."""
    reservations = ReservationRepository(conn)
    for hold in reservations.find_by_member(member_id, ReservationStatus.FULFILLED):
        if hold.is_hold:
            cancel_hold(conn, logger, hold)
    if not drop_queue:
        return
    for pending in reservations.find_by_member(member_id, ReservationStatus.PENDING):
        # Positions shift as earlier entries leave, so reload before compacting
        current = reservations.get_by_id(pending.id)
        reservations.update_status(current.id, ReservationStatus.CANCELLED)
        reservations.compact_queue(current.book_id, current.queue_position)
    logger.info("member %s withdrawn from all queues", member_id)


def settle_member_books(conn: sqlite3.Connection, logger: logging.LoggerAdapter, member_id: str) -> None:
    """A member became eligible again: settle every book they are queued for."""
    pending = ReservationRepository(conn).find_by_member(member_id, ReservationStatus.PENDING)
    for book_id in sorted({r.book_id for r in pending}):
        settle_book(conn, logger, book_id)
