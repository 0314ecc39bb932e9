import pytest

from librarium.enums import CopyStatus, ReservationStatus
from librarium.errors import BadRequestError


@pytest.fixture
def third_member(desk, ctx):
    return desk.members.register(ctx, "grace@example.com", "Grace Hopper")


@pytest.fixture
def held(desk, ctx, member, other_member, book, copy):
    """``copy`` returned while ``other_member`` was first in the queue."""
    loan = desk.borrow(ctx, member.id, copy.id)
    desk.reservations.create_reservation(ctx, book.id, other_member.id)
    return desk.return_loan(ctx, loan.id).promoted


def _queue_members(desk, ctx, book_id):
    return [(r.member_id, r.queue_position) for r in desk.reservations.get_queue(ctx, book_id)]


def test_cancelled_hold_goes_to_next_in_queue(desk, ctx, book, copy, third_member, held):
    waiting = desk.reservations.create_reservation(ctx, book.id, third_member.id)

    cancelled = desk.reservations.update_reservation(ctx, held.id, "cancelled")
    assert cancelled.status is ReservationStatus.CANCELLED
    assert cancelled.copy_id is None

    promoted = desk.reservations.get_reservation_by_id(ctx, waiting.id)
    assert promoted.status is ReservationStatus.FULFILLED
    assert promoted.copy_id == copy.id
    assert desk.copies.get_by_id(ctx, copy.id).status is CopyStatus.RESERVED
    assert desk.borrow(ctx, third_member.id, copy.id).copy_id == copy.id


def test_cancelled_hold_without_queue_shelves_copy(desk, ctx, book, copy, third_member, held):
    desk.reservations.update_reservation(ctx, held.id, "cancelled")
    assert desk.copies.get_by_id(ctx, copy.id).status is CopyStatus.AVAILABLE
    assert desk.request_book(ctx, third_member.id, book.id).loan.copy_id == copy.id


def test_hold_cannot_be_fulfilled_again(desk, ctx, held):
    with pytest.raises(BadRequestError, match="reservation not pending"):
        desk.reservations.update_reservation(ctx, held.id, "fulfilled")


def test_deleted_hold_frees_copy(desk, ctx, member, other_member, book, copy, held):
    desk.reservations.delete_reservation(ctx, held.id)
    assert desk.copies.get_by_id(ctx, copy.id).status is CopyStatus.AVAILABLE
    assert desk.borrow(ctx, member.id, copy.id).member_id == member.id


def test_suspending_holder_passes_copy_on(desk, ctx, other_member, book, copy, third_member, held):
    desk.reservations.create_reservation(ctx, book.id, third_member.id)

    desk.members.suspend(ctx, other_member.id)
    assert desk.reservations.get_reservation_by_id(ctx, held.id).status is ReservationStatus.CANCELLED
    assert desk.borrow(ctx, third_member.id, copy.id).member_id == third_member.id


def test_deleting_member_leaves_every_queue(desk, ctx, member, other_member, book, copy, third_member):
    desk.borrow(ctx, member.id, copy.id)
    desk.reservations.create_reservation(ctx, book.id, other_member.id)
    desk.reservations.create_reservation(ctx, book.id, third_member.id)

    desk.members.delete(ctx, other_member.id)
    assert _queue_members(desk, ctx, book.id) == [(third_member.id, 1)]


def test_deleting_holder_frees_copy(desk, ctx, other_member, copy, held):
    desk.members.delete(ctx, other_member.id)
    assert desk.copies.get_by_id(ctx, copy.id).status is CopyStatus.AVAILABLE


def test_suspended_member_keeps_place_but_is_skipped(desk, ctx, member, other_member, book, copy, third_member):
    loan = desk.borrow(ctx, member.id, copy.id)
    first = desk.reservations.create_reservation(ctx, book.id, other_member.id)
    desk.reservations.create_reservation(ctx, book.id, third_member.id)
    desk.members.suspend(ctx, other_member.id)

    outcome = desk.return_loan(ctx, loan.id)
    assert outcome.promoted.member_id == third_member.id
    assert desk.reservations.get_reservation_by_id(ctx, first.id).queue_position == 1

    # Reactivation hands over a copy that is already on the shelf
    spare = desk.copies.create_batch(ctx, book.id, "damaged")[0]
    desk.copies.set_status(ctx, spare.id, "available")
    assert desk.copies.get_by_id(ctx, spare.id).status is CopyStatus.AVAILABLE
    desk.members.activate(ctx, other_member.id)
    promoted = desk.reservations.get_reservation_by_id(ctx, first.id)
    assert promoted.status is ReservationStatus.FULFILLED
    assert promoted.copy_id == spare.id


def test_new_copies_serve_queue_before_newcomers(desk, ctx, member, other_member, book, copy, third_member):
    desk.borrow(ctx, member.id, copy.id)
    waiting = desk.request_book(ctx, other_member.id, book.id).reservation

    new_copy = desk.copies.create_batch(ctx, book.id)[0]
    assert new_copy.status is CopyStatus.RESERVED
    assert desk.reservations.get_reservation_by_id(ctx, waiting.id).copy_id == new_copy.id

    latecomer = desk.request_book(ctx, third_member.id, book.id)
    assert latecomer.kind == "reservation"
    assert latecomer.reservation.queue_position == 1


def test_copy_made_available_serves_queue(desk, ctx, member, book, copy):
    desk.copies.set_status(ctx, copy.id, "damaged")
    waiting = desk.reservations.create_reservation(ctx, book.id, member.id)
    assert waiting.status is ReservationStatus.PENDING

    repaired = desk.copies.set_status(ctx, copy.id, "available")
    assert repaired.status is CopyStatus.RESERVED
    assert desk.reservations.get_reservation_by_id(ctx, waiting.id).copy_id == copy.id


def test_reserving_with_copy_on_shelf_is_fulfilled_at_once(desk, ctx, member, book, copy):
    reservation = desk.reservations.create_reservation(ctx, book.id, member.id)
    assert reservation.status is ReservationStatus.FULFILLED
    assert reservation.copy_id == copy.id
    assert desk.reservations.get_queue(ctx, book.id) == []


def test_lost_held_copy_sends_holder_back_to_front(desk, ctx, book, copy, third_member, held):
    desk.reservations.create_reservation(ctx, book.id, third_member.id)

    desk.copies.set_status(ctx, copy.id, "lost")
    requeued = desk.reservations.get_reservation_by_id(ctx, held.id)
    assert requeued.status is ReservationStatus.PENDING
    assert requeued.copy_id is None
    assert _queue_members(desk, ctx, book.id) == [(held.member_id, 1), (third_member.id, 2)]


def test_deleting_held_copy_moves_hold_to_spare(desk, ctx, book, copy, held):
    spare = desk.copies.create_batch(ctx, book.id, "damaged")[0]
    desk.copies.set_status(ctx, spare.id, "available")

    desk.copies.delete_copy(ctx, copy.id)
    moved = desk.reservations.get_reservation_by_id(ctx, held.id)
    assert moved.status is ReservationStatus.FULFILLED
    assert moved.copy_id == spare.id
