from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta

import pytest

from librarium.context import new_context
from librarium.enums import CopyStatus, LoanStatus, ReservationStatus
from librarium.errors import BadRequestError, CirculationError, NotFoundError
from librarium.services import LoanManager


def _open_loans_for(desk, ctx, copy_id):
    return [
        loan for loan in desk.loans.get_all_loans(ctx)
        if loan.copy_id == copy_id and loan.status.is_open
    ]


def test_borrow_then_return(desk, ctx, member, copy):
    loan = desk.loans.create_loan(ctx, member.id, copy.id)
    assert loan.status is LoanStatus.ACTIVE
    assert loan.due_date - loan.loan_date == timedelta(days=7)
    assert desk.copies.get_by_id(ctx, copy.id).status is CopyStatus.LOANED

    returned = desk.loans.update_loan(ctx, loan.id, "returned", copy.id, "available")
    assert returned.status is LoanStatus.RETURNED
    assert returned.return_date is not None
    assert desk.copies.get_by_id(ctx, copy.id).status is CopyStatus.AVAILABLE


def test_second_borrower_is_refused(desk, ctx, member, other_member, copy):
    desk.loans.create_loan(ctx, member.id, copy.id)
    with pytest.raises(BadRequestError, match="copy unavailable"):
        desk.loans.create_loan(ctx, other_member.id, copy.id)
    assert len(_open_loans_for(desk, ctx, copy.id)) == 1


def test_loan_period_is_configurable(db_file, ctx, member, copy):
    manager = LoanManager(db_file, loan_period_days=14)
    loan = manager.create_loan(ctx, member.id, copy.id)
    assert loan.due_date - loan.loan_date == timedelta(days=14)


def test_suspended_member_cannot_borrow(desk, ctx, member, copy):
    desk.members.suspend(ctx, member.id)
    with pytest.raises(BadRequestError, match="account suspended"):
        desk.loans.create_loan(ctx, member.id, copy.id)
    assert desk.copies.get_by_id(ctx, copy.id).status is CopyStatus.AVAILABLE


def test_unknown_member_and_copy(desk, ctx, member, copy):
    with pytest.raises(NotFoundError, match="member not found"):
        desk.loans.create_loan(ctx, "ghost", copy.id)
    with pytest.raises(NotFoundError, match="copy not found"):
        desk.loans.create_loan(ctx, member.id, 12345)


@pytest.mark.parametrize("status", ["damaged", "lost", "reserved"])
def test_unlendable_copy_is_refused(desk, ctx, member, copy, status):
    desk.copies.set_status(ctx, copy.id, status)
    with pytest.raises(BadRequestError, match="copy unavailable"):
        desk.loans.create_loan(ctx, member.id, copy.id)


def test_concurrent_borrowers_only_one_wins(desk, book):
    ctx = new_context()
    copy = desk.copies.create_batch(ctx, book.id)[0]
    members = [desk.members.register(ctx, f"reader{i}@example.com", f"Reader {i}") for i in range(8)]

    def attempt(member_id):
        try:
            return desk.loans.create_loan(new_context(), member_id, copy.id)
        except CirculationError as exc:
            return exc

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(attempt, [m.id for m in members]))

    wins = [r for r in results if not isinstance(r, CirculationError)]
    losses = [r for r in results if isinstance(r, CirculationError)]
    assert len(wins) == 1
    assert all(isinstance(r, BadRequestError) and r.message == "copy unavailable" for r in losses)
    assert len(_open_loans_for(desk, ctx, copy.id)) == 1
    assert desk.copies.get_by_id(ctx, copy.id).status is CopyStatus.LOANED


def test_update_loan_rejects_bad_status(desk, ctx, member, copy):
    loan = desk.loans.create_loan(ctx, member.id, copy.id)
    for token in ("active", "bogus", ""):
        with pytest.raises(BadRequestError, match="status invalid"):
            desk.loans.update_loan(ctx, loan.id, token)


def test_update_loan_rejects_loaned_copy_status_on_return(desk, ctx, member, copy):
    loan = desk.loans.create_loan(ctx, member.id, copy.id)
    with pytest.raises(BadRequestError, match="copy status invalid"):
        desk.loans.update_loan(ctx, loan.id, "returned", copy_status="loaned")
    assert desk.loans.get_loan_by_id(ctx, loan.id).status is LoanStatus.ACTIVE


def test_update_loan_rejects_foreign_copy(desk, ctx, member, book, copy):
    other_copy = desk.copies.create_batch(ctx, book.id)[0]
    loan = desk.loans.create_loan(ctx, member.id, copy.id)
    with pytest.raises(BadRequestError, match="copy does not belong to loan"):
        desk.loans.update_loan(ctx, loan.id, "returned", copy_id=other_copy.id)


def test_return_as_damaged(desk, ctx, member, copy):
    loan = desk.loans.create_loan(ctx, member.id, copy.id)
    desk.loans.update_loan(ctx, loan.id, "returned", copy_status="damaged")
    assert desk.copies.get_by_id(ctx, copy.id).status is CopyStatus.DAMAGED
    assert desk.copies.count_available(ctx, copy.book_id) == 0


def test_returned_loan_cannot_be_updated_again(desk, ctx, member, copy):
    loan = desk.loans.create_loan(ctx, member.id, copy.id)
    desk.loans.update_loan(ctx, loan.id, "returned")
    with pytest.raises(BadRequestError, match="loan already returned"):
        desk.loans.update_loan(ctx, loan.id, "returned")


def test_overdue_loan_keeps_copy_loaned(desk, ctx, member, copy):
    loan = desk.loans.create_loan(ctx, member.id, copy.id)
    updated = desk.loans.update_loan(ctx, loan.id, "overdue")
    assert updated.status is LoanStatus.OVERDUE
    assert desk.copies.get_by_id(ctx, copy.id).status is CopyStatus.LOANED
    with pytest.raises(BadRequestError, match="copy status invalid"):
        desk.loans.update_loan(ctx, loan.id, "overdue", copy_status="available")

    desk.loans.update_loan(ctx, loan.id, "returned")
    assert desk.copies.get_by_id(ctx, copy.id).status is CopyStatus.AVAILABLE


def test_update_missing_loan(desk, ctx):
    with pytest.raises(NotFoundError, match="loan not found"):
        desk.loans.update_loan(ctx, "missing", "returned")


def test_mark_overdue_sweeps_past_due_loans(desk, ctx, member, book):
    first, second = desk.copies.create_batch(ctx, book.id, count=2)
    loan = desk.loans.create_loan(ctx, member.id, first.id)
    desk.loans.create_loan(ctx, member.id, second.id)

    assert desk.loans.mark_overdue(ctx) == 0
    assert desk.loans.mark_overdue(ctx, now=datetime.now() + timedelta(days=8)) == 2
    assert desk.loans.get_loan_by_id(ctx, loan.id).status is LoanStatus.OVERDUE
    assert desk.copies.get_by_id(ctx, first.id).status is CopyStatus.LOANED
    # Already overdue loans are not counted twice
    assert desk.loans.mark_overdue(ctx, now=datetime.now() + timedelta(days=9)) == 0


def test_copy_is_loaned_iff_open_loan_exists(desk, ctx, member, other_member, book):
    copies = desk.copies.create_batch(ctx, book.id, count=3)
    first = desk.loans.create_loan(ctx, member.id, copies[0].id)
    desk.loans.create_loan(ctx, other_member.id, copies[1].id)
    desk.loans.update_loan(ctx, first.id, "returned")
    desk.loans.create_loan(ctx, other_member.id, copies[0].id)
    desk.loans.mark_overdue(ctx, now=datetime.now() + timedelta(days=30))

    for copy in desk.copies.find_by_condition(ctx, book_id=book.id):
        has_open_loan = bool(_open_loans_for(desk, ctx, copy.id))
        assert (copy.status is CopyStatus.LOANED) == has_open_loan


def test_delete_returned_loan(desk, ctx, member, copy):
    loan = desk.loans.create_loan(ctx, member.id, copy.id)
    desk.loans.update_loan(ctx, loan.id, "returned")
    desk.loans.delete_loan(ctx, loan.id)
    with pytest.raises(NotFoundError):
        desk.loans.get_loan_by_id(ctx, loan.id)
    with pytest.raises(NotFoundError):
        desk.loans.delete_loan(ctx, loan.id)


@pytest.mark.parametrize("overdue", [False, True])
def test_open_loan_cannot_be_deleted(desk, ctx, member, other_member, copy, overdue):
    loan = desk.loans.create_loan(ctx, member.id, copy.id)
    if overdue:
        desk.loans.update_loan(ctx, loan.id, "overdue")
    with pytest.raises(BadRequestError, match="loan not returned"):
        desk.loans.delete_loan(ctx, loan.id)

    assert desk.loans.get_loan_by_id(ctx, loan.id).status.is_open
    assert desk.copies.get_by_id(ctx, copy.id).status is CopyStatus.LOANED

    desk.loans.update_loan(ctx, loan.id, "returned")
    desk.loans.delete_loan(ctx, loan.id)
    assert desk.loans.create_loan(ctx, other_member.id, copy.id).member_id == other_member.id


def test_return_as_reserved_is_rejected(desk, ctx, member, copy):
    loan = desk.loans.create_loan(ctx, member.id, copy.id)
    with pytest.raises(BadRequestError, match="copy status invalid"):
        desk.loans.update_loan(ctx, loan.id, "returned", copy_status="reserved")


def test_update_loan_return_serves_queue_first(desk, ctx, member, other_member, book, copy):
    loan = desk.loans.create_loan(ctx, member.id, copy.id)
    waiting = desk.reservations.create_reservation(ctx, book.id, other_member.id)

    desk.loans.update_loan(ctx, loan.id, "returned")
    assert desk.copies.get_by_id(ctx, copy.id).status is CopyStatus.RESERVED
    held = desk.reservations.get_reservation_by_id(ctx, waiting.id)
    assert held.status is ReservationStatus.FULFILLED
    assert held.copy_id == copy.id


def test_update_loan_return_as_damaged_keeps_queue(desk, ctx, member, other_member, book, copy):
    loan = desk.loans.create_loan(ctx, member.id, copy.id)
    waiting = desk.reservations.create_reservation(ctx, book.id, other_member.id)
    desk.loans.update_loan(ctx, loan.id, "returned", copy_status="damaged")
    assert desk.reservations.get_reservation_by_id(ctx, waiting.id).status is ReservationStatus.PENDING


def test_get_loan_by_id_is_idempotent(desk, ctx, member, copy):
    loan = desk.loans.create_loan(ctx, member.id, copy.id)
    assert desk.loans.get_loan_by_id(ctx, loan.id) == desk.loans.get_loan_by_id(ctx, loan.id)
