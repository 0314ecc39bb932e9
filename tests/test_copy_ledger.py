import pytest

from librarium.enums import CopyStatus
from librarium.errors import BadRequestError, NotFoundError
from librarium.pagination import Pagination


def test_create_batch_creates_requested_copies(desk, ctx, book):
    copies = desk.copies.create_batch(ctx, book.id, count=3)
    assert len(copies) == 3
    assert all(c.status is CopyStatus.AVAILABLE for c in copies)
    assert all(c.book_id == book.id for c in copies)
    assert len({c.id for c in copies}) == 3


def test_create_batch_with_initial_status(desk, ctx, book):
    copies = desk.copies.create_batch(ctx, book.id, "damaged", count=2)
    assert [c.status for c in copies] == [CopyStatus.DAMAGED, CopyStatus.DAMAGED]


def test_create_batch_rejects_unknown_status(desk, ctx, book):
    with pytest.raises(BadRequestError, match="status invalid"):
        desk.copies.create_batch(ctx, book.id, "borrowed")


def test_create_batch_rejects_non_positive_count(desk, ctx, book):
    with pytest.raises(BadRequestError):
        desk.copies.create_batch(ctx, book.id, count=0)


def test_create_batch_for_missing_book_is_not_found(desk, ctx):
    with pytest.raises(NotFoundError) as exc_info:
        desk.copies.create_batch(ctx, "no-such-book", count=2)
    assert exc_info.value.message == "book not found"
    assert desk.copies.find_by_condition(ctx) == []


def test_get_by_id_is_idempotent(desk, ctx, copy):
    first = desk.copies.get_by_id(ctx, copy.id)
    second = desk.copies.get_by_id(ctx, copy.id)
    assert first == second


def test_get_missing_copy(desk, ctx):
    with pytest.raises(NotFoundError, match="copy not found"):
        desk.copies.get_by_id(ctx, 999)


def test_set_status_writes_unconditionally(desk, ctx, copy):
    updated = desk.copies.set_status(ctx, copy.id, "lost")
    assert updated.status is CopyStatus.LOST
    assert desk.copies.set_status(ctx, copy.id, "AVAILABLE").status is CopyStatus.AVAILABLE


def test_set_status_missing_copy(desk, ctx):
    with pytest.raises(NotFoundError):
        desk.copies.set_status(ctx, 4242, "available")


def test_find_by_condition_filters_and_paginates(desk, ctx, book):
    other = desk.catalog.add_book(ctx, "Emma")
    desk.copies.create_batch(ctx, book.id, count=3)
    desk.copies.create_batch(ctx, book.id, "damaged", count=1)
    desk.copies.create_batch(ctx, other.id, count=2)

    assert len(desk.copies.find_by_condition(ctx, book_id=book.id)) == 4
    assert len(desk.copies.find_by_condition(ctx, book_id=book.id, status="available")) == 3
    assert len(desk.copies.find_by_condition(ctx, status="damaged")) == 1

    page_one = desk.copies.find_by_condition(ctx, pagination=Pagination(page=1, page_size=4))
    page_two = desk.copies.find_by_condition(ctx, pagination=Pagination(page=2, page_size=4))
    assert len(page_one) == 4
    assert len(page_two) == 2
    assert not {c.id for c in page_one} & {c.id for c in page_two}


def test_count_available_ignores_unlendable_copies(desk, ctx, book):
    copies = desk.copies.create_batch(ctx, book.id, count=4)
    desk.copies.set_status(ctx, copies[0].id, "damaged")
    desk.copies.set_status(ctx, copies[1].id, "lost")
    desk.copies.set_status(ctx, copies[2].id, "reserved")
    assert desk.copies.count_available(ctx, book.id) == 1


def test_delete_copy_soft_deletes(desk, ctx, copy):
    desk.copies.delete_copy(ctx, copy.id)
    with pytest.raises(NotFoundError):
        desk.copies.get_by_id(ctx, copy.id)


def test_delete_copy_on_loan_is_refused(desk, ctx, member, copy):
    desk.loans.create_loan(ctx, member.id, copy.id)
    with pytest.raises(BadRequestError, match="copy on loan"):
        desk.copies.delete_copy(ctx, copy.id)
