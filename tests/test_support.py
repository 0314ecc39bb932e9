import logging

import pytest

from librarium.config import settings
from librarium.context import TRACE_ID_LENGTH, new_context
from librarium.errors import BadRequestError, DuplicateError, NotFoundError
from librarium.pagination import Pagination


@pytest.mark.parametrize("page, page_size, expected", [
    (None, None, (1, settings.default_page_size)),
    (0, -5, (1, settings.default_page_size)),
    ("3", "10", (3, 10)),
    ("x", "y", (1, settings.default_page_size)),
    (2, 10_000, (2, settings.max_page_size)),
])
def test_pagination_defaults_and_caps(page, page_size, expected):
    pagination = Pagination.from_params(page, page_size)
    assert (pagination.page, pagination.page_size) == expected


def test_pagination_offset():
    pagination = Pagination(page=3, page_size=10)
    assert pagination.offset == 20
    assert pagination.limit == 10


def test_context_generates_trace_id():
    ctx = new_context()
    assert len(ctx.trace_id) == TRACE_ID_LENGTH
    assert new_context("abc123").trace_id == "abc123"


def test_context_logger_stamps_trace_and_function(caplog):
    ctx = new_context("trace1", actor="desk")
    with caplog.at_level(logging.INFO, logger="librarium"):
        ctx.logger("LoanManager.create_loan").info("loan %s created", "L1")
    record = caplog.records[-1]
    assert record.getMessage() == "[trace1] LoanManager.create_loan: loan L1 created"
    assert record.trace_id == "trace1"
    assert record.function == "LoanManager.create_loan"


def test_member_lifecycle(desk, ctx, member):
    assert member.is_active
    assert "password_hash" not in member.to_dict()
    assert desk.members.suspend(ctx, member.id).is_active is False
    assert desk.members.activate(ctx, member.id).is_active is True
    assert desk.members.get_by_id(ctx, member.id) == desk.members.get_by_id(ctx, member.id)

    desk.members.delete(ctx, member.id)
    with pytest.raises(NotFoundError, match="member not found"):
        desk.members.get_by_id(ctx, member.id)


def test_update_profile_changes_only_given_fields(desk, ctx, member):
    updated = desk.members.update_profile(ctx, member.id, full_name="  Augusta Ada King ")
    assert updated.full_name == "Augusta Ada King"
    assert updated.email == member.email

    updated = desk.members.update_profile(ctx, member.id, email="Countess@Example.com", password_hash="h4sh")
    assert updated.email == "countess@example.com"
    assert updated.password_hash == "h4sh"
    assert updated.full_name == "Augusta Ada King"


def test_update_profile_rejects_taken_email(desk, ctx, member, other_member):
    with pytest.raises(DuplicateError, match="member already exist"):
        desk.members.update_profile(ctx, other_member.id, email=member.email)
    assert desk.members.get_by_id(ctx, other_member.id).email == other_member.email


def test_update_profile_validation(desk, ctx, member):
    with pytest.raises(BadRequestError, match="email invalid"):
        desk.members.update_profile(ctx, member.id, email="   ")
    with pytest.raises(BadRequestError, match="full name invalid"):
        desk.members.update_profile(ctx, member.id, full_name="")
    with pytest.raises(NotFoundError, match="member not found"):
        desk.members.update_profile(ctx, "ghost", full_name="Nobody")
