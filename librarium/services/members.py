"""Member directory: the member lookup the circulation workflows depend on."""

import logging
import sqlite3
from typing import List, Optional

from librarium.context import RequestContext
from librarium.enums import AccountStatus, Role
from librarium.errors import BadRequestError, NotFoundError
from librarium.models import Member
from librarium.pagination import Pagination
from librarium.repositories import MemberRepository, new_id
from librarium.services.holds import settle_member_books, withdraw_member
from librarium.services.base import Service


def require_active_member(conn: sqlite3.Connection, logger: logging.LoggerAdapter, member_id: str) -> Member:
    """Fetch a member that may open loans or reservations."""
    member = MemberRepository(conn).get_by_id(member_id)
    if member is None:
        logger.warning("member %s not found", member_id)
        raise NotFoundError("member")
    if not member.is_active:
        logger.warning("member %s account is %s", member_id, member.account_status.value)
        raise BadRequestError("account suspended")
    return member


class MemberDirectory(Service):
    def register(self, ctx: RequestContext, email: str, full_name: str,
                 password_hash: str = "", role: Role = Role.MEMBER) -> Member:
        logger = ctx.logger("MemberDirectory.register")
        logger.info("received register member request for %s", email)
        member = Member(
            id=new_id(),
            email=email.strip().lower(),
            full_name=full_name.strip(),
            password_hash=password_hash,
            role=role,
            account_status=AccountStatus.ACTIVE,
        )
        with self.unit_of_work(logger, entity="member") as conn:
            member = MemberRepository(conn).create(member)
        logger.info("member %s registered", member.id)
        return member

    def get_by_id(self, ctx: RequestContext, member_id: str) -> Member:
        logger = ctx.logger("MemberDirectory.get_by_id")
        with self.unit_of_work(logger, entity="member", write=False) as conn:
            member = MemberRepository(conn).get_by_id(member_id)
        if member is None:
            raise NotFoundError("member")
        return member

    def update_profile(self, ctx: RequestContext, member_id: str, email: Optional[str] = None,
                       full_name: Optional[str] = None, password_hash: Optional[str] = None) -> Member:
        """Change contact details or the stored credential hash; omitted fields stay as they are."""
        logger = ctx.logger("MemberDirectory.update_profile")
        logger.info("received update profile request member=%s", member_id)
        if email is not None:
            email = email.strip().lower()
            if not email:
                raise BadRequestError("email invalid")
        if full_name is not None:
            full_name = full_name.strip()
            if not full_name:
                raise BadRequestError("full name invalid")

        with self.unit_of_work(logger, entity="member") as conn:
            repo = MemberRepository(conn)
            if repo.update_profile(member_id, email, full_name, password_hash) == 0:
                logger.warning("member %s not found", member_id)
                raise NotFoundError("member")
            member = repo.get_by_id(member_id)
        logger.info("member %s profile updated", member_id)
        return member

    def set_status(self, ctx: RequestContext, member_id: str, status: str) -> Member:
        """Suspending cancels the member's holds; reactivating lets the queue serve them again."""
        logger = ctx.logger("MemberDirectory.set_status")
        parsed = AccountStatus.parse(status)
        if parsed is None:
            raise BadRequestError("status invalid")
        logger.info("setting member %s account status to %s", member_id, parsed.value)
        with self.unit_of_work(logger, entity="member") as conn:
            repo = MemberRepository(conn)
            if repo.update_status(member_id, parsed) == 0:
                raise NotFoundError("member")
            if parsed is AccountStatus.SUSPENDED:
                withdraw_member(conn, logger, member_id)
            else:
                settle_member_books(conn, logger, member_id)
            return repo.get_by_id(member_id)

    def suspend(self, ctx: RequestContext, member_id: str) -> Member:
        return self.set_status(ctx, member_id, AccountStatus.SUSPENDED.value)

    def activate(self, ctx: RequestContext, member_id: str) -> Member:
        return self.set_status(ctx, member_id, AccountStatus.ACTIVE.value)

    def delete(self, ctx: RequestContext, member_id: str) -> None:
        logger = ctx.logger("MemberDirectory.delete")
        with self.unit_of_work(logger, entity="member") as conn:
            if MemberRepository(conn).delete_by_id(member_id) == 0:
                raise NotFoundError("member")
            withdraw_member(conn, logger, member_id, drop_queue=True)
        logger.info("member %s deleted", member_id)

    def list(self, ctx: RequestContext, pagination: Pagination) -> List[Member]:
        logger = ctx.logger("MemberDirectory.list")
        with self.unit_of_work(logger, entity="member", write=False) as conn:
            return MemberRepository(conn).find_all(pagination)
