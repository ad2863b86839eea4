"""Tests for the invitation state machine and membership transitions."""

import pytest
from sqlalchemy import func, select

from config import get_settings
from models.enums import NotificationType, Role
from models.user import User
from services import invitations as invitation_service
from services import notifications as notification_service
from services.errors import (
    AlreadyCompanyMember,
    CompanyAccessDenied,
    CompanyRequired,
    DuplicateActiveInvitation,
    InvalidState,
    InvitationEmailMismatch,
    InvitationError,
    InvitationNotFound,
    InvitationRateLimited,
    RoleMismatch,
    TokenExpired,
    TokenNotFound,
)
from services.guard import evaluate_route
from services.permission_registry import AccessLevel, permissions_for_actor
from tests.factories import PASSWORD, make_company, make_user, past


async def notification_types(db, user_id):
    page = await notification_service.list_for_user(db, user_id, limit=100)
    return [n.notif_type for n in page.notifications]


async def test_accepting_joins_the_company(db, company, pm, tradie):
    inv, raw = await invitation_service.issue(db, pm, " Tradie@Example.test ")
    assert inv.status == "pending"
    assert inv.email == "tradie@example.test"
    assert inv.tradie_id == tradie.id
    assert inv.token_hash != raw

    accepted, member = await invitation_service.accept(db, tradie, raw)

    assert accepted.status == "accepted"
    assert accepted.response_date is not None
    assert member.company_id == company.id
    assert member.is_approved
    assert member.approved_by_user_id == pm.id
    assert member.approval_date is not None
    assert permissions_for_actor(member).access_level is AccessLevel.APPROVED
    assert NotificationType.INVITATION_RECEIVED in await notification_types(db, tradie.id)
    assert NotificationType.INVITATION_ACCEPTED in await notification_types(db, pm.id)


async def test_rejecting_leaves_the_tradie_independent(db, pm, tradie):
    inv, raw = await invitation_service.issue(db, pm, tradie.email)

    rejected = await invitation_service.reject(db, tradie, raw)

    assert rejected.status == "rejected"
    assert rejected.tradie_id == tradie.id
    assert tradie.company_id is None
    assert not tradie.is_approved
    assert NotificationType.INVITATION_REJECTED in await notification_types(db, pm.id)


async def test_expired_token_cannot_be_accepted(db, pm, tradie):
    inv, raw = await invitation_service.issue(db, pm, tradie.email)
    inv.token_expiry = past(60)
    await db.commit()

    with pytest.raises(TokenExpired):
        await invitation_service.accept(db, tradie, raw)

    preview = await invitation_service.verify_token(db, raw)
    assert preview.status == "expired"
    assert preview.is_expired
    assert tradie.company_id is None


async def test_terminal_state_wins_over_expiry(db, pm, tradie):
    inv, raw = await invitation_service.issue(db, pm, tradie.email)
    await invitation_service.cancel(db, pm, inv.id)
    inv.token_expiry = past(60)
    await db.commit()

    with pytest.raises(InvalidState):
        await invitation_service.accept(db, tradie, raw)
    preview = await invitation_service.verify_token(db, raw)
    assert preview.status == "cancelled"
    assert not preview.is_expired


async def test_second_accept_is_rejected(db, pm, tradie):
    _, raw = await invitation_service.issue(db, pm, tradie.email)
    await invitation_service.accept(db, tradie, raw)

    with pytest.raises(InvalidState) as exc:
        await invitation_service.accept(db, tradie, raw)
    assert exc.value.detail["status"] == "accepted"

    with pytest.raises(InvalidState):
        await invitation_service.reject(db, tradie, raw)


async def test_unknown_token(db, tradie):
    with pytest.raises(TokenNotFound):
        await invitation_service.accept(db, tradie, "not-a-real-token")
    with pytest.raises(TokenNotFound):
        await invitation_service.verify_token(db, "")


async def test_only_the_invited_email_can_respond(db, pm, tradie):
    _, raw = await invitation_service.issue(db, pm, tradie.email)
    other = await make_user(db, "other@example.test")

    with pytest.raises(InvitationEmailMismatch):
        await invitation_service.accept(db, other, raw)


async def test_only_tradies_can_respond(db, pm):
    supplier = await make_user(db, "supplier@example.test", Role.SUPPLIER)
    _, raw = await invitation_service.issue(db, pm, supplier.email)

    with pytest.raises(RoleMismatch):
        await invitation_service.accept(db, supplier, raw)


async def test_only_project_managers_with_a_company_can_issue(db, tradie):
    with pytest.raises(RoleMismatch):
        await invitation_service.issue(db, tradie, "someone@example.test")

    loner = await make_user(db, "loner@acme.test", Role.PROJECT_MANAGER)
    with pytest.raises(CompanyRequired):
        await invitation_service.issue(db, loner, "someone@example.test")


async def test_duplicate_pending_invitation_is_refused(db, pm, tradie):
    await invitation_service.issue(db, pm, tradie.email)

    with pytest.raises(DuplicateActiveInvitation):
        await invitation_service.issue(db, pm, tradie.email.upper())


async def test_one_active_invitation_across_companies(db, pm, tradie):
    inv, _ = await invitation_service.issue(db, pm, tradie.email)
    rival_company = await make_company(db, "Rival Electrical")
    rival = await make_user(db, "rival@rival.test", Role.PROJECT_MANAGER, company=rival_company)

    with pytest.raises(DuplicateActiveInvitation):
        await invitation_service.issue(db, rival, tradie.email)

    inv.token_expiry = past(60)
    await db.commit()
    second, _ = await invitation_service.issue(db, rival, tradie.email)
    assert second.project_manager_id == rival.id


async def test_approved_members_cannot_be_invited_again(db, company, pm):
    await make_user(db, "member@example.test", company=company, is_approved=True)

    with pytest.raises(AlreadyCompanyMember):
        await invitation_service.issue(db, pm, "member@example.test")


async def test_limited_members_can_be_invited_back(db, company, pm):
    limited = await make_user(db, "limited@example.test", company=company)

    inv, raw = await invitation_service.issue(db, pm, limited.email)
    _, member = await invitation_service.accept(db, limited, raw)
    assert member.is_approved


async def test_daily_invitation_limit(db, pm, monkeypatch):
    monkeypatch.setattr(get_settings(), "MAX_INVITATIONS_PER_DAY", 2)
    await invitation_service.issue(db, pm, "a@example.test")
    await invitation_service.issue(db, pm, "b@example.test")

    with pytest.raises(InvitationRateLimited) as exc:
        await invitation_service.issue(db, pm, "c@example.test")
    assert exc.value.status_code == 429
    assert exc.value.detail["limit"] == 2


async def test_resend_rotates_the_token(db, pm, tradie):
    inv, old_raw = await invitation_service.issue(db, pm, tradie.email)
    inv.token_expiry = past(60)
    await db.commit()

    resent, new_raw = await invitation_service.resend(db, pm, inv.id)

    assert new_raw != old_raw
    assert resent.status == "pending"
    assert not invitation_service.is_expired(resent)
    with pytest.raises(TokenNotFound):
        await invitation_service.verify_token(db, old_raw)
    preview = await invitation_service.verify_token(db, new_raw)
    assert preview.status == "pending"
    assert preview.company_name == "Acme Plumbing"
    assert preview.project_manager_name == "Pat Manager"


async def test_closed_invitations_cannot_be_resent_or_cancelled(db, pm, tradie):
    inv, raw = await invitation_service.issue(db, pm, tradie.email)
    await invitation_service.reject(db, tradie, raw)

    with pytest.raises(InvalidState):
        await invitation_service.resend(db, pm, inv.id)
    with pytest.raises(InvalidState):
        await invitation_service.cancel(db, pm, inv.id)


async def test_cancel_notifies_the_invitee(db, pm, tradie):
    inv, raw = await invitation_service.issue(db, pm, tradie.email)

    cancelled = await invitation_service.cancel(db, pm, inv.id)

    assert cancelled.status == "cancelled"
    assert cancelled.response_date is not None
    assert NotificationType.INVITATION_CANCELLED in await notification_types(db, tradie.id)
    with pytest.raises(InvalidState):
        await invitation_service.accept(db, tradie, raw)


async def test_invitations_are_private_to_their_issuer(db, pm, tradie):
    inv, _ = await invitation_service.issue(db, pm, tradie.email)
    rival_company = await make_company(db, "Rival Electrical")
    rival = await make_user(db, "rival@rival.test", Role.PROJECT_MANAGER, company=rival_company)

    with pytest.raises(InvitationNotFound):
        await invitation_service.cancel(db, rival, inv.id)


async def test_accept_by_id(db, company, pm, tradie):
    inv, _ = await invitation_service.issue(db, pm, tradie.email)

    with pytest.raises(InvitationNotFound):
        await invitation_service.accept_by_id(db, tradie, inv.id + 100)

    accepted, member = await invitation_service.accept_by_id(db, tradie, inv.id)
    assert accepted.status == "accepted"
    assert member.company_id == company.id


async def test_reject_by_id(db, pm, tradie):
    inv, _ = await invitation_service.issue(db, pm, tradie.email)

    rejected = await invitation_service.reject_by_id(db, tradie, inv.id)
    assert rejected.status == "rejected"


async def test_accept_requires_the_issuer_to_keep_a_company(db, pm, tradie):
    _, raw = await invitation_service.issue(db, pm, tradie.email)
    pm.company_id = None
    await db.commit()

    with pytest.raises(CompanyRequired):
        await invitation_service.accept(db, tradie, raw)


async def test_concurrent_cancel_wins_over_stale_accept(db, session_maker, pm, tradie):
    inv, raw = await invitation_service.issue(db, pm, tradie.email)

    async with session_maker() as db_a, session_maker() as db_b:
        actor = await db_a.get(User, tradie.id)
        # Load the pending row into db_a before the cancel lands.
        await invitation_service.get_by_token(db_a, raw)

        issuer = await db_b.get(User, pm.id)
        await invitation_service.cancel(db_b, issuer, inv.id)

        with pytest.raises(InvalidState) as exc:
            await invitation_service.accept(db_a, actor, raw)
        assert exc.value.detail["status"] == "cancelled"

    await db.refresh(inv)
    await db.refresh(tradie)
    assert inv.status == "cancelled"
    assert tradie.company_id is None


async def test_register_with_invitation_creates_an_approved_member(db, company, pm):
    _, raw = await invitation_service.issue(db, pm, "newbie@example.test")

    user, inv = await invitation_service.register_with_invitation(
        db,
        token=raw,
        full_name=" New Person ",
        email="Newbie@Example.test",
        password=PASSWORD,
    )

    assert user.full_name == "New Person"
    assert user.role == "tradie"
    assert user.email_verified
    assert user.is_approved
    assert user.company_id == company.id
    assert inv.status == "accepted"
    assert inv.tradie_id == user.id


async def test_register_with_a_bad_invitation_creates_nothing(db, pm):
    _, raw = await invitation_service.issue(db, pm, "newbie@example.test")

    with pytest.raises(TokenNotFound):
        await invitation_service.register_with_invitation(
            db, token="bogus", full_name="X", email="newbie@example.test", password=PASSWORD
        )
    with pytest.raises(InvitationEmailMismatch):
        await invitation_service.register_with_invitation(
            db, token=raw, full_name="X", email="someone-else@example.test", password=PASSWORD
        )

    count = (await db.execute(select(func.count(User.id)).where(User.role == "tradie"))).scalar_one()
    assert count == 0


async def test_project_manager_listing_filters(db, pm, tradie):
    open_inv, _ = await invitation_service.issue(db, pm, tradie.email)
    stale, _ = await invitation_service.issue(db, pm, "stale@example.test")
    stale.token_expiry = past(60)
    await db.commit()
    closed, _ = await invitation_service.issue(db, pm, "closed@example.test")
    await invitation_service.cancel(db, pm, closed.id)

    async def ids(status):
        return {inv.id for inv in await invitation_service.list_for_project_manager(db, pm, status)}

    assert await ids(None) == {open_inv.id, stale.id, closed.id}
    assert await ids("pending") == {open_inv.id}
    assert await ids("expired") == {stale.id}
    assert await ids("cancelled") == {closed.id}
    with pytest.raises(InvitationError):
        await ids("bogus")


async def test_tradie_listing_hides_closed_by_default(db, pm, tradie):
    inv, raw = await invitation_service.issue(db, pm, tradie.email)
    assert [i.id for i in await invitation_service.list_for_tradie(db, tradie)] == [inv.id]

    await invitation_service.reject(db, tradie, raw)
    assert await invitation_service.list_for_tradie(db, tradie) == []
    closed = await invitation_service.list_for_tradie(db, tradie, include_closed=True)
    assert [i.id for i in closed] == [inv.id]


async def test_revoke_limits_access_and_keeps_the_company(db, company, pm, tradie):
    _, raw = await invitation_service.issue(db, pm, tradie.email)
    _, member = await invitation_service.accept(db, tradie, raw)
    assert evaluate_route(member, "/cart").allowed

    revoked = await invitation_service.revoke_membership(db, pm, member.id, "Left the job")

    assert revoked.company_id == company.id
    assert not revoked.is_approved
    assert revoked.approved_by_user_id is None
    assert revoked.approval_date is None
    assert permissions_for_actor(revoked).access_level is AccessLevel.LIMITED
    assert evaluate_route(revoked, "/cart").denied
    assert evaluate_route(revoked, "/parts/popular").allowed
    assert NotificationType.ACCESS_REMOVED in await notification_types(db, tradie.id)
    assert NotificationType.TRADIE_REMOVED_CONFIRMATION in await notification_types(db, pm.id)


async def test_approve_restores_ordering(db, company, pm):
    limited = await make_user(db, "limited@example.test", company=company)

    approved = await invitation_service.approve_member(db, pm, limited.id)

    assert approved.is_approved
    assert approved.approved_by_user_id == pm.id
    assert permissions_for_actor(approved).access_level is AccessLevel.APPROVED
    assert NotificationType.MEMBERSHIP_APPROVED in await notification_types(db, limited.id)


async def test_revoking_a_limited_member_is_refused(db, company, pm):
    limited = await make_user(db, "limited@example.test", company=company)

    with pytest.raises(InvalidState):
        await invitation_service.revoke_membership(db, pm, limited.id)

    await db.refresh(limited)
    assert not limited.is_approved


async def test_membership_is_managed_within_the_company(db, pm):
    rival_company = await make_company(db, "Rival Electrical")
    outsider = await make_user(db, "outsider@example.test", company=rival_company, is_approved=True)

    with pytest.raises(CompanyAccessDenied):
        await invitation_service.revoke_membership(db, pm, outsider.id)
    with pytest.raises(CompanyAccessDenied):
        await invitation_service.approve_member(db, pm, outsider.id)


async def test_company_roster(db, company, pm):
    await make_user(db, "zed@example.test", company=company, full_name="Zed")
    await make_user(db, "amy@example.test", company=company, is_approved=True, full_name="Amy")
    await make_user(db, "elsewhere@example.test", full_name="Bob")

    roster = await invitation_service.list_company_tradies(db, pm)
    assert [t.full_name for t in roster] == ["Amy", "Zed"]
