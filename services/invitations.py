"""Invitation state machine and company membership transitions.

Every transition out of ``pending`` (and every membership flip) is a
conditional UPDATE guarded on the expected current state. When the guarded
UPDATE does not hit exactly one row another request won the race, so the
transaction is rolled back and ``InvalidState`` is raised. Terminal states
are absorbing.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config import get_settings
from models.company import Company
from models.enums import STATUS_EXPIRED, InvitationStatus, Role
from models.invitation import Invitation
from models.user import User
from services import email_service
from services.db_utils import as_utc, utcnow
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
    NotFound,
    RoleMismatch,
    TokenExpired,
    TokenNotFound,
)
from services.notifications import (
    notify_access_removed,
    notify_invitation_cancelled,
    notify_invitation_received,
    notify_invitation_responded,
    notify_membership_approved,
)
from services.permissions import can_manage_tradie
from services.roles import parse_role
from services.security import hash_password, hash_token, issue_secret, normalize_email

PENDING = InvitationStatus.PENDING.value


@dataclass
class InvitationPreview:
    id: int
    email: str
    status: str
    is_expired: bool
    token_expiry: datetime
    company_name: str | None
    project_manager_name: str | None


def is_expired(invitation: Invitation, now: datetime | None = None) -> bool:
    if invitation.status != PENDING:
        return False
    return as_utc(invitation.token_expiry) < (now or utcnow())


def effective_status(invitation: Invitation, now: datetime | None = None) -> str:
    return STATUS_EXPIRED if is_expired(invitation, now) else invitation.status


def invite_link(raw_token: str) -> str:
    return f"{get_settings().FRONTEND_BASE_URL}/invitations/verify/{raw_token}"


def _new_expiry(now: datetime) -> datetime:
    return now + timedelta(days=get_settings().INVITE_TTL_DAYS)


async def _email_invitation(inv: Invitation, pm: User, company_name: str | None, raw_token: str) -> None:
    message = email_service.invitation_message(
        company_name=company_name,
        project_manager_name=pm.full_name,
        link=invite_link(raw_token),
        expires_at=as_utc(inv.token_expiry),
        personal_message=inv.personal_message,
    )
    await email_service.send_email(inv.email, message)


def _require_project_manager(pm: User) -> None:
    if parse_role(pm.role) is not Role.PROJECT_MANAGER:
        raise RoleMismatch("Only project managers can manage invitations")
    if pm.company_id is None:
        raise CompanyRequired()


async def _get_user_by_email(db: AsyncSession, email: str) -> User | None:
    stmt = select(User).where(User.email == normalize_email(email))
    return (await db.execute(stmt)).scalar_one_or_none()


async def _company_name(db: AsyncSession, company_id: int | None) -> str | None:
    if company_id is None:
        return None
    company = await db.get(Company, company_id)
    return company.name if company else None


async def _check_rate_limit(db: AsyncSession, pm: User, now: datetime) -> None:
    limit = get_settings().MAX_INVITATIONS_PER_DAY
    stmt = select(func.count(Invitation.id)).where(
        Invitation.project_manager_id == pm.id,
        Invitation.created_at > now - timedelta(hours=24),
    )
    recent = (await db.execute(stmt)).scalar_one()
    if recent >= limit:
        raise InvitationRateLimited(
            f"Maximum {limit} invitations per day exceeded",
            limit=limit,
        )


async def _transition(
    db: AsyncSession,
    invitation_id: int,
    target: InvitationStatus,
    **values,
) -> None:
    stmt = (
        update(Invitation)
        .where(Invitation.id == invitation_id, Invitation.status == PENDING)
        .values(status=target.value, updated_at=utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    if result.rowcount != 1:
        await db.rollback()
        current = await db.get(Invitation, invitation_id)
        raise InvalidState(
            status=current.status if current else None,
            invitation_id=invitation_id,
        )


async def _email_issuer(db: AsyncSession, issuer: User | None, tradie: User, accepted: bool) -> None:
    if issuer is None:
        return
    message = email_service.invitation_response_message(
        tradie_name=tradie.full_name,
        tradie_email=tradie.email,
        company_name=await _company_name(db, issuer.company_id),
        accepted=accepted,
    )
    await email_service.send_email(issuer.email, message)


async def _get_owned(db: AsyncSession, pm: User, invitation_id: int) -> Invitation:
    inv = await db.get(Invitation, invitation_id)
    if not inv or inv.project_manager_id != pm.id:
        raise InvitationNotFound(invitation_id=invitation_id)
    return inv


async def get_by_token(db: AsyncSession, token: str | None) -> Invitation:
    if not token:
        raise TokenNotFound()
    stmt = select(Invitation).where(Invitation.token_hash == hash_token(token))
    inv = (await db.execute(stmt)).scalar_one_or_none()
    if not inv:
        raise TokenNotFound()
    return inv


def _ensure_respondable(invitation: Invitation, email: str, role: str | None, now: datetime) -> None:
    # Stored status first: a terminal row never reports TokenExpired.
    if invitation.status != PENDING:
        raise InvalidState(status=invitation.status, invitation_id=invitation.id)
    if is_expired(invitation, now):
        raise TokenExpired(invitation_id=invitation.id)
    if normalize_email(invitation.email) != normalize_email(email):
        raise InvitationEmailMismatch()
    if parse_role(role) is not Role.TRADIE:
        raise RoleMismatch("Only tradies can respond to invitations")


# --- Issuer operations ---


async def issue(
    db: AsyncSession,
    pm: User,
    email: str,
    *,
    phone: str | None = None,
    personal_message: str | None = None,
) -> tuple[Invitation, str]:
    """Create a pending invitation; returns the row and the raw token."""
    _require_project_manager(pm)
    email = normalize_email(email)
    now = utcnow()
    await _check_rate_limit(db, pm, now)

    pending = (
        await db.execute(
            select(Invitation).where(Invitation.email == email, Invitation.status == PENDING)
        )
    ).scalars().all()
    for row in pending:
        if row.project_manager_id == pm.id:
            raise DuplicateActiveInvitation(invitation_id=row.id)
        if not is_expired(row, now):
            raise DuplicateActiveInvitation(
                "This tradie already has an active invitation from another company"
            )

    invitee = await _get_user_by_email(db, email)
    if invitee and invitee.company_id == pm.company_id and invitee.is_approved:
        raise AlreadyCompanyMember()

    raw_token, token_hash = issue_secret()
    inv = Invitation(
        project_manager_id=pm.id,
        tradie_id=invitee.id if invitee else None,
        email=email,
        phone=phone,
        personal_message=personal_message,
        token_hash=token_hash,
        token_expiry=_new_expiry(now),
        status=PENDING,
        created_at=now,
        updated_at=now,
    )
    db.add(inv)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise DuplicateActiveInvitation()

    company_name = await _company_name(db, pm.company_id)
    if invitee:
        notify_invitation_received(db, inv, invitee, pm, company_name)
    else:
        logger.info(f"Invitation {inv.id} for {email} has no account yet")

    await db.commit()
    await db.refresh(inv)
    logger.info(f"PM {pm.id} invited {email} (invitation {inv.id})")
    await _email_invitation(inv, pm, company_name, raw_token)
    return inv, raw_token


async def resend(db: AsyncSession, pm: User, invitation_id: int) -> tuple[Invitation, str]:
    """Rotate the token and extend expiry of a pending (possibly expired) invitation."""
    _require_project_manager(pm)
    inv = await _get_owned(db, pm, invitation_id)
    if inv.status != PENDING:
        raise InvalidState(status=inv.status, invitation_id=inv.id)

    now = utcnow()
    raw_token, token_hash = issue_secret()
    await _transition(
        db,
        inv.id,
        InvitationStatus.PENDING,
        token_hash=token_hash,
        token_expiry=_new_expiry(now),
    )

    invitee = await _get_user_by_email(db, inv.email)
    company_name = await _company_name(db, pm.company_id)
    if invitee:
        notify_invitation_received(db, inv, invitee, pm, company_name)

    await db.commit()
    await db.refresh(inv)
    logger.info(f"PM {pm.id} resent invitation {inv.id}")
    await _email_invitation(inv, pm, company_name, raw_token)
    return inv, raw_token


async def cancel(db: AsyncSession, pm: User, invitation_id: int) -> Invitation:
    _require_project_manager(pm)
    inv = await _get_owned(db, pm, invitation_id)
    if inv.status != PENDING:
        raise InvalidState(status=inv.status, invitation_id=inv.id)

    await _transition(db, inv.id, InvitationStatus.CANCELLED, response_date=utcnow())
    invitee = await _get_user_by_email(db, inv.email)
    if invitee:
        notify_invitation_cancelled(db, inv, invitee, pm)
    await db.commit()
    await db.refresh(inv)
    logger.info(f"PM {pm.id} cancelled invitation {inv.id}")
    return inv


# --- Invitee operations ---


async def _accept(db: AsyncSession, actor: User, inv: Invitation) -> tuple[Invitation, User]:
    now = utcnow()
    _ensure_respondable(inv, actor.email, actor.role, now)

    issuer = await db.get(User, inv.project_manager_id)
    if issuer is None or issuer.company_id is None:
        raise CompanyRequired("The inviting project manager no longer has a company")
    company_id = issuer.company_id

    await _transition(
        db,
        inv.id,
        InvitationStatus.ACCEPTED,
        response_date=now,
        tradie_id=actor.id,
    )

    tradie = await db.get(User, actor.id)
    if tradie.company_id not in (None, company_id):
        logger.info(f"Tradie {tradie.id} moves from company {tradie.company_id} to {company_id}")
    tradie.company_id = company_id
    tradie.is_approved = True
    tradie.approved_by_user_id = issuer.id
    tradie.approval_date = now
    notify_invitation_responded(db, inv, tradie, accepted=True)

    await db.commit()
    await db.refresh(inv)
    await db.refresh(tradie)
    logger.info(f"Tradie {tradie.id} accepted invitation {inv.id} into company {company_id}")
    await _email_issuer(db, issuer, tradie, accepted=True)
    return inv, tradie


async def _reject(db: AsyncSession, actor: User, inv: Invitation) -> Invitation:
    now = utcnow()
    _ensure_respondable(inv, actor.email, actor.role, now)

    await _transition(
        db,
        inv.id,
        InvitationStatus.REJECTED,
        response_date=now,
        tradie_id=actor.id,
    )
    notify_invitation_responded(db, inv, actor, accepted=False)
    await db.commit()
    await db.refresh(inv)
    logger.info(f"Tradie {actor.id} rejected invitation {inv.id}")
    await _email_issuer(db, await db.get(User, inv.project_manager_id), actor, accepted=False)
    return inv


async def _get_for_invitee(db: AsyncSession, invitation_id: int) -> Invitation:
    inv = await db.get(Invitation, invitation_id)
    if not inv:
        raise InvitationNotFound(invitation_id=invitation_id)
    return inv


async def accept(db: AsyncSession, actor: User, token: str) -> tuple[Invitation, User]:
    return await _accept(db, actor, await get_by_token(db, token))


async def accept_by_id(db: AsyncSession, actor: User, invitation_id: int) -> tuple[Invitation, User]:
    return await _accept(db, actor, await _get_for_invitee(db, invitation_id))


async def reject(db: AsyncSession, actor: User, token: str) -> Invitation:
    return await _reject(db, actor, await get_by_token(db, token))


async def reject_by_id(db: AsyncSession, actor: User, invitation_id: int) -> Invitation:
    return await _reject(db, actor, await _get_for_invitee(db, invitation_id))


async def register_with_invitation(
    db: AsyncSession,
    *,
    token: str,
    full_name: str,
    email: str,
    password: str,
    phone: str | None = None,
) -> tuple[User, Invitation]:
    """Create a tradie account for an invited email and accept in one go.

    The token is validated before the account exists, so a bad token never
    leaves an orphan user behind. Owning the invite proves the email.
    """
    inv = await get_by_token(db, token)
    _ensure_respondable(inv, email, Role.TRADIE, utcnow())

    user = User(
        full_name=full_name.strip(),
        email=normalize_email(email),
        phone=phone or inv.phone,
        password_hash=hash_password(password),
        role=Role.TRADIE.value,
        is_approved=False,
        email_verified=True,
        is_active=True,
    )
    db.add(user)
    await db.flush()
    inv, user = await _accept(db, user, inv)
    return user, inv


async def verify_token(db: AsyncSession, token: str) -> InvitationPreview:
    inv = await get_by_token(db, token)
    pm = await db.get(User, inv.project_manager_id)
    now = utcnow()
    return InvitationPreview(
        id=inv.id,
        email=inv.email,
        status=effective_status(inv, now),
        is_expired=is_expired(inv, now),
        token_expiry=as_utc(inv.token_expiry),
        company_name=await _company_name(db, pm.company_id if pm else None),
        project_manager_name=pm.full_name if pm else None,
    )


# --- Listing ---


async def list_for_project_manager(
    db: AsyncSession,
    pm: User,
    status: str | None = None,
) -> list[Invitation]:
    _require_project_manager(pm)
    now = utcnow()
    stmt = select(Invitation).where(Invitation.project_manager_id == pm.id)
    if status == PENDING:
        stmt = stmt.where(Invitation.status == PENDING, Invitation.token_expiry >= now)
    elif status == STATUS_EXPIRED:
        stmt = stmt.where(Invitation.status == PENDING, Invitation.token_expiry < now)
    elif status:
        try:
            stored = InvitationStatus(status)
        except ValueError:
            raise InvitationError(f"Unknown invitation status: {status}")
        stmt = stmt.where(Invitation.status == stored.value)
    stmt = stmt.order_by(Invitation.created_at.desc(), Invitation.id.desc())
    return list((await db.execute(stmt)).scalars().all())


async def list_for_tradie(
    db: AsyncSession,
    actor: User,
    include_closed: bool = False,
) -> list[Invitation]:
    stmt = select(Invitation).where(Invitation.email == normalize_email(actor.email))
    if not include_closed:
        stmt = stmt.where(Invitation.status == PENDING, Invitation.token_expiry >= utcnow())
    stmt = stmt.order_by(Invitation.created_at.desc(), Invitation.id.desc())
    return list((await db.execute(stmt)).scalars().all())


# --- Membership ---


async def _get_managed_tradie(db: AsyncSession, pm: User, tradie_id: int) -> User:
    _require_project_manager(pm)
    tradie = await db.get(User, tradie_id)
    if not tradie or parse_role(tradie.role) is not Role.TRADIE:
        raise NotFound("Tradie not found")
    if not can_manage_tradie(pm, tradie):
        raise CompanyAccessDenied("You can only manage tradies in your company")
    return tradie


async def _flip_approval(
    db: AsyncSession,
    tradie_id: int,
    company_id: int,
    *,
    expected: bool,
    **values,
) -> None:
    stmt = (
        update(User)
        .where(
            User.id == tradie_id,
            User.company_id == company_id,
            User.is_approved.is_(expected),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    if result.rowcount != 1:
        await db.rollback()
        raise InvalidState(
            "Tradie is not an approved member" if expected else "Tradie access is not limited",
            tradie_id=tradie_id,
        )


async def revoke_membership(
    db: AsyncSession,
    pm: User,
    tradie_id: int,
    reason: str | None = None,
) -> User:
    """Limit an approved tradie to browse-only; the company link is kept."""
    tradie = await _get_managed_tradie(db, pm, tradie_id)
    await _flip_approval(
        db,
        tradie.id,
        pm.company_id,
        expected=True,
        is_approved=False,
        approved_by_user_id=None,
        approval_date=None,
        updated_at=utcnow(),
    )
    notify_access_removed(db, tradie, pm, reason)
    await db.commit()
    await db.refresh(tradie)
    logger.info(f"PM {pm.id} revoked company access for tradie {tradie.id}")
    message = email_service.removal_message(company_name=await _company_name(db, pm.company_id), reason=reason)
    await email_service.send_email(tradie.email, message)
    return tradie


async def approve_member(db: AsyncSession, pm: User, tradie_id: int) -> User:
    tradie = await _get_managed_tradie(db, pm, tradie_id)
    now = utcnow()
    await _flip_approval(
        db,
        tradie.id,
        pm.company_id,
        expected=False,
        is_approved=True,
        approved_by_user_id=pm.id,
        approval_date=now,
        updated_at=now,
    )
    notify_membership_approved(db, tradie, pm)
    await db.commit()
    await db.refresh(tradie)
    logger.info(f"PM {pm.id} approved tradie {tradie.id}")
    return tradie


async def list_company_tradies(db: AsyncSession, pm: User) -> list[User]:
    _require_project_manager(pm)
    stmt = (
        select(User)
        .where(User.company_id == pm.company_id, User.role == Role.TRADIE.value)
        .order_by(User.full_name.asc(), User.id.asc())
    )
    return list((await db.execute(stmt)).scalars().all())
