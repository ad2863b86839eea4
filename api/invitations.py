from dataclasses import asdict

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.permissions import permissions_out
from database import get_db
from models.invitation import Invitation
from models.user import User
from schemas.schemas import (
    InvitationAcceptOut,
    InvitationCreate,
    InvitationOut,
    InvitationTokenIn,
    InvitationVerifyOut,
    UserOut,
)
from services import invitations as invitation_service
from services.context import get_current_user
from services.db_utils import as_utc, utcnow
from services.permission_registry import permissions_for_actor
from services.permissions import require_project_manager

# /api/pm/invitations
pm_router = APIRouter()
# /api/tradie/invitations
tradie_router = APIRouter()
# /api/invitations (token based)
router = APIRouter()


def _to_out(inv: Invitation, raw_token: str | None = None) -> InvitationOut:
    now = utcnow()
    return InvitationOut(
        id=inv.id,
        project_manager_id=inv.project_manager_id,
        tradie_id=inv.tradie_id,
        email=inv.email,
        phone=inv.phone,
        personal_message=inv.personal_message,
        status=inv.status,
        effective_status=invitation_service.effective_status(inv, now),
        is_expired=invitation_service.is_expired(inv, now),
        token_expiry=as_utc(inv.token_expiry),
        response_date=as_utc(inv.response_date),
        created_at=as_utc(inv.created_at),
        invite_link=invitation_service.invite_link(raw_token) if raw_token else None,
    )


def _accept_out(inv: Invitation, user: User) -> InvitationAcceptOut:
    return InvitationAcceptOut(
        invitation=_to_out(inv),
        user=UserOut.model_validate(user),
        permissions=permissions_out(permissions_for_actor(user)),
    )


# --- Project manager ---


@pm_router.get("", response_model=list[InvitationOut])
async def list_invitations(
    status: str | None = None,
    pm: User = Depends(require_project_manager),
    db: AsyncSession = Depends(get_db),
):
    rows = await invitation_service.list_for_project_manager(db, pm, status)
    return [_to_out(inv) for inv in rows]


@pm_router.post("", response_model=InvitationOut, status_code=201)
async def create_invitation(
    body: InvitationCreate,
    pm: User = Depends(require_project_manager),
    db: AsyncSession = Depends(get_db),
):
    inv, raw_token = await invitation_service.issue(
        db,
        pm,
        body.email,
        phone=body.phone,
        personal_message=body.personal_message,
    )
    return _to_out(inv, raw_token)


@pm_router.post("/{invitation_id}/resend", response_model=InvitationOut)
async def resend_invitation(
    invitation_id: int,
    pm: User = Depends(require_project_manager),
    db: AsyncSession = Depends(get_db),
):
    inv, raw_token = await invitation_service.resend(db, pm, invitation_id)
    return _to_out(inv, raw_token)


@pm_router.post("/{invitation_id}/cancel", response_model=InvitationOut)
async def cancel_invitation(
    invitation_id: int,
    pm: User = Depends(require_project_manager),
    db: AsyncSession = Depends(get_db),
):
    inv = await invitation_service.cancel(db, pm, invitation_id)
    return _to_out(inv)


# --- Invitee by id ---


@tradie_router.get("", response_model=list[InvitationOut])
async def list_my_invitations(
    include_closed: bool = False,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    rows = await invitation_service.list_for_tradie(db, user, include_closed=include_closed)
    return [_to_out(inv) for inv in rows]


@tradie_router.post("/{invitation_id}/accept", response_model=InvitationAcceptOut)
async def accept_invitation_by_id(
    invitation_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    inv, tradie = await invitation_service.accept_by_id(db, user, invitation_id)
    return _accept_out(inv, tradie)


@tradie_router.post("/{invitation_id}/reject", response_model=InvitationOut)
async def reject_invitation_by_id(
    invitation_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    inv = await invitation_service.reject_by_id(db, user, invitation_id)
    return _to_out(inv)


# --- Invitee by token ---


@router.get("/verify/{token}", response_model=InvitationVerifyOut)
async def verify_invitation(token: str, db: AsyncSession = Depends(get_db)):
    preview = await invitation_service.verify_token(db, token)
    return InvitationVerifyOut(**asdict(preview))


@router.post("/accept", response_model=InvitationAcceptOut)
async def accept_invitation(
    body: InvitationTokenIn,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    inv, tradie = await invitation_service.accept(db, user, body.token)
    return _accept_out(inv, tradie)


@router.post("/reject", response_model=InvitationOut)
async def reject_invitation(
    body: InvitationTokenIn,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    inv = await invitation_service.reject(db, user, body.token)
    return _to_out(inv)
