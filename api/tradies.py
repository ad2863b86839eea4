from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.user import User
from schemas.schemas import MemberOut, MembershipRevokeIn, UserOut
from services import invitations as invitation_service
from services.permission_registry import resolve_access_level
from services.permissions import require_project_manager

router = APIRouter()


def _member_out(user: User) -> MemberOut:
    level = resolve_access_level(user.role, user.company_id, user.is_approved)
    return MemberOut(user=UserOut.model_validate(user), access_level=level.value if level else "unknown")


@router.get("", response_model=list[MemberOut])
async def list_tradies(
    pm: User = Depends(require_project_manager),
    db: AsyncSession = Depends(get_db),
):
    tradies = await invitation_service.list_company_tradies(db, pm)
    return [_member_out(t) for t in tradies]


@router.post("/{tradie_id}/remove", response_model=MemberOut)
async def remove_tradie(
    tradie_id: int,
    body: MembershipRevokeIn | None = None,
    pm: User = Depends(require_project_manager),
    db: AsyncSession = Depends(get_db),
):
    reason = body.reason if body else None
    tradie = await invitation_service.revoke_membership(db, pm, tradie_id, reason)
    return _member_out(tradie)


@router.post("/{tradie_id}/approve", response_model=MemberOut)
async def approve_tradie(
    tradie_id: int,
    pm: User = Depends(require_project_manager),
    db: AsyncSession = Depends(get_db),
):
    tradie = await invitation_service.approve_member(db, pm, tradie_id)
    return _member_out(tradie)
