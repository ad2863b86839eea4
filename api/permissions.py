from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.user import User
from schemas.schemas import GuardDecisionOut, PermissionsOut
from services.context import get_current_user, get_optional_user
from services.guard import evaluate_route
from services.permission_registry import PermissionSet, access_message
from services.permissions import get_user_permissions

router = APIRouter()
guard_router = APIRouter()


def permissions_out(perms: PermissionSet) -> PermissionsOut:
    return PermissionsOut(**perms.to_dict(), message=access_message(perms.access_level))


@router.get("/permissions", response_model=PermissionsOut)
async def get_permissions(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return permissions_out(await get_user_permissions(db, user.id))


@guard_router.get("/guard", response_model=GuardDecisionOut)
async def check_route(path: str = "/", user: User | None = Depends(get_optional_user)):
    return evaluate_route(user, path).to_dict()
