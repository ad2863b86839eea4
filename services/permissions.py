from __future__ import annotations

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from models.enums import Role
from models.user import User
from services.context import get_current_user
from services.db_utils import get_or_404
from services.errors import ApprovalRequired, CompanyAccessDenied, RoleMismatch
from services.permission_registry import (
    AccessLevel,
    Capability,
    PermissionSet,
    denial_reason,
    permissions_for_actor,
)
from services.roles import parse_role


async def get_user_permissions(db: AsyncSession, user_id: int) -> PermissionSet:
    user = await get_or_404(db, User, user_id, "User")
    return permissions_for_actor(user)


def can_access_company_data(user: User, company_id: int) -> bool:
    """Project managers and approved tradies may read their own company's data."""
    role = parse_role(user.role)
    if user.company_id is None or user.company_id != company_id:
        return False
    if role is Role.PROJECT_MANAGER:
        return True
    return role is Role.TRADIE and bool(user.is_approved)


def can_manage_tradie(pm: User, tradie: User) -> bool:
    if parse_role(pm.role) is not Role.PROJECT_MANAGER or pm.company_id is None:
        return False
    return parse_role(tradie.role) is Role.TRADIE and tradie.company_id == pm.company_id


def ensure_company_access(user: User, company_id: int) -> None:
    if not can_access_company_data(user, company_id):
        raise CompanyAccessDenied(company_id=company_id)



def require_role(*roles: Role):
    allowed = frozenset(roles)

    async def dependency(user: User = Depends(get_current_user)) -> User:
        if parse_role(user.role) not in allowed:
            raise RoleMismatch(
                "Insufficient permissions",
                required_roles=sorted(r.value for r in allowed),
            )
        return user

    return dependency


def require_capability(capability: Capability):
    async def dependency(user: User = Depends(get_current_user)) -> User:
        perms = permissions_for_actor(user)
        if not perms.allows(capability):
            raise ApprovalRequired(
                "Not allowed for your current access level",
                capability=capability.value,
                access_level=perms.access_level.value,
                reason=denial_reason(perms.access_level),
            )
        return user

    return dependency


async def require_approved_tradie(user: User = Depends(get_current_user)) -> User:
    if parse_role(user.role) is not Role.TRADIE:
        raise RoleMismatch("Tradie role required")
    perms = permissions_for_actor(user)
    if perms.access_level is not AccessLevel.APPROVED:
        raise ApprovalRequired(
            access_level=perms.access_level.value,
            reason=denial_reason(perms.access_level),
        )
    return user


require_project_manager = require_role(Role.PROJECT_MANAGER)
