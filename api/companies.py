from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.company import Company
from models.user import User
from schemas.schemas import CompanyOut, CompanyPricingOut
from services.context import get_current_user
from services.db_utils import get_or_404
from services.permission_registry import Capability
from services.permissions import ensure_company_access, require_approved_tradie, require_capability

router = APIRouter()
tradie_router = APIRouter()


@router.get("/{company_id}", response_model=CompanyOut)
async def get_company(
    company_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    ensure_company_access(user, company_id)
    company = await get_or_404(db, Company, company_id)
    return CompanyOut.model_validate(company)


@router.get("/{company_id}/pricing", response_model=CompanyPricingOut)
async def get_company_pricing(
    company_id: int,
    user: User = Depends(require_capability(Capability.VIEW_PRICING)),
    db: AsyncSession = Depends(get_db),
):
    ensure_company_access(user, company_id)
    company = await get_or_404(db, Company, company_id)
    return CompanyPricingOut(company_id=company.id, price_tier=company.price_tier)


@tradie_router.get("", response_model=CompanyOut)
async def get_my_company(
    user: User = Depends(require_approved_tradie),
    db: AsyncSession = Depends(get_db),
):
    company = await get_or_404(db, Company, user.company_id)
    return CompanyOut.model_validate(company)
