"""Tests for the server-side permission dependencies and predicates."""

import httpx
import pytest
import pytest_asyncio
from fastapi import Depends, FastAPI
from sqlalchemy.exc import IntegrityError

from database import get_db
from models.enums import Role
from models.user import User
from services.errors import NotFound
from services.permission_registry import AccessLevel, Capability
from services.permissions import (
    can_access_company_data,
    can_manage_tradie,
    get_user_permissions,
    require_approved_tradie,
    require_capability,
)
from tests.factories import bearer_for, make_company, make_user


@pytest_asyncio.fixture
async def orders_client(session_maker):
    """A host app guarding its ordering routes with the access dependencies."""
    host = FastAPI()

    @host.post("/orders")
    async def place_order(user: User = Depends(require_capability(Capability.PLACE_ORDERS))):
        return {"placed_by": user.id}

    @host.get("/jobs")
    async def company_jobs(user: User = Depends(require_approved_tradie)):
        return {"company_id": user.company_id}

    async def _get_db():
        async with session_maker() as session:
            yield session

    host.dependency_overrides[get_db] = _get_db
    transport = httpx.ASGITransport(app=host)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def test_capability_dependency(orders_client, db, company, pm, tradie):
    member = await make_user(db, "member@example.test", company=company, is_approved=True)

    resp = await orders_client.post("/orders", headers=await bearer_for(db, member))
    assert resp.json() == {"placed_by": member.id}

    resp = await orders_client.post("/orders", headers=await bearer_for(db, pm))
    assert resp.status_code == 200

    resp = await orders_client.post("/orders", headers=await bearer_for(db, tradie))
    assert resp.status_code == 403
    detail = resp.json()["detail"]
    assert detail["kind"] == "ApprovalRequired"
    assert detail["capability"] == "can_place_orders"
    assert detail["access_level"] == "independent"
    assert detail["reason"] == "Join a company to place orders"

    resp = await orders_client.post("/orders")
    assert resp.status_code == 401


async def test_approved_tradie_dependency(orders_client, db, company, pm):
    member = await make_user(db, "member@example.test", company=company, is_approved=True)
    limited = await make_user(db, "limited@example.test", company=company)

    resp = await orders_client.get("/jobs", headers=await bearer_for(db, member))
    assert resp.json() == {"company_id": company.id}

    resp = await orders_client.get("/jobs", headers=await bearer_for(db, limited))
    assert resp.status_code == 403
    assert resp.json()["detail"]["reason"] == "Your company access has been limited"

    resp = await orders_client.get("/jobs", headers=await bearer_for(db, pm))
    assert resp.status_code == 403
    assert resp.json()["detail"]["kind"] == "RoleMismatch"


async def test_server_permission_mirror(db, company):
    limited = await make_user(db, "limited@example.test", company=company)

    perms = await get_user_permissions(db, limited.id)
    assert perms.access_level is AccessLevel.LIMITED

    with pytest.raises(NotFound):
        await get_user_permissions(db, limited.id + 100)


async def test_company_predicates(db, company, pm, tradie):
    rival = await make_company(db, "Rival Electrical")
    member = await make_user(db, "member@example.test", company=company, is_approved=True)
    limited = await make_user(db, "limited@example.test", company=company)
    supplier = await make_user(db, "supplier@example.test", Role.SUPPLIER, company=company)

    assert can_access_company_data(pm, company.id)
    assert can_access_company_data(member, company.id)
    assert not can_access_company_data(limited, company.id)
    assert not can_access_company_data(tradie, company.id)
    assert not can_access_company_data(pm, rival.id)
    assert not can_access_company_data(supplier, company.id)

    assert can_manage_tradie(pm, member)
    assert can_manage_tradie(pm, limited)
    assert not can_manage_tradie(pm, tradie)
    assert not can_manage_tradie(member, limited)


async def test_approved_users_must_belong_to_a_company(db, company):
    with pytest.raises(IntegrityError):
        await make_user(db, "drifter@example.test", is_approved=True)
    await db.rollback()
    await db.refresh(company)

    member = await make_user(db, "member@example.test", company=company, is_approved=True)
    member.company_id = None
    with pytest.raises(IntegrityError):
        await db.commit()
