from datetime import timedelta

from fastapi import APIRouter, Depends, Request, Response
from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.permissions import permissions_out
from config import get_settings
from database import get_db
from models.company import Company
from models.enums import SESSION_ACCESS, SESSION_REFRESH, PriceTier, Role
from models.user import User
from schemas.schemas import (
    AuthLoginIn,
    AuthSessionOut,
    AuthSignupIn,
    AuthSignupOut,
    EmailVerifyIn,
    UserOut,
)
from services import email_service
from services import invitations as invitation_service
from services.auth import (
    REFRESH_COOKIE_NAME,
    SessionPair,
    access_token_from_request,
    authenticate_credentials,
    clear_session_cookies,
    issue_session_pair,
    revoke_token,
    rotate_access_from_refresh,
    set_session_cookies,
)
from services.context import get_current_user
from services.db_utils import as_utc, utcnow
from services.errors import AccessError, Conflict, NotFound, RoleMismatch, Unauthenticated
from services.permission_registry import permissions_for_actor
from services.roles import SELF_REGISTER_ROLES, home_path_for, parse_role
from services.security import MIN_PASSWORD_LENGTH, hash_password, hash_token, issue_secret, normalize_email

router = APIRouter()


def _session_payload(user: User, pair: SessionPair | None = None) -> AuthSessionOut:
    return AuthSessionOut(
        user=UserOut.model_validate(user),
        permissions=permissions_out(permissions_for_actor(user)),
        home_path=home_path_for(user.role),
        access_token=pair.access_token if pair else None,
        access_expires_at=pair.access_expires_at if pair else None,
    )


@router.post("/register", response_model=AuthSignupOut, status_code=201)
async def register(
    body: AuthSignupIn,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    email = normalize_email(body.email)
    if len(body.password) < MIN_PASSWORD_LENGTH:
        raise AccessError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    role = parse_role(body.role)
    if role not in SELF_REGISTER_ROLES:
        raise RoleMismatch("This role cannot self-register", role=body.role)

    existing = (await db.execute(select(User).where(User.email == email))).scalar_one_or_none()
    if existing:
        raise Conflict("A user with this email already exists")

    if body.invitation_token:
        if role is not Role.TRADIE:
            raise RoleMismatch("Invitations can only be accepted by tradies")
        user, _ = await invitation_service.register_with_invitation(
            db,
            token=body.invitation_token,
            full_name=body.full_name,
            email=email,
            password=body.password,
            phone=body.phone,
        )
        pair = await issue_session_pair(db, user, request=request)
        set_session_cookies(response, pair)
        logger.info(f"Registered invited tradie {user.id} ({email})")
        return AuthSignupOut(
            user=UserOut.model_validate(user),
            verification_required=False,
            session=_session_payload(user, pair),
        )

    company_id: int | None = None
    if role is Role.PROJECT_MANAGER:
        company_name = (body.company_name or "").strip()
        if not company_name:
            raise AccessError("Company name is required for project managers")
        company = Company(name=company_name, price_tier=PriceTier.T3.value)
        db.add(company)
        await db.flush()
        company_id = company.id

    raw_token, token_hash = issue_secret()
    user = User(
        full_name=body.full_name.strip(),
        email=email,
        phone=body.phone,
        password_hash=hash_password(body.password),
        role=role.value,
        company_id=company_id,
        is_approved=False,
        email_verified=False,
        email_verification_token_hash=token_hash,
        email_verification_expires_at=utcnow() + timedelta(hours=get_settings().EMAIL_VERIFY_TTL_HOURS),
        is_active=True,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)

    link = f"{get_settings().FRONTEND_BASE_URL}/verify-email?token={raw_token}"
    logger.info(f"Registered {role.value} {user.id} ({email})")
    await email_service.send_email(email, email_service.verification_message(full_name=user.full_name, link=link))
    return AuthSignupOut(
        user=UserOut.model_validate(user),
        verification_required=True,
        verification_link=link,
    )


@router.post("/verify-email")
async def verify_email(body: EmailVerifyIn, db: AsyncSession = Depends(get_db)):
    stmt = select(User).where(User.email_verification_token_hash == hash_token(body.token))
    user = (await db.execute(stmt)).scalar_one_or_none()
    if not user:
        raise NotFound("Invalid verification token")
    expires_at = as_utc(user.email_verification_expires_at)
    if expires_at and expires_at <= utcnow():
        raise AccessError("Verification token has expired")

    user.email_verified = True
    user.email_verification_token_hash = None
    user.email_verification_expires_at = None
    await db.commit()
    return {"ok": True, "message": "Email verification successful. You can now log in."}


@router.post("/login", response_model=AuthSessionOut)
async def login(
    body: AuthLoginIn,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    user = await authenticate_credentials(db, normalize_email(body.email), body.password)
    pair = await issue_session_pair(db, user, request=request)
    set_session_cookies(response, pair)
    return _session_payload(user, pair)


@router.post("/logout")
async def logout(request: Request, response: Response, db: AsyncSession = Depends(get_db)):
    access = access_token_from_request(request)
    refresh = request.cookies.get(REFRESH_COOKIE_NAME)
    if access:
        await revoke_token(db, access, SESSION_ACCESS)
    if refresh:
        await revoke_token(db, refresh, SESSION_REFRESH)
    clear_session_cookies(response)
    return {"ok": True}


@router.post("/refresh", response_model=AuthSessionOut)
async def refresh_session(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    refresh_token = request.cookies.get(REFRESH_COOKIE_NAME)
    if not refresh_token:
        raise Unauthenticated("Refresh cookie is missing")
    user, pair = await rotate_access_from_refresh(db, refresh_token, request=request)
    set_session_cookies(response, pair)
    return _session_payload(user, pair)


@router.get("/me", response_model=AuthSessionOut)
async def me(user: User = Depends(get_current_user)):
    return _session_payload(user)
