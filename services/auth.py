from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from fastapi import Request, Response
from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config import get_settings
from models.auth_session import AuthSession
from models.enums import SESSION_ACCESS, SESSION_REFRESH
from models.user import User
from services.db_utils import as_utc, utcnow
from services.errors import AuthenticationError, SessionExpired, Unauthenticated
from services.security import generate_token, hash_token, verify_password

ACCESS_COOKIE_NAME = "parts_access_token"
REFRESH_COOKIE_NAME = "parts_refresh_token"
BEARER_PREFIX = "bearer "


@dataclass
class SessionPair:
    access_token: str
    refresh_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime


def _cookie_params() -> dict:
    settings = get_settings()
    return {
        "httponly": True,
        "secure": settings.COOKIE_SECURE,
        "samesite": "lax",
        "domain": settings.SESSION_COOKIE_DOMAIN,
        "path": "/",
    }


async def issue_session_pair(db: AsyncSession, user: User, request: Request | None = None) -> SessionPair:
    settings = get_settings()
    now = utcnow()
    access_token = generate_token()
    refresh_token = generate_token()
    access_expires = now + timedelta(minutes=settings.ACCESS_TOKEN_TTL_MINUTES)
    refresh_expires = now + timedelta(days=settings.REFRESH_TOKEN_TTL_DAYS)

    ua = request.headers.get("user-agent") if request else None
    ip = request.client.host if request and request.client else None

    db.add(
        AuthSession(
            user_id=user.id,
            session_type=SESSION_ACCESS,
            token_hash=hash_token(access_token),
            expires_at=access_expires,
            created_ip=ip,
            user_agent=ua,
        )
    )
    db.add(
        AuthSession(
            user_id=user.id,
            session_type=SESSION_REFRESH,
            token_hash=hash_token(refresh_token),
            expires_at=refresh_expires,
            created_ip=ip,
            user_agent=ua,
        )
    )
    await db.commit()

    return SessionPair(
        access_token=access_token,
        refresh_token=refresh_token,
        access_expires_at=access_expires,
        refresh_expires_at=refresh_expires,
    )


def set_session_cookies(response: Response, pair: SessionPair) -> None:
    params = _cookie_params()
    response.set_cookie(
        ACCESS_COOKIE_NAME,
        pair.access_token,
        expires=pair.access_expires_at,
        **params,
    )
    response.set_cookie(
        REFRESH_COOKIE_NAME,
        pair.refresh_token,
        expires=pair.refresh_expires_at,
        **params,
    )


def clear_session_cookies(response: Response) -> None:
    params = _cookie_params()
    response.delete_cookie(ACCESS_COOKIE_NAME, path=params["path"], domain=params["domain"])
    response.delete_cookie(REFRESH_COOKIE_NAME, path=params["path"], domain=params["domain"])


def access_token_from_request(request: Request) -> str | None:
    """Access token from the session cookie, falling back to ``Authorization: Bearer``."""
    token = request.cookies.get(ACCESS_COOKIE_NAME)
    if token:
        return token
    header = request.headers.get("authorization") or ""
    if header.lower().startswith(BEARER_PREFIX):
        return header[len(BEARER_PREFIX):].strip() or None
    return None


async def _get_session_by_token(
    db: AsyncSession,
    token: str,
    session_type: str,
) -> AuthSession | None:
    hashed = hash_token(token)
    stmt = select(AuthSession).where(
        AuthSession.token_hash == hashed,
        AuthSession.session_type == session_type,
        AuthSession.revoked_at.is_(None),
    )
    return (await db.execute(stmt)).scalar_one_or_none()


def _is_live(session: AuthSession | None) -> bool:
    return session is not None and as_utc(session.expires_at) > utcnow()


async def get_user_from_request(request: Request, db: AsyncSession) -> User | None:
    token = access_token_from_request(request)
    if not token:
        return None
    session = await _get_session_by_token(db, token, SESSION_ACCESS)
    if not _is_live(session):
        return None
    user = await db.get(User, session.user_id)
    if not user or not user.is_active:
        return None
    session.last_used_at = utcnow()
    await db.commit()
    return user


async def require_user(request: Request, db: AsyncSession) -> User:
    token = access_token_from_request(request)
    if not token:
        raise Unauthenticated()
    user = await get_user_from_request(request, db)
    if not user:
        # A token was presented but is no longer honoured.
        raise SessionExpired()
    return user


async def authenticate_credentials(db: AsyncSession, email: str, password: str) -> User:
    stmt = select(User).where(User.email == email)
    user = (await db.execute(stmt)).scalar_one_or_none()
    if not user or not user.is_active or not verify_password(password, user.password_hash):
        logger.info(f"Failed login for {email}")
        raise AuthenticationError("Invalid email or password")
    if not user.email_verified:
        raise AuthenticationError("Please verify your email before logging in", email_verified=False)
    return user


async def revoke_token(db: AsyncSession, token: str, session_type: str, reason: str = "logout") -> None:
    session = await _get_session_by_token(db, token, session_type)
    if session and session.revoked_at is None:
        session.revoked_at = utcnow()
        session.revoked_reason = reason
        await db.commit()



async def rotate_access_from_refresh(
    db: AsyncSession,
    refresh_token: str,
    request: Request | None = None,
) -> tuple[User, SessionPair]:
    refresh_session = await _get_session_by_token(db, refresh_token, SESSION_REFRESH)
    if not _is_live(refresh_session):
        raise SessionExpired("Invalid refresh session")
    user = await db.get(User, refresh_session.user_id)
    if not user or not user.is_active:
        raise SessionExpired("User is inactive")

    # Single live access session per user; the used refresh token is spent.
    now = utcnow()
    await db.execute(
        update(AuthSession)
        .where(
            AuthSession.user_id == user.id,
            AuthSession.session_type == SESSION_ACCESS,
            AuthSession.revoked_at.is_(None),
        )
        .values(revoked_at=now, revoked_reason="rotated")
        .execution_options(synchronize_session=False)
    )
    refresh_session.revoked_at = now
    refresh_session.revoked_reason = "rotated"
    await db.commit()

    pair = await issue_session_pair(db, user, request=request)
    return user, pair
