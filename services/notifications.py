"""In-app notifications for invitation and membership events.

Builders only ``db.add`` the row; the caller's transaction commits it
together with the state change that triggered it.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from models.app_notification import AppNotification
from models.enums import RELATED_INVITATION, RELATED_USER, NotificationType
from models.invitation import Invitation
from models.user import User
from services.errors import AuthorizationError, NotFound

# Higher sorts first in the notification tray.
NOTIFICATION_PRIORITY: dict[str, int] = {
    NotificationType.INVITATION_RECEIVED: 3,
    NotificationType.INVITATION_ACCEPTED: 2,
    NotificationType.INVITATION_REJECTED: 2,
    NotificationType.ACCESS_REMOVED: 1,
    NotificationType.TRADIE_REMOVED_CONFIRMATION: 1,
}


@dataclass
class NotificationPage:
    notifications: list[AppNotification]
    total: int
    page: int
    total_pages: int
    has_more: bool


def notify(
    db: AsyncSession,
    *,
    user_id: int,
    notif_type: NotificationType | str,
    title: str,
    message: str,
    related_id: int | None = None,
    related_type: str | None = None,
) -> AppNotification:
    notif = AppNotification(
        user_id=user_id,
        notif_type=str(notif_type),
        title=title,
        message=message,
        related_id=related_id,
        related_type=related_type,
        is_read=False,
    )
    db.add(notif)
    return notif


def _company_label(pm: User, company_name: str | None) -> str:
    return company_name or f"{pm.full_name}'s company"


def notify_invitation_received(
    db: AsyncSession, invitation: Invitation, invitee: User, pm: User, company_name: str | None
) -> AppNotification:
    return notify(
        db,
        user_id=invitee.id,
        notif_type=NotificationType.INVITATION_RECEIVED,
        title="New company invitation",
        message=f"{pm.full_name} invited you to join {_company_label(pm, company_name)}.",
        related_id=invitation.id,
        related_type=RELATED_INVITATION,
    )


def notify_invitation_cancelled(
    db: AsyncSession, invitation: Invitation, invitee: User, pm: User
) -> AppNotification:
    return notify(
        db,
        user_id=invitee.id,
        notif_type=NotificationType.INVITATION_CANCELLED,
        title="Invitation cancelled",
        message=f"{pm.full_name} cancelled their invitation.",
        related_id=invitation.id,
        related_type=RELATED_INVITATION,
    )


def notify_invitation_responded(
    db: AsyncSession, invitation: Invitation, tradie: User, *, accepted: bool
) -> AppNotification:
    if accepted:
        notif_type = NotificationType.INVITATION_ACCEPTED
        title = "Invitation accepted"
        message = f"{tradie.full_name} accepted your invitation and joined your company."
    else:
        notif_type = NotificationType.INVITATION_REJECTED
        title = "Invitation declined"
        message = f"{tradie.full_name} declined your invitation."
    return notify(
        db,
        user_id=invitation.project_manager_id,
        notif_type=notif_type,
        title=title,
        message=message,
        related_id=invitation.id,
        related_type=RELATED_INVITATION,
    )


def notify_access_removed(
    db: AsyncSession, tradie: User, pm: User, reason: str | None = None
) -> tuple[AppNotification, AppNotification]:
    suffix = f" Reason: {reason}" if reason else ""
    removed = notify(
        db,
        user_id=tradie.id,
        notif_type=NotificationType.ACCESS_REMOVED,
        title="Company access removed",
        message=f"Your company access has been limited to browse-only by {pm.full_name}.{suffix}",
        related_id=pm.id,
        related_type=RELATED_USER,
    )
    confirmation = notify(
        db,
        user_id=pm.id,
        notif_type=NotificationType.TRADIE_REMOVED_CONFIRMATION,
        title="Tradie removed",
        message=f"{tradie.full_name} no longer has company access.",
        related_id=tradie.id,
        related_type=RELATED_USER,
    )
    return removed, confirmation


def notify_membership_approved(db: AsyncSession, tradie: User, pm: User) -> AppNotification:
    return notify(
        db,
        user_id=tradie.id,
        notif_type=NotificationType.MEMBERSHIP_APPROVED,
        title="Company access approved",
        message=f"{pm.full_name} approved your company access. You can now place orders.",
        related_id=pm.id,
        related_type=RELATED_USER,
    )


async def list_for_user(
    db: AsyncSession,
    user_id: int,
    *,
    page: int = 1,
    limit: int = 10,
    read: bool | None = None,
    notif_type: str | None = None,
    search: str | None = None,
) -> NotificationPage:
    page = max(page, 1)
    limit = min(max(limit, 1), 100)

    filters = [AppNotification.user_id == user_id]
    if read is not None:
        filters.append(AppNotification.is_read.is_(read))
    if notif_type and notif_type != "all":
        filters.append(AppNotification.notif_type == notif_type)
    if search:
        pattern = f"%{search.lower()}%"
        filters.append(
            or_(
                func.lower(AppNotification.title).like(pattern),
                func.lower(AppNotification.message).like(pattern),
            )
        )

    total = (
        await db.execute(select(func.count(AppNotification.id)).where(*filters))
    ).scalar_one()
    offset = (page - 1) * limit
    stmt = (
        select(AppNotification)
        .where(*filters)
        .order_by(AppNotification.created_at.desc(), AppNotification.id.desc())
        .offset(offset)
        .limit(limit)
    )
    rows = list((await db.execute(stmt)).scalars().all())
    return NotificationPage(
        notifications=rows,
        total=total,
        page=page,
        total_pages=math.ceil(total / limit) if total else 0,
        has_more=offset + len(rows) < total,
    )


async def unread_count(db: AsyncSession, user_id: int) -> int:
    stmt = select(func.count(AppNotification.id)).where(
        AppNotification.user_id == user_id,
        AppNotification.is_read.is_(False),
    )
    return (await db.execute(stmt)).scalar_one()


async def mark_read(db: AsyncSession, user_id: int, notification_id: int) -> AppNotification:
    notif = await db.get(AppNotification, notification_id)
    if not notif:
        raise NotFound("Notification not found")
    if notif.user_id != user_id:
        raise AuthorizationError("Not authorized to update this notification")
    notif.is_read = True
    await db.commit()
    await db.refresh(notif)
    return notif


async def mark_all_read(db: AsyncSession, user_id: int) -> int:
    stmt = (
        update(AppNotification)
        .where(
            AppNotification.user_id == user_id,
            AppNotification.is_read.is_(False),
        )
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    await db.commit()
    return int(result.rowcount or 0)


def _priority_key(notif) -> tuple[int, float, int]:
    created = getattr(notif, "created_at", None)
    return (
        -NOTIFICATION_PRIORITY.get(getattr(notif, "notif_type", ""), 0),
        -(created.timestamp() if created else 0.0),
        -(getattr(notif, "id", None) or 0),
    )


def sort_by_priority(notifications: list) -> list:
    """Tray ordering: by type priority, then newest first."""
    return sorted(notifications, key=_priority_key)


async def tray(db: AsyncSession, user_id: int, limit: int = 5) -> list[AppNotification]:
    """Unread notifications for the header tray, most important first."""
    stmt = select(AppNotification).where(
        AppNotification.user_id == user_id,
        AppNotification.is_read.is_(False),
    )
    rows = list((await db.execute(stmt)).scalars().all())
    return sort_by_priority(rows)[: max(1, min(limit, 50))]
