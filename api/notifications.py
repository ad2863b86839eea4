from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.user import User
from schemas.schemas import AppNotificationOut, NotificationPageOut, UnreadCountOut
from services import notifications as notification_service
from services.context import get_current_user

router = APIRouter()


@router.get("", response_model=NotificationPageOut)
async def list_notifications(
    page: int = 1,
    limit: int = 10,
    read: bool | None = None,
    notif_type: str | None = Query(default=None, alias="type"),
    search: str | None = None,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await notification_service.list_for_user(
        db,
        user.id,
        page=page,
        limit=limit,
        read=read,
        notif_type=notif_type,
        search=search,
    )
    return NotificationPageOut(
        notifications=[AppNotificationOut.model_validate(n) for n in result.notifications],
        total=result.total,
        page=result.page,
        total_pages=result.total_pages,
        has_more=result.has_more,
    )


@router.get("/unread/count", response_model=UnreadCountOut)
async def unread_count(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return UnreadCountOut(count=await notification_service.unread_count(db, user.id))


@router.get("/tray", response_model=list[AppNotificationOut])
async def notification_tray(
    limit: int = 5,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    rows = await notification_service.tray(db, user.id, limit=limit)
    return [AppNotificationOut.model_validate(n) for n in rows]


@router.post("/{notification_id}/read", response_model=AppNotificationOut)
async def mark_notification_read(
    notification_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    notif = await notification_service.mark_read(db, user.id, notification_id)
    return AppNotificationOut.model_validate(notif)


@router.post("/read-all")
async def mark_all_notifications_read(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return {"updated": await notification_service.mark_all_read(db, user.id)}
