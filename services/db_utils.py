"""Shared database utility functions."""

from datetime import datetime, timezone
from typing import Type, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from services.errors import NotFound

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from backends that drop the offset (SQLite)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


async def get_or_404(
    db: AsyncSession,
    model: Type[T],
    id: int,
    name: str | None = None,
) -> T:
    """Fetch a model instance by ID or raise 404 if not found.

    Args:
        db: Database session
        model: SQLAlchemy model class
        id: Primary key ID to fetch
        name: Optional custom name for error message. If None, uses the model's
              class name (e.g., "Company" becomes "Company not found").

    Returns:
        Model instance

    Raises:
        NotFound: 404 with message "{name} not found"
    """
    obj = await db.get(model, id)
    if not obj:
        entity_name = name or model.__name__
        raise NotFound(f"{entity_name} not found")
    return obj
