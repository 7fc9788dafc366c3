# healpoints/db/crud/notification.py
import logging
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from healpoints.config.constants import NotificationType
from healpoints.core.errors import NotFoundError
from healpoints.db.models import NotificationModel

logger = logging.getLogger(__name__)


async def add_notification(
    db: AsyncSession,
    user_id: int,
    message: str,
    type_: NotificationType = NotificationType.APPOINTMENT,
    target_id: Optional[int] = None,
) -> NotificationModel:
    """
    Stage a notification row in the caller's transaction.

    The row is flushed so it has an id, but not committed: it becomes visible
    (and is pushed) only if the surrounding state change commits.
    """
    notification = NotificationModel(
        user_id=user_id,
        message=message,
        type=NotificationType(type_).value,
        target_id=target_id,
        is_read=False,
    )
    db.add(notification)
    await db.flush()
    await db.refresh(notification)
    logger.debug(f"CRUD: Staged notification_id={notification.id} for user_id={user_id}")
    return notification


async def list_notifications(
    db: AsyncSession, user_id: int, limit: Optional[int] = None
) -> List[NotificationModel]:
    """Inbox of a user, newest first."""
    stmt = (
        select(NotificationModel)
        .where(NotificationModel.user_id == user_id)
        .order_by(NotificationModel.created_at.desc(), NotificationModel.id.desc())
    )
    if limit:
        stmt = stmt.limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def list_unread(db: AsyncSession, user_id: int, limit: int) -> List[NotificationModel]:
    """The `limit` most recent unread notifications, oldest first (replay order)."""
    stmt = (
        select(NotificationModel)
        .where(NotificationModel.user_id == user_id, NotificationModel.is_read == False)  # noqa: E712
        .order_by(NotificationModel.id.desc())
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(reversed(result.scalars().all()))


async def count_unread(db: AsyncSession, user_id: int) -> int:
    result = await db.execute(
        select(func.count(NotificationModel.id)).where(
            NotificationModel.user_id == user_id,
            NotificationModel.is_read == False,  # noqa: E712
        )
    )
    return result.scalar_one()


async def mark_read(db: AsyncSession, user_id: int, notification_id: int) -> int:
    """
    Mark one notification as read. Idempotent.

    Returns:
        1 if the flag changed, 0 if it was already read.

    Raises:
        NotFoundError: unknown id, or a notification of another user.
    """
    owner = await db.scalar(
        select(NotificationModel.user_id).where(NotificationModel.id == notification_id)
    )
    if owner is None or owner != user_id:
        raise NotFoundError("Notification not found")

    result = await db.execute(
        update(NotificationModel)
        .where(NotificationModel.id == notification_id, NotificationModel.is_read == False)  # noqa: E712
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount


async def mark_all_read(db: AsyncSession, user_id: int) -> int:
    """Mark every unread notification of the user as read; returns how many changed."""
    result = await db.execute(
        update(NotificationModel)
        .where(NotificationModel.user_id == user_id, NotificationModel.is_read == False)  # noqa: E712
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    logger.info(f"CRUD: Marked {result.rowcount} notifications read for user_id={user_id}")
    return result.rowcount
