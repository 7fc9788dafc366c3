# healpoints/services/notifier.py
"""
Real-time fan-out of state changes.

`ConnectionManager` tracks the live WebSocket connections of each user.
`NotificationDispatcher` persists notifications (durable inbox) and pushes
them, plus the coarse dashboard hints, to whoever is connected. Both are
built in the application lifespan and reached through `app.state`.

Delivery is at-least-once: a notification can reach a client live and again
through the replay sent on (re)connect, so clients dedupe by notification id.
"""
import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, Optional, Set, Tuple

from fastapi import WebSocket
from sqlalchemy.ext.asyncio import AsyncSession

from healpoints.config.constants import NotificationType, PushEvent, Role
from healpoints.db.crud import notification as notification_crud
from healpoints.db.crud import stats as stats_crud
from healpoints.db.models import NotificationModel
from healpoints.schemas.notification import NotificationOut

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Live WebSocket connections, keyed by user id (a user may have several tabs open)."""

    def __init__(self):
        self._by_user: Dict[int, Set[WebSocket]] = defaultdict(set)
        self._owners: Dict[WebSocket, Tuple[int, str]] = {}

    async def connect(self, websocket: WebSocket, user_id: int, role: str) -> None:
        await websocket.accept()
        self._by_user[user_id].add(websocket)
        self._owners[websocket] = (user_id, role)
        logger.info(f"User {user_id} ({role}) connected; {len(self._by_user[user_id])} live connection(s)")

    def disconnect(self, websocket: WebSocket) -> None:
        owner = self._owners.pop(websocket, None)
        if owner is None:
            return
        user_id, _ = owner
        sockets = self._by_user.get(user_id)
        if sockets is not None:
            sockets.discard(websocket)
            if not sockets:
                del self._by_user[user_id]
                logger.info(f"User {user_id} disconnected (all connections closed)")

    def is_online(self, user_id: int) -> bool:
        return bool(self._by_user.get(user_id))

    def is_connected(self, websocket: WebSocket) -> bool:
        return websocket in self._owners

    def online_users(self, role: Optional[str] = None) -> Set[int]:
        return {
            user_id
            for user_id, owner_role in self._owners.values()
            if role is None or owner_role == role
        }

    async def send(self, websocket: WebSocket, event: PushEvent, data: Any) -> bool:
        try:
            await websocket.send_json({"event": PushEvent(event).value, "data": data})
            return True
        except Exception as e:
            # The peer went away between our lookup and the send
            logger.warning(f"Dropping dead connection while sending '{event}': {e}")
            self.disconnect(websocket)
            return False

    async def send_to_user(
        self,
        user_id: int,
        event: PushEvent,
        data: Any,
        exclude: Optional[WebSocket] = None,
    ) -> int:
        """Push one frame to every connection of the user; returns how many accepted it."""
        delivered = 0
        for websocket in list(self._by_user.get(user_id, ())):
            if websocket is exclude:
                continue
            if await self.send(websocket, event, data):
                delivered += 1
        return delivered

    async def send_to_role(self, role: str, event: PushEvent, data: Any) -> int:
        delivered = 0
        for user_id in self.online_users(role):
            delivered += await self.send_to_user(user_id, event, data)
        return delivered


def serialize_notification(notification: NotificationModel) -> Dict[str, Any]:
    return NotificationOut.model_validate(notification).model_dump(mode="json")


class NotificationDispatcher:
    """Durable inbox plus live push; the only writer of notification rows."""

    def __init__(self, connections: ConnectionManager, replay_limit: int = 20):
        self.connections = connections
        self.replay_limit = replay_limit

    async def stage(
        self,
        db: AsyncSession,
        user_id: int,
        message: str,
        type_: NotificationType = NotificationType.APPOINTMENT,
        target_id: Optional[int] = None,
    ) -> NotificationModel:
        """Persist a notification inside the caller's transaction; push later with `publish`."""
        return await notification_crud.add_notification(db, user_id, message, type_, target_id)

    async def deliver(self, notifications: Iterable[NotificationModel]) -> int:
        delivered = 0
        for notification in notifications:
            if not self.connections.is_online(notification.user_id):
                logger.debug(
                    f"User {notification.user_id} offline; notification_id={notification.id} waits in the inbox"
                )
                continue
            delivered += await self.connections.send_to_user(
                notification.user_id,
                PushEvent.NOTIFICATION,
                serialize_notification(notification),
            )
        return delivered

    async def notify(
        self,
        db: AsyncSession,
        user_id: int,
        message: str,
        type_: NotificationType = NotificationType.APPOINTMENT,
        target_id: Optional[int] = None,
    ) -> NotificationModel:
        """Persist a standalone notification, commit it and push it if the user is online."""
        notification = await self.stage(db, user_id, message, type_, target_id)
        await db.commit()
        await self.deliver([notification])
        return notification

    async def publish(
        self,
        db: AsyncSession,
        notifications: Iterable[NotificationModel],
        doctor_ids: Iterable[int] = (),
    ) -> None:
        """
        Push committed notifications, then the dashboard hints.

        Must be called after the transaction that staged the notifications
        has committed, so a rolled-back change never reaches a client.
        """
        await self.deliver(notifications)
        for doctor_id in set(doctor_ids):
            await self.doctor_dashboard_update(db, doctor_id)
        await self.admin_dashboard_update(db)

    async def doctor_dashboard_update(self, db: AsyncSession, doctor_id: int) -> None:
        if not self.connections.is_online(doctor_id):
            return
        counters = await stats_crud.doctor_counters(db, doctor_id)
        await self.connections.send_to_user(doctor_id, PushEvent.DOCTOR_DASHBOARD_UPDATE, counters)

    async def admin_dashboard_update(self, db: AsyncSession) -> None:
        if not self.connections.online_users(Role.ADMIN.value):
            return
        counters = await stats_crud.admin_counters(db)
        await self.connections.send_to_role(Role.ADMIN.value, PushEvent.ADMIN_DASHBOARD_UPDATE, counters)

    async def mark_read(
        self, db: AsyncSession, user_id: int, notification_id: Optional[int] = None
    ) -> int:
        """
        Mark one notification (or, without an id, the whole inbox) as read.

        Idempotent; every open connection of the user, the requesting tab
        included, gets a `notification-read` event so all tabs clear the badge.
        """
        if notification_id is None:
            updated = await notification_crud.mark_all_read(db, user_id)
        else:
            updated = await notification_crud.mark_read(db, user_id, notification_id)

        await self.connections.send_to_user(
            user_id,
            PushEvent.NOTIFICATION_READ,
            {"notification_id": notification_id, "all": notification_id is None},
        )
        return updated

    async def replay(self, db: AsyncSession, websocket: WebSocket, user_id: int) -> int:
        """
        Re-send the most recent unread notifications to a freshly opened connection.

        Stops at the first failed send (the connection is dropped by then) and
        returns how many frames went out.
        """
        pending = await notification_crud.list_unread(db, user_id, self.replay_limit)
        sent = 0
        for notification in pending:
            if not await self.connections.send(
                websocket, PushEvent.NOTIFICATION, serialize_notification(notification)
            ):
                break
            sent += 1
        return sent
