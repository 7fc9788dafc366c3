from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from healpoints.core.middleware import get_current_user, get_db, get_dispatcher, user_from_token
from healpoints.db.crud import notification as inbox
from healpoints.db.session import background_db_session
from healpoints.schemas.notification import MarkReadRequest, MarkReadResponse, NotificationListResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["notifications"])
socket_router = APIRouter(tags=["notifications"])


@router.get("", response_model=NotificationListResponse)
@router.get("/", response_model=NotificationListResponse, include_in_schema=False)
async def list_notifications_route(
    limit: Optional[int] = Query(None, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
):
    """Inbox of the logged-in user, newest first"""
    user_id = current_user["user_id"]
    return NotificationListResponse(
        notifications=await inbox.list_notifications(db, user_id, limit),
        unread_count=await inbox.count_unread(db, user_id),
    )


@router.post("/mark-read", response_model=MarkReadResponse)
async def mark_read_route(
    body: Optional[MarkReadRequest] = None,
    db: AsyncSession = Depends(get_db),
    dispatcher=Depends(get_dispatcher),
    current_user: dict = Depends(get_current_user),
):
    """Mark one notification, or every notification when no id is given, as read"""
    notification_id = body.notification_id if body else None
    updated = await dispatcher.mark_read(db, current_user["user_id"], notification_id)
    message = "Notification marked as read" if notification_id else "All notifications marked as read"
    return MarkReadResponse(message=message, updated=updated)


@socket_router.websocket("/ws")
async def notification_socket(websocket: WebSocket, token: Optional[str] = Query(None)):
    """
    Push channel. Authenticate with `?token=<access token>` or the session cookie.

    On connect the most recent unread notifications are replayed; afterwards
    the server only pushes. Anything the client sends is ignored.
    """
    user = user_from_token(token or websocket.cookies.get("session"))
    if not user:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    connections = websocket.app.state.connections
    dispatcher = websocket.app.state.dispatcher
    await connections.connect(websocket, user["user_id"], user["role"])
    try:
        async with background_db_session(websocket.app.state.session_factory) as db:
            replayed = await dispatcher.replay(db, websocket, user["user_id"])
        logger.debug(f"Replayed {replayed} unread notifications to user {user['user_id']}")
        if not connections.is_connected(websocket):
            logger.debug(f"Socket of user {user['user_id']} died during replay")
            return
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug(f"Socket of user {user['user_id']} closed by the client")
    except RuntimeError as e:
        # starlette refuses receive/send once the socket is closed
        logger.debug(f"Socket of user {user['user_id']} is no longer usable: {e}")
    finally:
        connections.disconnect(websocket)
