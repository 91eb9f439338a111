import asyncio
import json
from typing import Callable

import structlog
from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from pymongo.errors import PyMongoError
from redis.exceptions import RedisError

from campus_chat.config import get_settings
from campus_chat.database.connection import mongo_db_dependency
from campus_chat.errors import ChatError
from campus_chat.schemas.events import conversation_channel
from campus_chat.services.chat_service import ChatService
from campus_chat.utils.dependencies import get_chat_service, resolve_user
from campus_chat.utils.realtime_bus import get_bus
from campus_chat.utils.websocket_manager import ConnectionManager


logger = structlog.get_logger()

router = APIRouter(tags=["chat"])
manager = ConnectionManager()


def _error_frame(detail: str) -> str:
    return json.dumps({"type": "error", "detail": detail})


async def presence_heartbeat(service: ChatService, conversation_id: str, user_id: str, interval: float, is_typing: Callable[[], bool]) -> None:
    """Refresh the presence entry every ``interval`` seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        try:
            await service.track_presence(conversation_id, user_id, typing=is_typing())
        except (RedisError, PyMongoError) as exc:
            # the entry outlives one missed beat; the next one restores it
            logger.warning("presence_heartbeat_failed", conversation_id=conversation_id, user_id=user_id, error=str(exc))


@router.websocket("/ws/conversations/{conversation_id}")
async def conversation_socket(websocket: WebSocket, conversation_id: str, service: ChatService = Depends(get_chat_service), db=Depends(mongo_db_dependency)):
    # browsers cannot set headers on a websocket, so the token rides in ?token=
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=4401)
        return
    try:
        user = await resolve_user(token, db)
    except HTTPException:
        await websocket.close(code=4401)
        return
    user_id = user["_id"]
    try:
        await service.get_conversation(conversation_id, user_id)
    except ChatError as exc:
        await websocket.close(code=4000 + exc.status_code)
        return

    await manager.connect(conversation_id, user_id, websocket)
    bus = await get_bus()

    async def _forward(data: str) -> None:
        try:
            await websocket.send_text(data)
        except (WebSocketDisconnect, RuntimeError):
            logger.debug("socket_forward_dropped", conversation_id=conversation_id, user_id=user_id)

    subscriber = await bus.subscribe(conversation_channel(conversation_id), _forward)
    sub_task = asyncio.create_task(subscriber.run())
    typing = False
    await service.track_presence(conversation_id, user_id, typing=False)

    ttl = get_settings().presence_ttl_seconds

    heartbeat_task = asyncio.create_task(
        presence_heartbeat(service, conversation_id, user_id, ttl / 2, lambda: typing)
    )
    logger.info("socket_connected", conversation_id=conversation_id, user_id=user_id)

    try:
        while True:
            data = await websocket.receive_text()
            try:
                frame = json.loads(data)
            except json.JSONDecodeError:
                await websocket.send_text(_error_frame("Invalid JSON frame"))
                continue
            if not isinstance(frame, dict):
                await websocket.send_text(_error_frame("Invalid frame"))
                continue
            # Expect frame = {"type": "typing", "typing": bool} | {"type": "message", "content": str, "client_message_id"?: str} | {"type": "read"}
            kind = frame.get("type")
            try:
                if kind == "typing":
                    typing = bool(frame.get("typing"))
                    await service.track_presence(conversation_id, user_id, typing=typing)
                elif kind == "message":
                    await service.send_message(conversation_id, user_id, frame.get("content"), frame.get("client_message_id"))
                elif kind == "read":
                    await service.mark_read(conversation_id, user_id)
                else:
                    await websocket.send_text(_error_frame("Unsupported frame type"))
            except ChatError as exc:
                await websocket.send_text(_error_frame(exc.message))
    except WebSocketDisconnect:
        logger.info("socket_disconnected", conversation_id=conversation_id, user_id=user_id)
    finally:
        heartbeat_task.cancel()
        await subscriber.cancel()
        sub_task.cancel()
        if manager.disconnect(conversation_id, user_id, websocket):
            try:
                await service.untrack_presence(conversation_id, user_id)
            except (RedisError, PyMongoError) as exc:
                logger.warning("presence_untrack_failed", conversation_id=conversation_id, user_id=user_id, error=str(exc))
