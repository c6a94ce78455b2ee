import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from petchat.database.connection import get_database
from petchat.exceptions import Unauthorized
from petchat.services.gateway import MessagingGateway
from petchat.utils.dependencies import user_from_token
from petchat.utils.security import extract_bearer
from petchat.utils.websocket_manager import ClientConnection


logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])


async def _receive_frame(websocket: WebSocket) -> Optional[str]:
    # None for a binary frame; the gateway answers it with an error
    message = await websocket.receive()
    if message["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(message.get("code", 1000))
    return message.get("text")


@router.websocket("/ws/chat")
async def chat_socket(websocket: WebSocket):
    gateway: MessagingGateway = websocket.app.state.gateway
    settings = gateway.settings

    # identity is taken from the credential on the upgrade request, never from a frame
    token = websocket.query_params.get("token") or extract_bearer(websocket.headers.get("authorization"))
    try:
        user = await user_from_token(token, get_database())
    except Unauthorized as exc:
        logger.info("Socket handshake refused", extra={"reason": exc.detail})
        await websocket.close(code=4401)
        return
    user_id = user["_id"]

    await websocket.accept()
    connection = ClientConnection(websocket, user_id, queue_size=settings.WS_OUTBOUND_QUEUE_SIZE)
    connection.start()
    close_code = 1000
    loop = asyncio.get_running_loop()
    deadline = loop.time() + settings.WS_REGISTER_TIMEOUT_SECONDS
    try:
        while True:
            if connection.registered:
                raw = await _receive_frame(websocket)
            else:
                try:
                    raw = await asyncio.wait_for(_receive_frame(websocket), timeout=max(deadline - loop.time(), 0))
                except asyncio.TimeoutError:
                    logger.info("Dropping unregistered connection", extra={"user_id": user_id})
                    close_code = 4408
                    break
            try:
                await gateway.handle_frame(connection, raw)
            except Unauthorized:
                close_code = 4403
                break
            if connection.closed:
                break
    except WebSocketDisconnect:
        pass
    finally:
        gateway.disconnect(connection)
        await connection.aclose(close_code)
