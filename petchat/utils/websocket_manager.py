import asyncio
import logging
import uuid
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket

from petchat.exceptions import ConnectionLost


logger = logging.getLogger(__name__)


class ClientConnection:
    """
    One live socket (a browser tab or device).

    Outbound frames go through a bounded queue drained by a writer task, so a
    slow client only ever delays itself. A client that lets the queue fill up
    is closed.
    """

    def __init__(self, websocket: WebSocket, user_id: str, queue_size: int = 256) -> None:
        self.id = uuid.uuid4().hex
        self.websocket = websocket
        # identity verified from the handshake credential
        self.user_id = user_id
        self.registered = False
        self.rooms: Set[str] = set()
        self.closed = False
        self._outbox: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._writer: Optional[asyncio.Task] = None
        self._closer: Optional[asyncio.Task] = None

    def start(self) -> None:
        self._writer = asyncio.create_task(self._drain())

    def push(self, payload: Dict[str, Any]) -> None:
        if self.closed:
            raise ConnectionLost(self.id)
        try:
            self._outbox.put_nowait(payload)
        except asyncio.QueueFull:
            logger.warning("Slow consumer, closing connection", extra={"connection_id": self.id, "user_id": self.user_id})
            self.closed = True
            self._closer = asyncio.create_task(self._close_quietly(1013))
            raise ConnectionLost(self.id)

    async def aclose(self, code: int = 1000) -> None:
        self.closed = True
        if self._writer is not None:
            self._writer.cancel()
            try:
                await self._writer
            except asyncio.CancelledError:
                pass
            self._writer = None
        await self._close_quietly(code)

    async def _drain(self) -> None:
        while True:
            payload = await self._outbox.get()
            try:
                await self.websocket.send_json(payload)
            except Exception:
                logger.info("Send failed, connection is gone", extra={"connection_id": self.id, "user_id": self.user_id})
                self.closed = True
                return

    async def _close_quietly(self, code: int) -> None:
        try:
            await self.websocket.close(code=code)
        except Exception:
            # already closed by the peer
            pass

    def __repr__(self) -> str:
        return f"<ClientConnection {self.id} user={self.user_id}>"


class ConnectionRegistry:
    """Live connections per user id. In-memory, one per process."""

    def __init__(self) -> None:
        self._by_user: Dict[str, Set[Any]] = {}
        self._owners: Dict[Any, str] = {}

    def register(self, user_id: str, handle: Any) -> None:
        owner = self._owners.get(handle)
        if owner == user_id:
            return
        if owner is not None:
            self.unregister(handle)
        self._by_user.setdefault(user_id, set()).add(handle)
        self._owners[handle] = user_id

    def unregister(self, handle: Any) -> Optional[str]:
        user_id = self._owners.pop(handle, None)
        if user_id is None:
            return None
        handles = self._by_user.get(user_id)
        if handles is not None:
            handles.discard(handle)
            if not handles:
                del self._by_user[user_id]
        return user_id

    def handles_for(self, user_id: str) -> Set[Any]:
        return set(self._by_user.get(user_id, ()))

    def is_online(self, user_id: str) -> bool:
        return user_id in self._by_user

    def __contains__(self, handle: Any) -> bool:
        return handle in self._owners

    def __len__(self) -> int:
        return len(self._owners)
