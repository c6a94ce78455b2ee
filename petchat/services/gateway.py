import asyncio
import json
import logging
import weakref
from typing import Any, Dict, Optional, Set

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import ValidationError
from pymongo.errors import PyMongoError

from petchat.config import Settings
from petchat.exceptions import BadRequest, ChatError, ConnectionLost, ConversationNotFound, InternalError, Unauthorized
from petchat.repositories.conversation_repository import ConversationRepository, conversation_key
from petchat.repositories.message_repository import MessageRepository
from petchat.repositories.read_marker_repository import ReadMarkerRepository
from petchat.repositories.user_repository import UserRepository
from petchat.schemas.chat import InboundEvent, MessageOut
from petchat.services.chat_service import ChatService, other_participant
from petchat.services.unread_ledger import UnreadLedger
from petchat.utils.timeutils import utcnow
from petchat.utils.websocket_manager import ConnectionRegistry


logger = logging.getLogger(__name__)


class MessagingGateway:
    """
    Realtime side of the chat: presence, conversation rooms, live fan-out of
    new messages and unread snapshots.

    Each conversation has its own lock. Persisting a message, broadcasting it
    and updating the ledger happen under that lock, so every room member sees
    messages in the order they were stored. Pushes only enqueue onto the
    target connection, so one slow client never holds up anyone else.
    """

    def __init__(self, chat: ChatService, ledger: UnreadLedger, registry: ConnectionRegistry, settings: Settings) -> None:
        self.chat = chat
        self.ledger = ledger
        self.registry = registry
        self.settings = settings
        self.rooms: Dict[str, Set[Any]] = {}
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, conversation_id: str) -> asyncio.Lock:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[conversation_id] = lock
        return lock

    # -- connection lifecycle -------------------------------------------------

    async def register(self, connection, claimed_user_id: Optional[str] = None) -> None:
        # the identity comes from the handshake credential; a claim may only confirm it
        if claimed_user_id is not None and claimed_user_id != connection.user_id:
            raise Unauthorized("Declared user id does not match the credential")
        self.registry.register(connection.user_id, connection)
        connection.registered = True
        logger.info("Connection registered", extra={"user_id": connection.user_id, "connection_id": connection.id})
        self._deliver(connection, {"type": "registered", "userId": connection.user_id})
        snapshot = await self.ledger.snapshot(connection.user_id)
        self._deliver(connection, {"type": "unreadSnapshot", **snapshot.to_wire()})

    def disconnect(self, connection) -> None:
        for conversation_id in list(connection.rooms):
            members = self.rooms.get(conversation_id)
            if members is not None:
                members.discard(connection)
                if not members:
                    del self.rooms[conversation_id]
        connection.rooms.clear()
        if self.registry.unregister(connection) is not None:
            logger.info("Connection unregistered", extra={"user_id": connection.user_id, "connection_id": connection.id})

    def is_online(self, user_id: str) -> bool:
        return self.registry.is_online(user_id)

    # -- operations -----------------------------------------------------------

    async def join_conversation(self, connection, conversation_id: str) -> None:
        self._require_registered(connection)
        convo = await self.chat.get_conversation_for_participant(conversation_id, connection.user_id)
        conversation_id = convo["_id"]
        self.rooms.setdefault(conversation_id, set()).add(connection)
        connection.rooms.add(conversation_id)
        self._deliver(connection, {"type": "joined", "conversationId": conversation_id})

    async def send_message(
        self,
        sender_id: str,
        conversation_id: str,
        text: str,
        origin=None,
        client_message_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Persist and fan out a message. ``origin`` is the sending connection, if
        the message arrived over a socket; it gets a ``messageSent`` ack.

        The message is only broadcast once the ledger has counted it. If the
        ledger update fails the message is retracted, so history and unread
        counts never disagree.
        """
        conversation_id = self._conversation_key(conversation_id)
        async with self._lock_for(conversation_id):
            convo = await self.chat.get_conversation_for_participant(conversation_id, sender_id)
            message = await self.chat.append_to_conversation(convo, sender_id, text)
            try:
                affected = await self.ledger.record_delivery(conversation_id, sender_id, convo["participants"])
            except PyMongoError:
                logger.exception("Unread update failed, retracting message", extra={"conversation_id": conversation_id})
                await self.chat.retract_message(convo, message)
                raise

            wire = MessageOut.from_doc(message).to_wire()
            self._broadcast(conversation_id, {"type": "messageReceived", "message": wire})
            for recipient in affected:
                await self._push_snapshot(recipient)

        if origin is not None:
            self._deliver(origin, {"type": "messageSent", "message": wire, "clientMessageId": client_message_id})
        return message

    async def mark_read(self, user_id: str, conversation_id: str) -> bool:
        conversation_id = self._conversation_key(conversation_id)
        async with self._lock_for(conversation_id):
            convo = await self.chat.get_conversation_for_participant(conversation_id, user_id)
            changed = await self.ledger.mark_read(user_id, conversation_id)
            if not changed:
                return False
            await self._push_snapshot(user_id)
            seen = {
                "type": "seenByOther",
                "conversationId": conversation_id,
                "userId": user_id,
                "at": utcnow().isoformat(),
            }
            for handle in self.registry.handles_for(other_participant(convo, user_id)):
                self._deliver(handle, seen)
        return True

    # -- socket frames --------------------------------------------------------

    async def handle_frame(self, connection, raw: Optional[str]) -> None:
        """
        Dispatch one client frame; ``raw`` is None for a non-text frame.
        Errors go back to this connection only, as an ``error`` frame. A
        register frame whose declared id contradicts the credential re-raises
        ``Unauthorized`` so the caller can drop the socket.
        """
        event_type = None
        try:
            if raw is None:
                raise BadRequest("Only text frames are supported")
            try:
                event = InboundEvent.model_validate(json.loads(raw))
            except (ValueError, ValidationError):
                raise BadRequest("Malformed event")
            event_type = event.type

            if event.type == "register":
                await self.register(connection, event.user_id)
                return
            self._require_registered(connection)
            if event.type == "joinConversation":
                await self.join_conversation(connection, self._require(event.conversation_id, "conversationId"))
            elif event.type == "sendMessage":
                await self.send_message(
                    connection.user_id,
                    self._require(event.conversation_id, "conversationId"),
                    event.text or "",
                    origin=connection,
                    client_message_id=event.client_message_id,
                )
            elif event.type == "markRead":
                await self.mark_read(connection.user_id, self._require(event.conversation_id, "conversationId"))
            else:
                raise BadRequest(f"Unknown event type: {event.type}")
        except ChatError as exc:
            logger.warning(
                "Event rejected",
                extra={"user_id": connection.user_id, "event": event_type, "code": exc.code},
            )
            self._deliver(connection, {"type": "error", "code": exc.code, "detail": exc.detail, "event": event_type})
            if event_type == "register" and isinstance(exc, Unauthorized):
                raise
        except Exception:
            logger.exception("Event failed", extra={"user_id": connection.user_id, "event": event_type})
            exc = InternalError()
            self._deliver(connection, {"type": "error", "code": exc.code, "detail": exc.detail, "event": event_type})

    # -- internals ------------------------------------------------------------

    def _require_registered(self, connection) -> None:
        if not connection.registered:
            raise Unauthorized("Register the connection first")

    @staticmethod
    def _conversation_key(conversation_id: str) -> str:
        # rooms, locks and markers are all keyed by the stored id
        key = conversation_key(conversation_id)
        if key is None:
            raise ConversationNotFound()
        return key

    @staticmethod
    def _require(value: Optional[str], field: str) -> str:
        if not value:
            raise BadRequest(f"Missing {field}")
        return value

    def _broadcast(self, conversation_id: str, payload: Dict[str, Any]) -> None:
        for handle in list(self.rooms.get(conversation_id, ())):
            self._deliver(handle, payload)

    async def _push_snapshot(self, user_id: str) -> None:
        handles = self.registry.handles_for(user_id)
        if not handles:
            return
        snapshot = await self.ledger.snapshot(user_id)
        payload = {"type": "unreadSnapshot", **snapshot.to_wire()}
        for handle in handles:
            self._deliver(handle, payload)

    def _deliver(self, handle, payload: Dict[str, Any]) -> None:
        try:
            handle.push(payload)
        except ConnectionLost:
            self.disconnect(handle)
        except Exception:
            logger.exception("Push failed", extra={"user_id": getattr(handle, "user_id", None)})


def build_gateway(db: AsyncIOMotorDatabase, settings: Settings) -> MessagingGateway:
    conversation_repo = ConversationRepository(db)
    chat = ChatService(MessageRepository(db), conversation_repo, UserRepository(db), settings)
    ledger = UnreadLedger(ReadMarkerRepository(db), conversation_repo)
    return MessagingGateway(chat, ledger, ConnectionRegistry(), settings)


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    await ConversationRepository(db).ensure_indexes()
    await MessageRepository(db).ensure_indexes()
    await ReadMarkerRepository(db).ensure_indexes()
