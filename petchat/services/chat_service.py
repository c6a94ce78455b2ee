from typing import Any, Dict, List, Optional

from petchat.config import Settings
from petchat.exceptions import (
    ConversationNotFound,
    EmptyMessage,
    InvalidParticipant,
    MessageTooLong,
    NotAParticipant,
    UserNotFound,
)
from petchat.repositories.conversation_repository import ConversationRepository
from petchat.repositories.message_repository import MessageRepository
from petchat.repositories.user_repository import UserRepository
from petchat.schemas.user import ParticipantInfo
from petchat.utils.timeutils import utcnow


class ChatService:
    """Conversation store: pairwise conversations and their messages."""

    def __init__(
        self,
        message_repo: MessageRepository,
        conversation_repo: ConversationRepository,
        user_repo: UserRepository,
        settings: Settings,
    ) -> None:
        self._message_repo = message_repo
        self._conversation_repo = conversation_repo
        self._user_repo = user_repo
        self._settings = settings

    async def find_or_create_conversation(self, user_id: str, other_user_id: str, related_ref: Optional[str] = None) -> Dict[str, Any]:
        if user_id == other_user_id:
            raise InvalidParticipant()
        if await self._user_repo.get_user_by_id(other_user_id) is None:
            raise UserNotFound()
        return await self._conversation_repo.get_or_create_one_to_one(user_id, other_user_id, related_ref)

    async def get_conversation(self, conversation_id: str) -> Dict[str, Any]:
        convo = await self._conversation_repo.get_by_id(conversation_id)
        if convo is None:
            raise ConversationNotFound()
        return convo

    async def get_conversation_for_participant(self, conversation_id: str, user_id: str) -> Dict[str, Any]:
        convo = await self.get_conversation(conversation_id)
        if user_id not in convo["participants"]:
            raise NotAParticipant()
        return convo

    async def list_conversations(self, user_id: str) -> List[Dict[str, Any]]:
        """Most recently active first, each with the other participant's display info."""
        convos = await self._conversation_repo.list_for_user(user_id)
        others = [other_participant(c, user_id) for c in convos]
        users = await self._user_repo.get_users_by_ids(others)
        for convo, other_id in zip(convos, others):
            convo["other"] = ParticipantInfo.from_user(other_id, users.get(other_id), self._settings.AVATAR_BASE_URL)
        return convos

    async def get_participant_info(self, user_id: str) -> ParticipantInfo:
        user = await self._user_repo.get_user_by_id(user_id)
        return ParticipantInfo.from_user(user_id, user, self._settings.AVATAR_BASE_URL)

    async def append_message(self, conversation_id: str, sender_id: str, text: str) -> Dict[str, Any]:
        text = self._clean_text(text)
        convo = await self.get_conversation_for_participant(conversation_id, sender_id)
        return await self._store(convo, sender_id, text)

    async def append_to_conversation(self, convo: Dict[str, Any], sender_id: str, text: str) -> Dict[str, Any]:
        """Same as ``append_message`` for a conversation the caller has already loaded."""
        text = self._clean_text(text)
        if sender_id not in convo["participants"]:
            raise NotAParticipant()
        return await self._store(convo, sender_id, text)

    async def retract_message(self, convo: Dict[str, Any], message: Dict[str, Any]) -> None:
        """
        Undo an append whose delivery bookkeeping failed. ``convo`` is the
        document as loaded before the append, so its last-message fields are
        the ones to put back.
        """
        await self._message_repo.delete_message(message["_id"])
        await self._conversation_repo.update_on_new_message(
            convo["_id"],
            convo.get("last_message_id"),
            convo.get("last_message_preview") or "",
            convo["updated_at"],
        )

    async def list_messages(self, conversation_id: str, requester_id: str) -> List[Dict[str, Any]]:
        convo = await self.get_conversation_for_participant(conversation_id, requester_id)
        return await self._message_repo.get_messages_by_conversation(convo["_id"])

    def _clean_text(self, text: Optional[str]) -> str:
        text = (text or "").strip()
        if not text:
            raise EmptyMessage()
        if len(text) > self._settings.MESSAGE_MAX_LENGTH:
            raise MessageTooLong(f"Message exceeds {self._settings.MESSAGE_MAX_LENGTH} characters")
        return text

    async def _store(self, convo: Dict[str, Any], sender_id: str, text: str) -> Dict[str, Any]:
        # updated_at tracks the newest message, so created_at never goes backwards even if the clock does
        created_at = max(utcnow(), convo["updated_at"])
        saved = await self._message_repo.save_message(
            conversation_id=convo["_id"],
            sender_id=sender_id,
            text=text,
            created_at=created_at,
        )
        preview = text[: self._settings.MESSAGE_PREVIEW_LENGTH]
        await self._conversation_repo.update_on_new_message(convo["_id"], saved["_id"], preview, created_at)
        return saved


def other_participant(convo: Dict[str, Any], user_id: str) -> str:
    for participant in convo["participants"]:
        if participant != user_id:
            return participant
    return user_id
