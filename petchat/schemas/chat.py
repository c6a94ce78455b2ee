from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from petchat.schemas.user import ParticipantInfo


class CamelModel(BaseModel):

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class MessageOut(CamelModel):

    id: str
    conversation_id: str
    sender_id: str
    text: str
    created_at: datetime

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "MessageOut":
        return cls(
            id=doc["_id"],
            conversation_id=doc["conversation_id"],
            sender_id=doc["sender_id"],
            text=doc["text"],
            created_at=doc["created_at"],
        )


class ConversationOut(CamelModel):

    id: str
    participants: List[str]
    other: ParticipantInfo
    last_message_preview: str = ""
    related_ref: Optional[str] = None
    unread: int = 0
    online: bool = False
    created_at: datetime
    updated_at: datetime


class UnreadSnapshot(CamelModel):

    aggregate_count: int
    per_conversation: Dict[str, int]


class CreateConversationRequest(CamelModel):

    other_user_id: str
    pet_id: Optional[str] = None


class SendMessageRequest(CamelModel):

    text: str
    client_message_id: Optional[str] = None


class InboundEvent(CamelModel):
    """A client frame on the chat socket."""

    type: str
    user_id: Optional[str] = None
    conversation_id: Optional[str] = None
    text: Optional[str] = None
    client_message_id: Optional[str] = Field(default=None, max_length=128)
