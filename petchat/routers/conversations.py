from typing import List

from fastapi import APIRouter, Depends, status

from petchat.schemas.chat import (
    ConversationOut,
    CreateConversationRequest,
    MessageOut,
    SendMessageRequest,
    UnreadSnapshot,
)
from petchat.schemas.user import ParticipantInfo
from petchat.services.chat_service import other_participant
from petchat.services.gateway import MessagingGateway
from petchat.utils.dependencies import get_current_user, get_gateway


router = APIRouter(prefix="/conversations", tags=["chat"])


@router.get("", response_model=List[ConversationOut])
async def list_conversations(current_user: dict = Depends(get_current_user), gateway: MessagingGateway = Depends(get_gateway)):
    user_id = current_user["_id"]
    convos = await gateway.chat.list_conversations(user_id)
    counts = await gateway.ledger.get_per_conversation_counts(user_id)
    return [
        _to_out(c, c["other"], unread=counts.get(c["_id"], 0), online=gateway.is_online(c["other"].id))
        for c in convos
    ]


@router.post("", response_model=ConversationOut, status_code=status.HTTP_201_CREATED)
async def create_conversation(body: CreateConversationRequest, current_user: dict = Depends(get_current_user), gateway: MessagingGateway = Depends(get_gateway)):
    user_id = current_user["_id"]
    convo = await gateway.chat.find_or_create_conversation(user_id, body.other_user_id, body.pet_id)
    other_id = other_participant(convo, user_id)
    other = await gateway.chat.get_participant_info(other_id)
    counts = await gateway.ledger.get_per_conversation_counts(user_id)
    return _to_out(convo, other, unread=counts.get(convo["_id"], 0), online=gateway.is_online(other_id))


@router.get("/unread-count", response_model=UnreadSnapshot)
async def unread_count(current_user: dict = Depends(get_current_user), gateway: MessagingGateway = Depends(get_gateway)):
    return await gateway.ledger.snapshot(current_user["_id"])


@router.get("/{conversation_id}/messages", response_model=List[MessageOut])
async def list_messages(conversation_id: str, current_user: dict = Depends(get_current_user), gateway: MessagingGateway = Depends(get_gateway)):
    messages = await gateway.chat.list_messages(conversation_id, current_user["_id"])
    return [MessageOut.from_doc(m) for m in messages]


@router.post("/{conversation_id}/messages", response_model=MessageOut, status_code=status.HTTP_201_CREATED)
async def send_message(conversation_id: str, body: SendMessageRequest, current_user: dict = Depends(get_current_user), gateway: MessagingGateway = Depends(get_gateway)):
    message = await gateway.send_message(current_user["_id"], conversation_id, body.text)
    return MessageOut.from_doc(message)


@router.post("/{conversation_id}/read")
async def mark_read(conversation_id: str, current_user: dict = Depends(get_current_user), gateway: MessagingGateway = Depends(get_gateway)):
    changed = await gateway.mark_read(current_user["_id"], conversation_id)
    return {"ok": True, "changed": changed}


def _to_out(convo: dict, other: ParticipantInfo, unread: int, online: bool) -> ConversationOut:
    return ConversationOut(
        id=convo["_id"],
        participants=convo["participants"],
        other=other,
        last_message_preview=convo.get("last_message_preview") or "",
        related_ref=convo.get("related_ref"),
        unread=unread,
        online=online,
        created_at=convo["created_at"],
        updated_at=convo["updated_at"],
    )
