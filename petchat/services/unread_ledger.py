import logging
from typing import Dict, Iterable, List

from petchat.repositories.conversation_repository import ConversationRepository
from petchat.repositories.read_marker_repository import ReadMarkerRepository
from petchat.schemas.chat import UnreadSnapshot
from petchat.utils.timeutils import utcnow


logger = logging.getLogger(__name__)


class UnreadLedger:
    """
    Unread counters per (user, conversation).

    Counts are maintained incrementally on delivery and cleared by an explicit
    mark-read; nothing is recomputed from the message history at query time.
    The badge number is always derived from the per-conversation map.
    Markers are keyed by the stored conversation id, whatever form the
    caller passed in.

    Calls for a user who is not a participant are ignored rather than
    rejected, so a send racing with a membership change cannot fail here.
    """

    def __init__(self, read_marker_repo: ReadMarkerRepository, conversation_repo: ConversationRepository) -> None:
        self._markers = read_marker_repo
        self._conversations = conversation_repo

    async def record_delivery(self, conversation_id: str, sender_id: str, recipients: Iterable[str]) -> List[str]:
        """Returns the recipients whose counter was incremented."""
        convo = await self._conversations.get_by_id(conversation_id)
        if convo is None:
            return []
        affected = []
        for recipient in dict.fromkeys(recipients):
            if recipient == sender_id or recipient not in convo["participants"]:
                continue
            await self._markers.increment(recipient, convo["_id"])
            affected.append(recipient)
        return affected

    async def mark_read(self, user_id: str, conversation_id: str) -> bool:
        """Returns True if the marker moved, False on a repeated call or a non-participant."""
        convo = await self._conversations.get_by_id(conversation_id)
        if convo is None or user_id not in convo["participants"]:
            logger.debug("mark_read ignored", extra={"user_id": user_id, "conversation_id": conversation_id})
            return False
        return await self._markers.reset(user_id, convo["_id"], utcnow(), convo.get("last_message_id"))

    async def get_per_conversation_counts(self, user_id: str) -> Dict[str, int]:
        return await self._markers.get_counts_for_user(user_id)

    async def get_aggregate_conversations_with_unread(self, user_id: str) -> int:
        return aggregate(await self.get_per_conversation_counts(user_id))

    async def snapshot(self, user_id: str) -> UnreadSnapshot:
        counts = await self.get_per_conversation_counts(user_id)
        return UnreadSnapshot(aggregate_count=aggregate(counts), per_conversation=counts)


def aggregate(counts: Dict[str, int]) -> int:
    # number of conversations with something unread, not the number of messages
    return sum(1 for count in counts.values() if count > 0)
