from datetime import datetime
from typing import List, Optional, TypedDict


class ConversationDocument(TypedDict, total=False):
    _id: str
    # exactly two user ids, sorted
    participants: List[str]
    # "<a>:<b>" of the sorted participants; unique index
    pair_key: str
    # opaque listing id (pet), no behavior attached
    related_ref: Optional[str]
    last_message_id: Optional[str]
    last_message_preview: str
    created_at: datetime
    updated_at: datetime
