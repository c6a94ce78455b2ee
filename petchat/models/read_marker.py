from datetime import datetime
from typing import Optional, TypedDict


class ReadMarkerDocument(TypedDict, total=False):
    _id: str
    user_id: str
    conversation_id: str
    # messages from the other participant since last_read_at
    unread_count: int
    last_read_at: Optional[datetime]
    last_read_message_id: Optional[str]
