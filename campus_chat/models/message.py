from datetime import datetime
from typing import Optional, TypedDict


class MessageDocument(TypedDict, total=False):
    _id: str
    conversation_id: str
    sender_id: str
    content: str
    created_at: datetime
    # read receipt, flips once from False to True
    read: bool
    read_at: Optional[datetime]
    # client ack
    client_message_id: Optional[str]
