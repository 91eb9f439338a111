from datetime import datetime
from typing import TypedDict


class ConversationDocument(TypedDict, total=False):
    _id: str
    item_id: str
    # the user who started the claim
    claimer_id: str
    # the finder who reported the item
    uploader_id: str
    created_at: datetime
