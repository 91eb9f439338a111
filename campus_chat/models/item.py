from datetime import datetime
from typing import Optional, TypedDict


class ItemDocument(TypedDict, total=False):
    _id: str
    uploader_id: str
    description: str
    building: str
    classroom: str
    category: str
    status: str
    image_url: Optional[str]
    created_at: datetime
