from datetime import datetime, timezone
from typing import Annotated, List, Optional

from pydantic import AfterValidator, BaseModel, Field

from campus_chat.errors import MessageValidationError
from campus_chat.schemas.profile import ProfilePublic


MESSAGE_MAX_LENGTH = 1000


def validate_message_content(content: Optional[str], max_length: int = MESSAGE_MAX_LENGTH) -> str:
    """Trim and bound-check message text, returning the text to store."""
    text = content.strip() if isinstance(content, str) else ""
    if not text:
        raise MessageValidationError("Message cannot be empty")
    if len(text) > max_length:
        raise MessageValidationError(f"Message too long (max {max_length} characters)")
    return text


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # mongo hands back naive datetimes unless the client is tz aware
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


class ClaimRequest(BaseModel):

    item_id: str = Field(min_length=1)


class MessageCreate(BaseModel):

    content: str
    client_message_id: Optional[str] = None


class MessagePublic(BaseModel):

    id: str
    conversation_id: str
    sender_id: str
    content: str
    created_at: UtcDatetime
    read: bool = False
    read_at: Optional[UtcDatetime] = None
    client_message_id: Optional[str] = None

    @classmethod
    def from_document(cls, doc: dict) -> "MessagePublic":
        return cls(
            id=str(doc["_id"]),
            conversation_id=str(doc["conversation_id"]),
            sender_id=doc["sender_id"],
            content=doc["content"],
            created_at=doc["created_at"],
            read=bool(doc.get("read", False)),
            read_at=doc.get("read_at"),
            client_message_id=doc.get("client_message_id"),
        )


class MessagePreview(BaseModel):

    content: str
    created_at: UtcDatetime


class ConversationPublic(BaseModel):

    id: str
    item_id: str
    claimer_id: str
    uploader_id: str
    created_at: UtcDatetime

    def other_participant(self, user_id: str) -> str:
        return self.uploader_id if user_id == self.claimer_id else self.claimer_id

    def has_participant(self, user_id: str) -> bool:
        return user_id in (self.claimer_id, self.uploader_id)

    @classmethod
    def from_document(cls, doc: dict) -> "ConversationPublic":
        return cls(
            id=str(doc["_id"]),
            item_id=str(doc["item_id"]),
            claimer_id=doc["claimer_id"],
            uploader_id=doc["uploader_id"],
            created_at=doc["created_at"],
        )


class ItemSummary(BaseModel):

    id: str
    description: str = ""
    building: str = ""
    classroom: str = ""
    status: Optional[str] = None

    @classmethod
    def from_document(cls, doc: dict) -> "ItemSummary":
        return cls(
            id=str(doc["_id"]),
            description=doc.get("description", ""),
            building=doc.get("building", ""),
            classroom=doc.get("classroom", ""),
            status=doc.get("status"),
        )


class ConversationOverview(ConversationPublic):
    """A row of the user's inbox."""

    # None once the finder or an admin deleted the item
    item: Optional[ItemSummary] = None
    claimer_profile: Optional[ProfilePublic] = None
    uploader_profile: Optional[ProfilePublic] = None
    latest_message: Optional[MessagePreview] = None
    unread_count: int = 0


class ConversationPage(BaseModel):

    items: List[ConversationOverview]
    next_cursor: Optional[str] = None
