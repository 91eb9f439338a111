from typing import Annotated, Dict, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from campus_chat.schemas.chat import MessagePublic


class MessageInserted(BaseModel):

    event: Literal["INSERT"] = "INSERT"
    record: MessagePublic


class MessageUpdated(BaseModel):

    event: Literal["UPDATE"] = "UPDATE"
    record: MessagePublic


class PresenceRecord(BaseModel):

    user_id: str
    typing: bool = False


class PresenceSynced(BaseModel):

    event: Literal["presence_sync"] = "presence_sync"
    # user_id -> last tracked record
    state: Dict[str, PresenceRecord] = Field(default_factory=dict)

    def anyone_typing(self, except_user: str) -> bool:
        return any(rec.typing for uid, rec in self.state.items() if uid != except_user)


RealtimeEvent = Annotated[
    Union[MessageInserted, MessageUpdated, PresenceSynced],
    Field(discriminator="event"),
]

_event_adapter = TypeAdapter(RealtimeEvent)


def parse_event(raw: Union[str, bytes]) -> RealtimeEvent:
    return _event_adapter.validate_json(raw)


def conversation_channel(conversation_id: str) -> str:
    return f"conversation:{conversation_id}"
