"""Data access handed to a chat view.

A ``ChatContext`` is built once per signed-in user and passed explicitly to
every ``ChatSession``; nothing in the client reaches for a global backend.
Store and bus failures are converted to ``BackendError`` here so callers only
ever have to handle ``ChatError``.
"""

import asyncio
from typing import Awaitable, List, Optional, Tuple, TypeVar

import structlog
from pydantic import ValidationError
from pymongo.errors import PyMongoError
from redis.exceptions import RedisError

from campus_chat.config import get_settings
from campus_chat.errors import BackendError, ChatError
from campus_chat.schemas.chat import ConversationOverview, ConversationPublic, MessagePublic
from campus_chat.schemas.events import RealtimeEvent, conversation_channel, parse_event
from campus_chat.schemas.profile import ProfilePublic
from campus_chat.services.chat_service import ChatService


logger = structlog.get_logger()

T = TypeVar("T")

_CLOSED = object()


class ConversationFeed:
    """Typed change events for one conversation, consumed with ``async for``."""

    def __init__(self, channel: str) -> None:
        self.channel = channel
        self._queue: asyncio.Queue = asyncio.Queue()
        self._subscription = None
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    @classmethod
    async def open(cls, bus, channel: str) -> "ConversationFeed":
        feed = cls(channel)
        feed._subscription = await bus.subscribe(channel, feed._on_message)
        feed._task = asyncio.create_task(feed._subscription.run())
        return feed

    @property
    def closed(self) -> bool:
        return self._closed

    async def _on_message(self, raw: str) -> None:
        if self._closed:
            return
        try:
            event = parse_event(raw)
        except ValidationError as exc:
            logger.warning("feed_event_unparseable", channel=self.channel, error=str(exc))
            return
        self._queue.put_nowait(event)

    def __aiter__(self) -> "ConversationFeed":
        return self

    async def __anext__(self) -> RealtimeEvent:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._subscription is not None:
            await self._subscription.cancel()
        if self._task is not None:
            self._task.cancel()
        self._queue.put_nowait(_CLOSED)


class ChatContext:

    def __init__(self, service: ChatService, bus, user: ProfilePublic, typing_timeout: Optional[float] = None) -> None:
        self._service = service
        self._bus = bus
        self._user = user
        self._typing_timeout = get_settings().typing_timeout if typing_timeout is None else typing_timeout

    @property
    def user(self) -> ProfilePublic:
        return self._user

    @property
    def max_length(self) -> int:
        return self._service.max_length

    @property
    def typing_timeout(self) -> float:
        """Seconds of keyboard silence before the local typing flag drops."""
        return self._typing_timeout

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except ChatError:
            raise
        except (PyMongoError, RedisError) as exc:
            logger.warning("backend_call_failed", operation=operation, error=str(exc))
            raise BackendError(str(exc)) from exc

    async def resolve_conversation(self, item_id: str) -> ConversationPublic:
        return await self._call("resolve_conversation", self._service.claim_item(item_id, self._user.id))

    async def get_conversation(self, conversation_id: str) -> ConversationPublic:
        return await self._call("get_conversation", self._service.get_conversation(conversation_id, self._user.id))

    async def list_conversations(
        self, limit: int = 20, cursor: Optional[str] = None
    ) -> Tuple[List[ConversationOverview], Optional[str]]:
        return await self._call(
            "list_conversations",
            self._service.list_conversations(self._user.id, limit=limit, cursor=cursor),
        )

    async def list_messages(self, conversation_id: str) -> List[MessagePublic]:
        return await self._call("list_messages", self._service.get_history(conversation_id, self._user.id))

    async def send_message(self, conversation_id: str, content: str, client_message_id: Optional[str] = None) -> MessagePublic:
        return await self._call(
            "send_message",
            self._service.send_message(conversation_id, self._user.id, content, client_message_id),
        )

    async def mark_read(self, conversation_id: str) -> List[MessagePublic]:
        return await self._call("mark_read", self._service.mark_read(conversation_id, self._user.id))

    async def get_profile(self, user_id: str) -> Optional[ProfilePublic]:
        return await self._call("get_profile", self._service.get_profile(user_id))

    async def subscribe(self, conversation_id: str) -> ConversationFeed:
        return await self._call("subscribe", ConversationFeed.open(self._bus, conversation_channel(conversation_id)))

    async def track_typing(self, conversation_id: str, typing: bool) -> None:
        await self._call("track_typing", self._service.track_presence(conversation_id, self._user.id, typing))

    async def untrack(self, conversation_id: str) -> None:
        await self._call("untrack", self._service.untrack_presence(conversation_id, self._user.id))
