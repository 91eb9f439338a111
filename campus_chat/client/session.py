import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional
from uuid import uuid4

import structlog

from campus_chat.client.context import ChatContext, ConversationFeed
from campus_chat.client.typing_tracker import TypingTracker
from campus_chat.errors import CannotClaimOwnItem, ChatError, MessageValidationError
from campus_chat.schemas.chat import ConversationPublic, MessagePublic, validate_message_content
from campus_chat.schemas.events import MessageInserted, MessageUpdated, PresenceSynced
from campus_chat.schemas.profile import ProfilePublic


logger = structlog.get_logger()

RECEIPT_PENDING = "pending"
RECEIPT_SENT = "sent"  # single check
RECEIPT_READ = "read"  # double check


@dataclass
class Notification:

    title: str
    description: str
    variant: str = "destructive"


@dataclass
class ChatMessage:

    content: str
    sender_id: str
    created_at: datetime
    id: Optional[str] = None
    client_message_id: Optional[str] = None
    read: bool = False
    read_at: Optional[datetime] = None

    @property
    def pending(self) -> bool:
        return self.id is None

    @property
    def receipt(self) -> str:
        if self.pending:
            return RECEIPT_PENDING
        return RECEIPT_READ if self.read else RECEIPT_SENT

    @property
    def sort_key(self):
        return (self.created_at, self.id or "")

    def apply_read_state(self, message: MessagePublic) -> bool:
        # unread -> read only; a stale unread copy never reverts it
        if message.read and not self.read:
            self.read = True
            self.read_at = message.read_at
            return True
        return False

    @classmethod
    def from_public(cls, message: MessagePublic) -> "ChatMessage":
        return cls(
            content=message.content,
            sender_id=message.sender_id,
            created_at=message.created_at,
            id=message.id,
            client_message_id=message.client_message_id,
            read=message.read,
            read_at=message.read_at,
        )


class ChatSession:
    """State behind one open chat view.

    Opened either for a claim (``item_id``: the conversation is found or
    created for the current user as claimer) or for an existing conversation
    from the inbox (``conversation_id``). Every asynchronous result is dropped
    once ``close()`` has run.
    """

    def __init__(
        self,
        context: ChatContext,
        *,
        item_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
        notify: Optional[Callable[[Notification], None]] = None,
        on_change: Optional[Callable[[], None]] = None,
        typing_timeout: Optional[float] = None,
    ) -> None:
        if (item_id is None) == (conversation_id is None):
            raise ValueError("Pass exactly one of item_id or conversation_id")
        self._context = context
        self._item_id = item_id
        self._conversation_id = conversation_id
        self._notify = notify
        self._on_change = on_change
        if typing_timeout is None:
            typing_timeout = context.typing_timeout
        self._typing = TypingTracker(self._publish_typing, timeout=typing_timeout)
        self._messages: List[ChatMessage] = []
        self._by_id: Dict[str, ChatMessage] = {}
        self._pending: Dict[str, ChatMessage] = {}
        self._feed: Optional[ConversationFeed] = None
        self._pump: Optional[asyncio.Task] = None
        self._alive = False
        self.conversation: Optional[ConversationPublic] = None
        self.peer: Optional[ProfilePublic] = None
        self.remote_typing = False
        self.sending = False

    @property
    def user_id(self) -> str:
        return self._context.user.id

    @property
    def is_open(self) -> bool:
        return self._alive and self.conversation is not None

    @property
    def local_typing(self) -> bool:
        return self._typing.typing

    @property
    def messages(self) -> List[ChatMessage]:
        return list(self._messages) + list(self._pending.values())

    async def open(self) -> bool:
        self._alive = True
        try:
            if self._item_id is not None:
                conversation = await self._context.resolve_conversation(self._item_id)
            else:
                conversation = await self._context.get_conversation(self._conversation_id)
        except CannotClaimOwnItem as exc:
            self._alive = False
            self._emit("Cannot claim", exc.message)
            return False
        except ChatError as exc:
            self._alive = False
            self._emit("Error", exc.message)
            return False
        if not self._alive:
            return False
        self.conversation = conversation

        # subscribe before loading history so nothing committed in between is missed
        try:
            feed = await self._context.subscribe(conversation.id)
        except ChatError as exc:
            self._alive = False
            self._emit("Error", exc.message)
            return False
        if not self._alive:
            await feed.close()
            return False
        self._feed = feed

        try:
            history = await self._context.list_messages(conversation.id)
        except ChatError as exc:
            self._emit("Error loading messages", exc.message)
            history = []
        if not self._alive:
            return False
        for message in history:
            self._add(message)
        self._changed()

        self._pump = asyncio.create_task(self._consume(feed))
        self._pump.add_done_callback(self._pump_finished)
        await self._load_peer()
        await self._mark_read()
        await self._publish_typing(False)
        return self._alive

    async def close(self) -> None:
        if not self._alive:
            return
        self._alive = False
        self._typing.cancel()
        if self._pump is not None:
            self._pump.cancel()
            self._pump = None
        if self._feed is not None:
            await self._feed.close()
            self._feed = None
        if self.conversation is not None:
            try:
                await self._context.untrack(self.conversation.id)
            except ChatError as exc:
                logger.warning("presence_untrack_failed", conversation_id=self.conversation.id, error=exc.message)

    async def __aenter__(self) -> "ChatSession":
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def keystroke(self) -> None:
        if self.is_open:
            await self._typing.keystroke()

    async def send(self, content: str) -> bool:
        """Send ``content``; False means nothing was sent and the input should be kept."""
        if not self.is_open or self.sending:
            return False
        try:
            text = validate_message_content(content, self._context.max_length)
        except MessageValidationError as exc:
            self._emit("Invalid message", exc.message)
            return False

        await self._typing.stop()
        client_message_id = uuid4().hex
        self._pending[client_message_id] = ChatMessage(
            content=text,
            sender_id=self.user_id,
            created_at=datetime.now(timezone.utc),
            client_message_id=client_message_id,
        )
        self._changed()

        self.sending = True
        try:
            saved = await self._context.send_message(self.conversation.id, text, client_message_id)
        except ChatError as exc:
            self._pending.pop(client_message_id, None)
            if self._alive:
                self._emit("Error sending message", exc.message)
                self._changed()
            return False
        finally:
            self.sending = False

        if self._alive:
            # the feed echo may already have reconciled it; _add is idempotent
            self._add(saved)
            self._changed()
        return True

    async def _consume(self, feed: ConversationFeed) -> None:
        async for event in feed:
            if not self._alive:
                return
            if isinstance(event, MessageInserted):
                added = self._add(event.record)
                if added and event.record.sender_id != self.user_id:
                    await self._mark_read()
            elif isinstance(event, MessageUpdated):
                # updates may overtake their insert; the record is complete either way
                self._add(event.record)
            elif isinstance(event, PresenceSynced):
                self.remote_typing = event.anyone_typing(self.user_id)
            if not self._alive:
                return
            self._changed()

    def _pump_finished(self, task: asyncio.Task) -> None:
        if task.cancelled() or task.exception() is None:
            return
        # the view no longer follows the feed after this
        logger.error(
            "chat_feed_stopped",
            conversation_id=self.conversation.id if self.conversation else None,
            exc_info=task.exception(),
        )

    def _add(self, message: MessagePublic) -> bool:
        """Merge a stored message into the view. True when it was not shown before."""
        known = self._by_id.get(message.id)
        if known is not None:
            known.apply_read_state(message)
            return False
        entry = ChatMessage.from_public(message)
        if message.client_message_id is not None:
            self._pending.pop(message.client_message_id, None)
        self._by_id[message.id] = entry
        # feed order is commit order, so this nearly always lands at the end
        index = len(self._messages)
        while index > 0 and self._messages[index - 1].sort_key > entry.sort_key:
            index -= 1
        self._messages.insert(index, entry)
        return True

    async def _mark_read(self) -> None:
        if not self.is_open:
            return
        try:
            await self._context.mark_read(self.conversation.id)
        except ChatError as exc:
            logger.warning("mark_read_failed", conversation_id=self.conversation.id, error=exc.message)

    async def _load_peer(self) -> None:
        peer_id = self.conversation.other_participant(self.user_id)
        try:
            peer = await self._context.get_profile(peer_id)
        except ChatError as exc:
            logger.warning("peer_profile_failed", user_id=peer_id, error=exc.message)
            return
        if self._alive:
            self.peer = peer

    async def _publish_typing(self, typing: bool) -> None:
        if not self.is_open:
            return
        try:
            await self._context.track_typing(self.conversation.id, typing)
        except ChatError as exc:
            logger.warning("typing_publish_failed", conversation_id=self.conversation.id, error=exc.message)

    def _emit(self, title: str, description: str) -> None:
        logger.info("chat_notification", title=title)
        if self._notify is not None:
            self._notify(Notification(title=title, description=description))

    def _changed(self) -> None:
        if self._alive and self._on_change is not None:
            self._on_change()
