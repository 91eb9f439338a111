import asyncio
from typing import List, Optional, Tuple

import structlog

from campus_chat.errors import CannotClaimOwnItem, ConversationNotFound, ItemNotFound, NotParticipant
from campus_chat.repositories.conversation_repository import ConversationRepository
from campus_chat.repositories.item_repository import ItemRepository
from campus_chat.repositories.message_repository import MessageRepository
from campus_chat.repositories.profile_repository import ProfileRepository
from campus_chat.schemas.chat import (
    MESSAGE_MAX_LENGTH,
    ConversationOverview,
    ConversationPublic,
    ItemSummary,
    MessagePreview,
    MessagePublic,
    validate_message_content,
)
from campus_chat.schemas.events import (
    MessageInserted,
    MessageUpdated,
    PresenceRecord,
    PresenceSynced,
    conversation_channel,
)
from campus_chat.schemas.profile import ProfilePublic


logger = structlog.get_logger()


class ChatService:

    def __init__(
        self,
        message_repo: MessageRepository,
        conversation_repo: ConversationRepository,
        item_repo: ItemRepository,
        profile_repo: ProfileRepository,
        bus,
        max_length: int = MESSAGE_MAX_LENGTH,
        presence_ttl_seconds: int = 60,
    ) -> None:
        self._message_repo = message_repo
        self._conversation_repo = conversation_repo
        self._item_repo = item_repo
        self._profile_repo = profile_repo
        self._bus = bus
        self._max_length = max_length
        self._presence_ttl = presence_ttl_seconds

    @property
    def max_length(self) -> int:
        return self._max_length

    async def claim_item(self, item_id: str, claimer_id: str) -> ConversationPublic:
        item = await self._item_repo.get_item(item_id)
        if item is None:
            raise ItemNotFound(item_id)
        return await self.resolve_conversation(item["_id"], claimer_id, item["uploader_id"])

    async def resolve_conversation(self, item_id: str, claimer_id: str, uploader_id: str) -> ConversationPublic:
        """Return the one conversation for (item, claimer), creating it on first claim."""
        if claimer_id == uploader_id:
            raise CannotClaimOwnItem()
        doc = await self._conversation_repo.get_or_create_for_claim(item_id, claimer_id, uploader_id)
        conversation = ConversationPublic.from_document(doc)
        logger.info("conversation_resolved", conversation_id=conversation.id, item_id=item_id)
        return conversation

    async def get_conversation(self, conversation_id: str, user_id: str) -> ConversationPublic:
        doc = await self._conversation_repo.get_by_id(conversation_id)
        if doc is None:
            raise ConversationNotFound(conversation_id)
        conversation = ConversationPublic.from_document(doc)
        if not conversation.has_participant(user_id):
            raise NotParticipant()
        return conversation

    async def get_history(self, conversation_id: str, user_id: str) -> List[MessagePublic]:
        await self.get_conversation(conversation_id, user_id)
        docs = await self._message_repo.list_by_conversation(conversation_id)
        return [MessagePublic.from_document(d) for d in docs]

    async def send_message(
        self,
        conversation_id: str,
        sender_id: str,
        content: str,
        client_message_id: Optional[str] = None,
    ) -> MessagePublic:
        text = validate_message_content(content, self._max_length)
        await self.get_conversation(conversation_id, sender_id)
        saved = await self._message_repo.save_message(
            conversation_id=conversation_id,
            sender_id=sender_id,
            content=text,
            client_message_id=client_message_id,
        )
        message = MessagePublic.from_document(saved)
        logger.info("message_saved", conversation_id=conversation_id, message_id=message.id)
        await self._publish(conversation_id, MessageInserted(record=message))
        return message

    async def mark_read(self, conversation_id: str, reader_id: str) -> List[MessagePublic]:
        await self.get_conversation(conversation_id, reader_id)
        flipped = await self._message_repo.mark_messages_as_read(conversation_id, reader_id)
        updated = [MessagePublic.from_document(d) for d in flipped]
        for message in updated:
            await self._publish(conversation_id, MessageUpdated(record=message))
        if updated:
            logger.info("messages_marked_read", conversation_id=conversation_id, count=len(updated))
        return updated

    async def get_profile(self, user_id: str) -> Optional[ProfilePublic]:
        doc = await self._profile_repo.get_profile(user_id)
        return ProfilePublic.from_document(doc) if doc else None

    async def list_conversations(
        self, user_id: str, limit: int = 20, cursor: Optional[str] = None
    ) -> Tuple[List[ConversationOverview], Optional[str]]:
        docs, next_cursor = await self._conversation_repo.list_for_user(user_id, limit=limit, cursor=cursor)
        if not docs:
            return [], None
        items = await self._item_repo.get_items(d["item_id"] for d in docs)
        participant_ids = [d["claimer_id"] for d in docs] + [d["uploader_id"] for d in docs]
        profiles = await self._profile_repo.get_profiles(participant_ids)

        async def _overview(doc: dict) -> ConversationOverview:
            conversation_id = str(doc["_id"])
            latest, unread = await asyncio.gather(
                self._message_repo.get_latest(conversation_id),
                self._message_repo.count_unread(conversation_id, user_id),
            )
            item = items.get(str(doc["item_id"]))
            claimer = profiles.get(doc["claimer_id"])
            uploader = profiles.get(doc["uploader_id"])
            return ConversationOverview(
                **ConversationPublic.from_document(doc).model_dump(),
                item=ItemSummary.from_document(item) if item else None,
                claimer_profile=ProfilePublic.from_document(claimer) if claimer else None,
                uploader_profile=ProfilePublic.from_document(uploader) if uploader else None,
                latest_message=MessagePreview(content=latest["content"], created_at=latest["created_at"]) if latest else None,
                unread_count=unread,
            )

        return list(await asyncio.gather(*[_overview(d) for d in docs])), next_cursor

    async def track_presence(self, conversation_id: str, user_id: str, typing: bool) -> PresenceSynced:
        channel = conversation_channel(conversation_id)
        record = PresenceRecord(user_id=user_id, typing=typing)
        await self._bus.track_presence(channel, user_id, record.model_dump_json(), ttl_seconds=self._presence_ttl)
        return await self._sync_presence(conversation_id)

    async def untrack_presence(self, conversation_id: str, user_id: str) -> PresenceSynced:
        await self._bus.untrack_presence(conversation_channel(conversation_id), user_id)
        return await self._sync_presence(conversation_id)

    async def presence_state(self, conversation_id: str) -> PresenceSynced:
        raw = await self._bus.presence_state(conversation_channel(conversation_id))
        return PresenceSynced(state={uid: PresenceRecord.model_validate_json(v) for uid, v in raw.items()})

    async def _sync_presence(self, conversation_id: str) -> PresenceSynced:
        synced = await self.presence_state(conversation_id)
        await self._publish(conversation_id, synced)
        return synced

    async def _publish(self, conversation_id: str, event) -> None:
        try:
            await self._bus.publish(conversation_channel(conversation_id), event.model_dump_json())
        except Exception as exc:
            # the row is already committed; subscribers catch up on their next history fetch
            logger.warning("event_publish_failed", conversation_id=conversation_id, event=event.event, error=str(exc))


def build_chat_service(db, bus, settings) -> ChatService:
    return ChatService(
        MessageRepository(db),
        ConversationRepository(db),
        ItemRepository(db),
        ProfileRepository(db),
        bus,
        max_length=settings.message_max_length,
        presence_ttl_seconds=settings.presence_ttl_seconds,
    )
