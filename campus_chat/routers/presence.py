from fastapi import APIRouter, Depends, HTTPException

from campus_chat.errors import ChatError
from campus_chat.schemas.events import PresenceSynced
from campus_chat.services.chat_service import ChatService
from campus_chat.utils.dependencies import get_chat_service, get_current_user


router = APIRouter(prefix="/presence", tags=["chat"])


@router.get("/{conversation_id}", response_model=PresenceSynced)
async def presence(conversation_id: str, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    """Current typing state of everyone tracked on the conversation channel."""
    try:
        await service.get_conversation(conversation_id, current_user["_id"])
    except ChatError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message)
    return await service.presence_state(conversation_id)
