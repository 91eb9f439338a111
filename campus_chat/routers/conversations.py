from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from campus_chat.errors import ChatError
from campus_chat.schemas.chat import ClaimRequest, ConversationPage, ConversationPublic, MessageCreate, MessagePublic
from campus_chat.services.chat_service import ChatService
from campus_chat.utils.dependencies import get_chat_service, get_current_user


router = APIRouter(prefix="/conversations", tags=["chat"])


def _http_error(exc: ChatError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.message)


@router.post("/claim", response_model=ConversationPublic)
async def claim_item(body: ClaimRequest, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    try:
        return await service.claim_item(body.item_id, current_user["_id"])
    except ChatError as exc:
        raise _http_error(exc)


@router.get("", response_model=ConversationPage)
async def list_conversations(limit: int = Query(20, ge=1, le=100), cursor: Optional[str] = None, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    try:
        items, next_cursor = await service.list_conversations(current_user["_id"], limit=limit, cursor=cursor)
    except ChatError as exc:
        raise _http_error(exc)
    return {"items": items, "next_cursor": next_cursor}


@router.get("/{conversation_id}", response_model=ConversationPublic)
async def get_conversation(conversation_id: str, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    try:
        return await service.get_conversation(conversation_id, current_user["_id"])
    except ChatError as exc:
        raise _http_error(exc)


@router.get("/{conversation_id}/messages", response_model=List[MessagePublic])
async def list_messages(conversation_id: str, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    try:
        return await service.get_history(conversation_id, current_user["_id"])
    except ChatError as exc:
        raise _http_error(exc)


@router.post("/{conversation_id}/messages", response_model=MessagePublic, status_code=201)
async def send_message(conversation_id: str, body: MessageCreate, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    try:
        return await service.send_message(conversation_id, current_user["_id"], body.content, body.client_message_id)
    except ChatError as exc:
        raise _http_error(exc)


@router.post("/{conversation_id}/read")
async def mark_read(conversation_id: str, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    try:
        updated = await service.mark_read(conversation_id, current_user["_id"])
    except ChatError as exc:
        raise _http_error(exc)
    return {"updated": len(updated)}
