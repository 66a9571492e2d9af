from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlmodel import Session

from legalease.deps import get_session, get_settings
from legalease.repositories.chat_history import ChatHistoryRepository
from legalease.services.history import chat_to_dict, create_chat, update_chat


router = APIRouter(prefix="/chat-history", tags=["chat-history"])


class CreateChatRequest(BaseModel):
    userId: Optional[str] = None
    title: Optional[str] = None
    type: Optional[str] = None
    preview: Optional[str] = None
    messages: Optional[List[Dict[str, Any]]] = None
    metadata: Optional[Dict[str, Any]] = None
    idempotencyKey: Optional[str] = None


class UpdateChatRequest(BaseModel):
    chatId: Optional[str] = None
    userId: Optional[str] = None
    messages: Optional[List[Dict[str, Any]]] = None
    lastMessage: Optional[str] = None


def _not_found() -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": "Chat not found"})


@router.get("")
def list_chats(userId: Optional[str] = None, session: Session = Depends(get_session)):
    if not userId:
        return JSONResponse(status_code=400, content={"error": "User ID is required"})
    repo = ChatHistoryRepository(session)
    chats = repo.list_by_user(userId, limit=get_settings().history_limit_per_user)
    return {"chats": [chat_to_dict(c) for c in chats], "total": repo.count_by_user(userId)}


@router.post("")
def save_chat(body: CreateChatRequest, session: Session = Depends(get_session)):
    if not body.userId or not body.title or not body.type or body.messages is None:
        return JSONResponse(status_code=400, content={"error": "Missing required fields"})
    chat, created = create_chat(
        session,
        user_id=body.userId,
        title=body.title,
        type=body.type,
        messages=body.messages,
        preview=body.preview,
        metadata=body.metadata,
        idempotency_key=body.idempotencyKey,
        keep=get_settings().history_limit_per_user,
    )
    return {"success": True, "chatId": chat.id, "created": created, "chat": chat_to_dict(chat)}


@router.put("")
def put_chat(body: UpdateChatRequest, session: Session = Depends(get_session)):
    if not body.chatId or not body.userId:
        return JSONResponse(status_code=400, content={"error": "Chat ID and User ID are required"})
    chat = ChatHistoryRepository(session).get(body.chatId)
    if chat is None or chat.user_id != body.userId:
        return _not_found()
    chat = update_chat(session, chat, messages=body.messages, last_message=body.lastMessage)
    return {"success": True, "chat": chat_to_dict(chat)}


@router.get("/{chat_id}")
def get_chat(chat_id: str, session: Session = Depends(get_session)):
    chat = ChatHistoryRepository(session).get(chat_id)
    if chat is None:
        return _not_found()
    return {"chat": chat_to_dict(chat)}


@router.delete("/{chat_id}")
def delete_chat(chat_id: str, userId: Optional[str] = None, session: Session = Depends(get_session)):
    repo = ChatHistoryRepository(session)
    chat = repo.get(chat_id)
    if chat is None or (userId and chat.user_id != userId):
        return _not_found()
    deleted = chat_to_dict(chat)
    repo.delete(chat)
    return {"success": True, "deletedChat": deleted, "message": "Chat deleted successfully"}
