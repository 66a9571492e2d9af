from __future__ import annotations

import hashlib
import json
import logging
import secrets
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlmodel import Session

from legalease.models.chat_history import ChatHistory
from legalease.repositories.chat_history import ChatHistoryRepository
from legalease.services.document_analysis import DocumentAnalysis, analyze_document
from legalease.services.llm import LLMClient


logger = logging.getLogger("legalease.history")

WORDS_PER_MINUTE = 150


def new_chat_id() -> str:
    return f"chat_{int(time.time() * 1000)}_{secrets.token_hex(5)}"


def session_idempotency_key(meeting_id: Optional[str], transcript: str) -> str:
    """One key per (meeting, transcript content)."""
    digest = hashlib.sha1(transcript.encode("utf-8")).hexdigest()[:16]
    return f"{meeting_id or 'unknown'}:{digest}"


def _message_text(message: Dict[str, Any]) -> str:
    content = message.get("content", "")
    return content if isinstance(content, str) else json.dumps(content, ensure_ascii=False)


def chat_to_dict(chat: ChatHistory) -> Dict[str, Any]:
    return {
        "id": chat.id,
        "userId": chat.user_id,
        "title": chat.title,
        "type": chat.type,
        "preview": chat.preview,
        "timestamp": chat.created_at.isoformat(),
        "lastUpdated": chat.updated_at.isoformat(),
        "messageCount": chat.message_count,
        "lastMessage": chat.last_message,
        "messages": json.loads(chat.messages_json or "[]"),
        "metadata": json.loads(chat.metadata_json) if chat.metadata_json else None,
    }


def create_chat(
    session: Session,
    *,
    user_id: str,
    title: str,
    type: str,
    messages: List[Dict[str, Any]],
    preview: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    idempotency_key: Optional[str] = None,
    keep: int = 50,
) -> Tuple[ChatHistory, bool]:
    """Store a chat. Returns (chat, created); an existing key wins."""
    repo = ChatHistoryRepository(session)
    if idempotency_key:
        existing = repo.get_by_idempotency_key(idempotency_key)
        if existing is not None:
            logger.info("Duplicate save ignored", extra={"chat_id": existing.id, "key": idempotency_key})
            return existing, False

    last_message = _message_text(messages[-1]) if messages else "No messages"
    chat = ChatHistory(
        id=new_chat_id(),
        user_id=user_id,
        title=title,
        type=type,
        preview=preview or (last_message[:150] + "..."),
        message_count=len(messages),
        last_message=last_message,
        messages_json=json.dumps(messages, ensure_ascii=False),
        metadata_json=json.dumps(metadata, ensure_ascii=False) if metadata else None,
        idempotency_key=idempotency_key,
    )
    chat = repo.create(chat)
    repo.prune_user(user_id, keep)
    logger.info("Chat saved", extra={"chat_id": chat.id, "user_id": user_id, "type": type})
    return chat, True


def update_chat(
    session: Session,
    chat: ChatHistory,
    messages: Optional[List[Dict[str, Any]]] = None,
    last_message: Optional[str] = None,
) -> ChatHistory:
    if messages is not None:
        chat.messages_json = json.dumps(messages, ensure_ascii=False)
        chat.message_count = len(messages)
    if last_message is not None:
        chat.last_message = last_message
    return ChatHistoryRepository(session).update(chat)


def build_transcript_document(meeting_id: Optional[str], transcript: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.now()
    words = len(transcript.split())
    title = f"Meeting Transcript - {meeting_id or 'Unknown'} - {now.date().isoformat()}"
    duration = f"{round(words / WORDS_PER_MINUTE)} minutes"
    content = (
        "Meeting Transcript\n"
        f"Title: {title}\n"
        f"Meeting ID: {meeting_id or 'Unknown'}\n"
        f"Date: {now.strftime('%Y-%m-%d %H:%M:%S')}\n"
        f"Duration: {duration} (estimated)\n"
        f"Word Count: {words} words\n\n"
        f"TRANSCRIPT:\n{transcript}"
    )
    return {"title": title, "content": content, "duration": duration, "word_count": words}


async def save_analysis_to_history(
    session: Session,
    llm: LLMClient,
    *,
    user_id: str,
    document_text: str,
    type: str = "document",
    title: Optional[str] = None,
    transcript_duration: Optional[str] = None,
    idempotency_key: Optional[str] = None,
    keep: int = 50,
) -> Tuple[ChatHistory, DocumentAnalysis, bool]:
    """Analyze content and store it as a two-message chat."""
    repo = ChatHistoryRepository(session)
    if idempotency_key:
        existing = repo.get_by_idempotency_key(idempotency_key)
        if existing is not None:
            messages = json.loads(existing.messages_json or "[]")
            stored = messages[-1].get("content") if messages else None
            analysis = DocumentAnalysis(**stored) if isinstance(stored, dict) else await analyze_document(llm, document_text)
            return existing, analysis, False

    analysis = await analyze_document(llm, document_text)
    stamp = datetime.utcnow().isoformat()
    label = "meeting transcript" if type == "transcript" else "document"
    messages = [
        {"id": "initial", "content": f"Here's the {label} content:\n\n{document_text}", "role": "user", "timestamp": stamp},
        {"id": "analysis", "content": analysis.model_dump(), "role": "assistant", "timestamp": stamp},
    ]
    default_title = f"{'Meeting Transcript' if type == 'transcript' else 'Document'} - {datetime.now().date().isoformat()}"
    chat, created = create_chat(
        session,
        user_id=user_id,
        title=title or default_title,
        type=type,
        messages=messages,
        preview=document_text[:150] + "...",
        metadata={"documentName": title, "transcriptDuration": transcript_duration, "analysisType": "legal_analysis"},
        idempotency_key=idempotency_key,
        keep=keep,
    )
    return chat, analysis, created


async def save_transcript_to_history(
    session: Session,
    llm: LLMClient,
    *,
    user_id: str,
    meeting_id: Optional[str],
    transcript: str,
    idempotency_key: Optional[str] = None,
    keep: int = 50,
) -> Tuple[ChatHistory, DocumentAnalysis, bool]:
    doc = build_transcript_document(meeting_id, transcript)
    return await save_analysis_to_history(
        session,
        llm,
        user_id=user_id,
        document_text=doc["content"],
        type="transcript",
        title=doc["title"],
        transcript_duration=doc["duration"],
        idempotency_key=idempotency_key or session_idempotency_key(meeting_id, transcript),
        keep=keep,
    )
