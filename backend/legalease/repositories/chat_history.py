from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import Session, select

from legalease.models.chat_history import ChatHistory


class ChatHistoryRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def create(self, chat: ChatHistory) -> ChatHistory:
        self.session.add(chat)
        self.session.commit()
        self.session.refresh(chat)
        return chat

    def get(self, chat_id: str) -> Optional[ChatHistory]:
        return self.session.get(ChatHistory, chat_id)

    def get_by_idempotency_key(self, key: str) -> Optional[ChatHistory]:
        statement = select(ChatHistory).where(ChatHistory.idempotency_key == key)
        return self.session.exec(statement).first()

    def list_by_user(self, user_id: str, limit: int = 50, offset: int = 0) -> list[ChatHistory]:
        statement = (
            select(ChatHistory)
            .where(ChatHistory.user_id == user_id)
            .order_by(ChatHistory.created_at.desc(), ChatHistory.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(self.session.exec(statement))

    def count_by_user(self, user_id: str) -> int:
        return len(self.session.exec(select(ChatHistory.id).where(ChatHistory.user_id == user_id)).all())

    def update(self, chat: ChatHistory) -> ChatHistory:
        chat.updated_at = datetime.utcnow()
        self.session.add(chat)
        self.session.commit()
        self.session.refresh(chat)
        return chat

    def delete(self, chat: ChatHistory) -> None:
        self.session.delete(chat)
        self.session.commit()

    def prune_user(self, user_id: str, keep: int) -> int:
        """Delete all but the newest ``keep`` chats of a user."""
        statement = (
            select(ChatHistory)
            .where(ChatHistory.user_id == user_id)
            .order_by(ChatHistory.created_at.desc(), ChatHistory.id.desc())
            .offset(keep)
        )
        stale = list(self.session.exec(statement))
        for chat in stale:
            self.session.delete(chat)
        if stale:
            self.session.commit()
        return len(stale)
