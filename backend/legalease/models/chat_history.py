from __future__ import annotations

from datetime import datetime
from typing import Optional
from sqlmodel import SQLModel, Field


class ChatHistory(SQLModel, table=True):
    id: str = Field(primary_key=True)
    user_id: str = Field(index=True)
    title: str
    type: str = Field(default="document")  # document|transcript|advice
    preview: str = ""
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    message_count: int = 0
    last_message: str = ""
    messages_json: str = "[]"
    metadata_json: Optional[str] = None
    # Set for automatic saves so a session is persisted once
    idempotency_key: Optional[str] = Field(default=None, unique=True, index=True)
