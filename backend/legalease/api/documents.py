from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlmodel import Session

from legalease.deps import get_llm, get_session, get_settings
from legalease.errors import AnalysisFailed
from legalease.services.document_analysis import analyze_document, chat_with_ai
from legalease.services.history import save_analysis_to_history, save_transcript_to_history
from legalease.services.llm import LLMClient


logger = logging.getLogger("legalease.api")

router = APIRouter(tags=["documents"])


class AnalyzeRequest(BaseModel):
    documentText: Optional[str] = None
    saveToHistory: bool = False
    title: Optional[str] = None
    type: Optional[str] = None
    userId: Optional[str] = None
    transcriptDuration: Optional[str] = None
    meetingId: Optional[str] = None
    idempotencyKey: Optional[str] = None


class ChatRequest(BaseModel):
    message: Optional[str] = None
    context: Optional[str] = None
    documentContext: Optional[str] = None


@router.post("/analyze")
async def analyze(body: AnalyzeRequest, llm: LLMClient = Depends(get_llm), session: Session = Depends(get_session)):
    if not body.documentText:
        return JSONResponse(status_code=400, content={"error": "Document text is required"})

    if not (body.saveToHistory and body.userId):
        analysis = await analyze_document(llm, body.documentText)
        return {"analysis": analysis.model_dump()}

    kind = body.type or "document"
    keep = get_settings().history_limit_per_user
    if kind == "transcript" and body.meetingId:
        chat, analysis, created = await save_transcript_to_history(
            session,
            llm,
            user_id=body.userId,
            meeting_id=body.meetingId,
            transcript=body.documentText,
            idempotency_key=body.idempotencyKey,
            keep=keep,
        )
    else:
        chat, analysis, created = await save_analysis_to_history(
            session,
            llm,
            user_id=body.userId,
            document_text=body.documentText,
            type=kind,
            title=body.title,
            transcript_duration=body.transcriptDuration,
            idempotency_key=body.idempotencyKey,
            keep=keep,
        )
    label = "Transcript" if kind == "transcript" else "Document"
    return {
        "success": True,
        "message": f"{label} saved to history" if created else f"{label} already saved",
        "chatId": chat.id,
        "created": created,
        "analysis": analysis.model_dump(),
    }


@router.post("/chat")
async def chat(body: ChatRequest, llm: LLMClient = Depends(get_llm)):
    if not body.message:
        return JSONResponse(status_code=400, content={"error": "Message is required"})
    try:
        response = await chat_with_ai(llm, body.message, body.context or "general", body.documentContext)
    except AnalysisFailed as exc:
        return JSONResponse(status_code=500, content={"error": "Failed to process chat message", "details": str(exc)})
    return response.model_dump()
