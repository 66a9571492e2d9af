from __future__ import annotations

import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Header, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from legalease.deps import get_hub, get_llm, get_store, get_transcriber
from legalease.errors import AnalysisFailed, TranscriptionFailed
from legalease.services.analyzer import analyze_transcript
from legalease.services.audio_capture import AudioSegment
from legalease.services.llm import LLMClient
from legalease.services.relay import UPDATE_EVENT, RelayHub
from legalease.services.transcript_store import LatestTranscriptStore
from legalease.services.transcription import Transcriber


logger = logging.getLogger("legalease.api")

router = APIRouter(tags=["transcripts"])


class LatestTranscriptRequest(BaseModel):
    text: Optional[str] = None
    meetingId: Optional[str] = None


class AnalyzeTranscriptRequest(BaseModel):
    transcript: Optional[str] = None
    meetingId: Optional[str] = None


@router.get("/latest-transcript")
def read_latest(meetingId: Optional[str] = None, store: LatestTranscriptStore = Depends(get_store)) -> dict:
    return store.read(meetingId).to_dict()


@router.post("/latest-transcript")
async def write_latest(
    body: LatestTranscriptRequest,
    x_meeting_id: Optional[str] = Header(default=None),
    store: LatestTranscriptStore = Depends(get_store),
    hub: RelayHub = Depends(get_hub),
) -> dict:
    # Empty text is accepted but not stored
    if body.text:
        slot = store.write(body.text, body.meetingId or x_meeting_id)
        await hub.broadcast(UPDATE_EVENT, slot.to_dict())
    return {"success": True}


@router.post("/transcribe")
async def transcribe(
    audio: Optional[UploadFile] = File(default=None),
    meetingId: Optional[str] = Form(default=None),
    transcriber: Transcriber = Depends(get_transcriber),
):
    if audio is None:
        return JSONResponse(status_code=400, content={"error": "No audio file provided"})
    data = await audio.read()
    segment = AudioSegment(data=data, mime_type=audio.content_type or "", captured_at=time.time())
    try:
        fragment = await transcriber.transcribe(segment)
    except TranscriptionFailed as exc:
        return JSONResponse(
            status_code=exc.status,
            content={
                "error": "Failed to transcribe audio",
                "details": exc.body or {"error": str(exc)},
                "httpStatus": exc.status,
                "request": {"audioSize": len(data), "audioType": audio.content_type or "unknown"},
            },
        )
    logger.info("Segment transcribed", extra={"meeting_id": meetingId, "chars": len(fragment.text)})
    return {
        "text": fragment.text,
        "timestamp": int(time.time() * 1000),
        "encoding": fragment.encoding,
        "duration": fragment.duration,
        "confidence": fragment.confidence,
        "processingInfo": fragment.processing_info,
        "isEmpty": fragment.is_empty,
        "message": fragment.message,
    }


@router.post("/analyze-transcript")
async def analyze(body: AnalyzeTranscriptRequest, llm: LLMClient = Depends(get_llm)):
    if not body.transcript or not body.transcript.strip():
        return JSONResponse(status_code=400, content={"error": "No transcript provided for analysis"})
    try:
        result = await analyze_transcript(llm, body.transcript, body.meetingId)
    except AnalysisFailed as exc:
        logger.error("Transcript analysis failed", extra={"error": str(exc)})
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to analyze transcript", "details": str(exc)},
        )
    return result.to_dict()
