from __future__ import annotations

import time
from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from legalease.deps import get_synthesizer, get_voice_transcriber
from legalease.errors import SynthesisFailed, TranscriptionFailed
from legalease.services.audio_capture import AudioSegment
from legalease.services.speech import DEFAULT_VOICE, SpeechSynthesizer
from legalease.services.transcription import Transcriber


router = APIRouter(tags=["speech"])


class TextToSpeechRequest(BaseModel):
    text: Optional[str] = None
    voice: str = DEFAULT_VOICE
    speed: float = 1.0


@router.post("/speech-to-text")
async def speech_to_text(
    audio: Optional[UploadFile] = File(default=None),
    transcriber: Transcriber = Depends(get_voice_transcriber),
):
    if audio is None:
        return JSONResponse(status_code=400, content={"error": "No audio file provided"})
    segment = AudioSegment(data=await audio.read(), mime_type=audio.content_type or "", captured_at=time.time())
    try:
        fragment = await transcriber.transcribe(segment)
    except TranscriptionFailed as exc:
        return JSONResponse(
            status_code=exc.status,
            content={"error": "Failed to transcribe speech", "details": exc.body or {"error": str(exc)}},
        )
    return {"text": fragment.text, "confidence": fragment.confidence, "timestamp": int(time.time() * 1000)}


@router.post("/text-to-speech")
async def text_to_speech(body: TextToSpeechRequest, synthesizer: SpeechSynthesizer = Depends(get_synthesizer)):
    if not body.text or not body.text.strip():
        return JSONResponse(status_code=400, content={"error": "Text is required"})
    try:
        audio = await synthesizer.synthesize(body.text, voice=body.voice, speed=body.speed)
    except SynthesisFailed as exc:
        return JSONResponse(
            status_code=exc.status,
            content={"error": "Failed to synthesize speech", "details": exc.body},
        )
    return {"audioContent": audio, "contentType": "audio/mpeg"}
