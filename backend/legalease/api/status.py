from __future__ import annotations

from fastapi import APIRouter, Depends

from legalease.config import Settings
from legalease.deps import get_hub, get_settings, get_store
from legalease.services.relay import RelayHub
from legalease.services.transcript_store import LatestTranscriptStore, now_ms


router = APIRouter(tags=["status"])


@router.get("/status")
def status(settings: Settings = Depends(get_settings), store: LatestTranscriptStore = Depends(get_store)) -> dict:
    return {
        "status": "ok",
        "message": "API is running",
        "timestamp": now_ms(),
        "version": settings.version,
        "features": {
            "transcription": True,
            "websocket": True,
            "chat": True,
            "asrBackend": settings.asr_backend,
            "llmBackend": settings.llm_backend,
        },
        "activeMeetings": len(store.meeting_ids()),
    }


@router.get("/websocket-status")
def websocket_status(settings: Settings = Depends(get_settings), hub: RelayHub = Depends(get_hub)) -> dict:
    return {
        "status": "ok",
        "message": "WebSocket server is available",
        "timestamp": now_ms(),
        "socketPath": settings.relay_path,
        "listeners": hub.listener_count,
        "wsSupported": True,
    }
