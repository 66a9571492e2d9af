from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, WebSocket
from starlette.websockets import WebSocketDisconnect

from legalease.deps import get_hub, get_settings, get_store
from legalease.services.relay import ACK_EVENT, TRANSCRIPT_EVENT, UPDATE_EVENT, RelayHub
from legalease.services.transcript_store import LatestTranscriptStore, now_ms


logger = logging.getLogger("legalease.relay")

router = APIRouter(tags=["relay"])

# Forwarded to every listener without touching the store
PASSTHROUGH_EVENTS = ("analysis", "status")


@router.websocket(get_settings().relay_path)
async def relay_socket(
    websocket: WebSocket,
    hub: RelayHub = Depends(get_hub),
    store: LatestTranscriptStore = Depends(get_store),
) -> None:
    await websocket.accept()
    hub.register(websocket)
    logger.info("Relay client connected", extra={"listeners": hub.listener_count})
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                logger.debug("Ignoring non-JSON relay frame")
                continue
            if not isinstance(message, dict):
                continue
            event = message.get("event")
            data = message.get("data") or {}

            if event == TRANSCRIPT_EVENT:
                text = data.get("text") if isinstance(data, dict) else None
                if not text:
                    await websocket.send_json({"event": ACK_EVENT, "data": {"success": False, "timestamp": now_ms()}})
                    continue
                slot = store.write(text, data.get("meetingId"))
                await websocket.send_json({"event": ACK_EVENT, "data": {"success": True, "timestamp": slot.timestamp}})
                await hub.broadcast(UPDATE_EVENT, slot.to_dict())
            elif event in PASSTHROUGH_EVENTS:
                await hub.broadcast(event, data)
            else:
                logger.debug("Unknown relay event", extra={"event": event})
    except WebSocketDisconnect:
        pass
    finally:
        hub.unregister(websocket)
        logger.info("Relay client disconnected", extra={"listeners": hub.listener_count})
