from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel

from legalease.services.audio_capture import list_devices as query_devices


router = APIRouter(prefix="/devices", tags=["devices"])


class Device(BaseModel):
    id: str
    name: str
    kind: str  # input | output
    is_default: bool = False


@router.get("")
def list_devices() -> dict[str, list[Device]]:
    found = query_devices()
    return {
        "inputs": [Device(**d) for d in found["inputs"]],
        "outputs": [Device(**d) for d in found["outputs"]],
    }
