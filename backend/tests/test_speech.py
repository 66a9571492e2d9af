"""Test text-to-speech and voice chat transcription."""

import asyncio
import json

import httpx
import pytest

from legalease import deps
from legalease.errors import ConfigurationError, SynthesisFailed
from legalease.services.speech import SpeechSynthesizer


def synthesizer_for(handler, api_key="tts-key"):
    return SpeechSynthesizer(api_key, transport=httpx.MockTransport(handler))


def test_synthesize_request_shape():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"audioContent": "SUQz"})

    audio = asyncio.run(synthesizer_for(handler).synthesize("Hello counsel", speed=1.25))
    assert audio == "SUQz"
    body = seen["body"]
    assert body["input"] == {"text": "Hello counsel"}
    assert body["voice"]["name"] == "en-US-Standard-D"
    assert body["audioConfig"]["audioEncoding"] == "MP3"
    assert body["audioConfig"]["speakingRate"] == 1.25


def test_synthesize_upstream_error():
    handler = lambda request: httpx.Response(400, json={"error": {"message": "bad voice"}})
    with pytest.raises(SynthesisFailed) as info:
        asyncio.run(synthesizer_for(handler).synthesize("text"))
    assert info.value.status == 400


def test_synthesize_requires_key():
    handler = lambda request: httpx.Response(200, json={})
    with pytest.raises(ConfigurationError):
        asyncio.run(synthesizer_for(handler, api_key="").synthesize("text"))


def test_text_to_speech_route(client):
    handler = lambda request: httpx.Response(200, json={"audioContent": "QUJD"})
    client.app.dependency_overrides[deps.get_synthesizer] = lambda: synthesizer_for(handler)
    response = client.post("/text-to-speech", json={"text": "Read this aloud"})
    assert response.status_code == 200
    assert response.json() == {"audioContent": "QUJD", "contentType": "audio/mpeg"}


def test_text_to_speech_requires_text(client):
    response = client.post("/text-to-speech", json={"text": ""})
    assert response.status_code == 400
    assert response.json() == {"error": "Text is required"}


def test_missing_key_is_server_configuration_error(client):
    client.app.dependency_overrides[deps.get_synthesizer] = lambda: SpeechSynthesizer("")
    response = client.post("/text-to-speech", json={"text": "hello"})
    assert response.status_code == 500
    assert response.json()["error"] == "Server configuration error"


def test_speech_to_text_route(client, transcriber):
    transcriber.texts = ["what does indemnify mean"]
    response = client.post("/speech-to-text", files={"audio": ("q.webm", b"\x1a\x45", "audio/webm")})
    assert response.status_code == 200
    data = response.json()
    assert data["text"] == "what does indemnify mean"
    assert data["confidence"] == pytest.approx(0.9)
