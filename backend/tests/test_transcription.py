"""Test the speech-to-text client against a mocked upstream."""

import asyncio
import base64
import json

import httpx
import pytest

from legalease.errors import ConfigurationError, TranscriptionFailed
from legalease.services.audio_capture import AudioSegment
from legalease.services.transcription import (
    GoogleSpeechTranscriber,
    encoding_for_mime,
    parse_recognize_response,
)
from legalease.services.vocabulary import initial_prompt


def segment(data=b"RIFF0000WAVE", mime="audio/wav"):
    return AudioSegment(data=data, mime_type=mime, captured_at=0.0)


def transcriber_for(handler, api_key="test-key"):
    return GoogleSpeechTranscriber(api_key=api_key, transport=httpx.MockTransport(handler))


@pytest.mark.parametrize(
    "mime, expected",
    [
        ("audio/webm;codecs=opus", ("WEBM_OPUS", None)),
        ("audio/ogg", ("OGG_OPUS", None)),
        ("audio/mpeg", ("MP3", None)),
        ("audio/wav", ("LINEAR16", 16000)),
        ("audio/flac", ("FLAC", None)),
        ("application/octet-stream", ("LINEAR16", None)),
    ],
)
def test_encoding_for_mime(mime, expected):
    assert encoding_for_mime(mime) == expected


def test_request_carries_audio_and_vocabulary():
    seen = {}

    def handler(request):
        seen["key"] = request.url.params["key"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={"results": [{"alternatives": [{"transcript": "review the clause", "confidence": 0.92}]}]},
        )

    fragment = asyncio.run(transcriber_for(handler).transcribe(segment(b"abc")))
    assert fragment.text == "review the clause"
    assert fragment.confidence == pytest.approx(0.92)
    assert fragment.encoding == "LINEAR16"
    assert seen["key"] == "test-key"
    body = seen["body"]
    assert base64.b64decode(body["audio"]["content"]) == b"abc"
    assert body["config"]["sampleRateHertz"] == 16000
    assert body["config"]["speechContexts"][0]["boost"] == 10.0
    assert "contract" in body["config"]["speechContexts"][0]["phrases"]


def test_empty_result_is_valid():
    handler = lambda request: httpx.Response(200, json={"requestId": "r1"})
    fragment = asyncio.run(transcriber_for(handler).transcribe(segment()))
    assert fragment.is_empty
    assert fragment.message == "Failed to transcribe speech"
    assert fragment.processing_info["requestId"] == "r1"


def test_upstream_error_mirrors_status_and_body():
    handler = lambda request: httpx.Response(403, json={"error": {"message": "API key not valid"}})
    with pytest.raises(TranscriptionFailed) as info:
        asyncio.run(transcriber_for(handler).transcribe(segment()))
    assert info.value.status == 403
    assert info.value.body == {"error": {"message": "API key not valid"}}


def test_non_json_error_body_is_kept_raw():
    handler = lambda request: httpx.Response(500, text="upstream exploded")
    with pytest.raises(TranscriptionFailed) as info:
        asyncio.run(transcriber_for(handler).transcribe(segment()))
    assert info.value.body == {"rawError": "upstream exploded"}


def test_transport_error_is_bad_gateway():
    def handler(request):
        raise httpx.ConnectError("connection refused")

    with pytest.raises(TranscriptionFailed) as info:
        asyncio.run(transcriber_for(handler).transcribe(segment()))
    assert info.value.status == 502


def test_missing_key_is_configuration_error():
    handler = lambda request: httpx.Response(200, json={})
    with pytest.raises(ConfigurationError):
        asyncio.run(transcriber_for(handler, api_key="").transcribe(segment()))


def test_empty_audio_is_rejected():
    handler = lambda request: httpx.Response(200, json={})
    with pytest.raises(TranscriptionFailed) as info:
        asyncio.run(transcriber_for(handler).transcribe(segment(b"")))
    assert info.value.status == 400


def test_parse_joins_results_and_detects_no_speech():
    data = {
        "results": [
            {"alternatives": [{"transcript": "first part", "confidence": 0.8, "words": [{}, {}]}]},
            {"alternatives": [{"transcript": ""}]},
            {"alternatives": [{"transcript": " second part "}]},
        ],
        "totalBilledTime": "5s",
    }
    fragment = parse_recognize_response(data)
    assert fragment.text == "first part second part"
    assert fragment.duration == "2 words"
    assert fragment.processing_info["noSpeechDetected"] is True


def test_initial_prompt_mentions_legal_terms():
    prompt = initial_prompt(["previous words"])
    assert "indemnification" in prompt
    assert len(prompt) <= 224 * 4
