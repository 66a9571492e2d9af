from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from legalease.errors import ConfigurationError, SynthesisFailed


logger = logging.getLogger("legalease.tts")

TTS_URL = "https://texttospeech.googleapis.com/v1/text:synthesize"
DEFAULT_VOICE = "en-US-Standard-D"


class SpeechSynthesizer:
    """Text-to-speech through the Google Cloud TTS REST API (MP3 output)."""

    def __init__(
        self,
        api_key: str,
        language: str = "en-US",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.language = language
        self.timeout = timeout
        self._transport = transport

    def build_request(self, text: str, voice: str = DEFAULT_VOICE, speed: float = 1.0) -> Dict[str, Any]:
        return {
            "input": {"text": text},
            "voice": {"languageCode": self.language, "name": voice, "ssmlGender": "NEUTRAL"},
            "audioConfig": {
                "audioEncoding": "MP3",
                "speakingRate": speed,
                "pitch": 0.0,
                "volumeGainDb": 0.0,
            },
        }

    async def synthesize(self, text: str, voice: str = DEFAULT_VOICE, speed: float = 1.0) -> str:
        """Returns base64 MP3 audio."""
        if not text or not text.strip():
            raise ValueError("Text is required")
        if not self.api_key:
            raise ConfigurationError("Missing Google Text-to-Speech API key")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(TTS_URL, params={"key": self.api_key}, json=self.build_request(text, voice, speed))
        except httpx.TimeoutException as exc:
            raise SynthesisFailed(504, {"error": "Speech synthesis timed out"}) from exc
        except httpx.HTTPError as exc:
            raise SynthesisFailed(502, {"error": str(exc)}) from exc

        if resp.status_code >= 400:
            try:
                details: Any = resp.json()
            except ValueError:
                details = {"rawError": resp.text}
            logger.error("TTS API error", extra={"status": resp.status_code})
            raise SynthesisFailed(resp.status_code, details)

        audio = resp.json().get("audioContent")
        if not audio:
            raise SynthesisFailed(502, {"error": "No audio content returned"})
        logger.info("Speech synthesized", extra={"chars": len(text), "voice": voice})
        return audio
