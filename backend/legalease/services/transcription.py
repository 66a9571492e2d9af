from __future__ import annotations

import asyncio
import base64
import io
import math
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, Sequence, Tuple

import httpx
import logging

from legalease.config import Settings
from legalease.errors import ConfigurationError, TranscriptionFailed
from legalease.services.audio_capture import AudioSegment
from legalease.services.vocabulary import (
    MEETING_PHRASES,
    VOICE_CHAT_PHRASES,
    initial_prompt,
    speech_contexts,
)


logger = logging.getLogger("legalease.transcription")

SPEECH_URL = "https://speech.googleapis.com/v1/speech:recognize"


@dataclass
class TranscriptFragment:
    text: str
    confidence: float = 0.0
    encoding: str = "unknown"
    duration: str = "unknown"
    processing_info: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return self.text.strip() == ""

    @property
    def message(self) -> str:
        if not self.is_empty:
            return "Speech transcribed successfully"
        if self.processing_info.get("noSpeechDetected"):
            return "No speech detected in audio"
        return "Failed to transcribe speech"


class Transcriber(Protocol):
    async def transcribe(self, segment: AudioSegment) -> TranscriptFragment:
        ...


def encoding_for_mime(mime_type: str) -> Tuple[str, Optional[int]]:
    """Map a recorder MIME type to a recognition encoding and sample rate.

    Unknown types fall back to LINEAR16 and may be rejected upstream.
    """
    mime = (mime_type or "").lower()
    if "webm" in mime:
        return "WEBM_OPUS", None
    if "ogg" in mime:
        return "OGG_OPUS", None
    if "mp3" in mime or "mpeg" in mime:
        return "MP3", None
    if "flac" in mime:
        return "FLAC", None
    if "wav" in mime or "linear16" in mime:
        return "LINEAR16", 16000
    logger.warning("Unrecognized audio type; using LINEAR16", extra={"mime_type": mime_type})
    return "LINEAR16", None


class GoogleSpeechTranscriber:
    """Speech-to-text through the Google Cloud Speech REST API."""

    def __init__(
        self,
        api_key: str,
        phrases: Sequence[str] = MEETING_PHRASES,
        model: str = "video",
        language: str = "en-US",
        timeout: float = 30.0,
        use_enhanced: bool = True,
        word_details: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.phrases = list(phrases)
        self.model = model
        self.language = language
        self.timeout = timeout
        self.use_enhanced = use_enhanced
        self.word_details = word_details
        self._transport = transport

    def build_request(self, segment: AudioSegment) -> Tuple[Dict[str, Any], str]:
        encoding, sample_rate = encoding_for_mime(segment.mime_type)
        config: Dict[str, Any] = {
            "encoding": encoding,
            "languageCode": self.language,
            "enableAutomaticPunctuation": True,
            "model": self.model,
            "useEnhanced": self.use_enhanced,
            "maxAlternatives": 1,
            "profanityFilter": False,
            "speechContexts": speech_contexts(self.phrases),
        }
        if self.word_details:
            config["enableWordTimeOffsets"] = True
            config["enableWordConfidence"] = True
        if sample_rate:
            config["sampleRateHertz"] = sample_rate
        body = {
            "config": config,
            "audio": {"content": base64.b64encode(segment.data).decode("ascii")},
        }
        return body, encoding

    async def transcribe(self, segment: AudioSegment) -> TranscriptFragment:
        if not segment.data:
            raise TranscriptionFailed(400, {"error": "No audio data provided"}, "Empty audio segment")
        if not self.api_key:
            raise ConfigurationError("Missing Google Speech API key")

        body, encoding = self.build_request(segment)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(SPEECH_URL, params={"key": self.api_key}, json=body)
        except httpx.TimeoutException as exc:
            raise TranscriptionFailed(504, {"error": "Speech service timed out"}, str(exc)) from exc
        except httpx.HTTPError as exc:
            raise TranscriptionFailed(502, {"error": "Speech service unreachable", "detail": str(exc)}, str(exc)) from exc

        if resp.status_code >= 400:
            try:
                details: Any = resp.json()
            except ValueError:
                details = {"rawError": resp.text}
            logger.error("Speech API error", extra={"status": resp.status_code, "encoding": encoding})
            raise TranscriptionFailed(resp.status_code, details)

        data = resp.json()
        if isinstance(data, dict) and data.get("error"):
            err = data["error"]
            raise TranscriptionFailed(400, err, str(err.get("message", "Speech API error")) if isinstance(err, dict) else str(err))

        fragment = parse_recognize_response(data)
        fragment.encoding = encoding
        fragment.processing_info.update(
            {
                "receivedAudio": True,
                "fileType": segment.mime_type,
                "fileSize": segment.size,
                "encoding": encoding,
            }
        )
        if fragment.is_empty:
            logger.info("Empty transcription", extra={"encoding": encoding, "size": segment.size})
        else:
            logger.info("Transcription received", extra={"chars": len(fragment.text)})
        return fragment


def parse_recognize_response(data: Dict[str, Any]) -> TranscriptFragment:
    results = data.get("results") or []
    parts = []
    no_speech = False
    for result in results:
        alternatives = result.get("alternatives") or []
        if not alternatives:
            continue
        transcript = alternatives[0].get("transcript") or ""
        if not transcript:
            no_speech = True
        elif transcript.strip():
            parts.append(transcript.strip())

    confidence = 0.0
    duration = "unknown"
    if results and (results[0].get("alternatives") or []):
        first = results[0]["alternatives"][0]
        if isinstance(first.get("confidence"), (int, float)):
            confidence = float(first["confidence"])
        words = first.get("words")
        if isinstance(words, list) and words:
            duration = f"{len(words)} words"
        elif data.get("totalBilledTime"):
            duration = str(data["totalBilledTime"])

    return TranscriptFragment(
        text=" ".join(parts),
        confidence=confidence,
        duration=duration,
        processing_info={
            "noSpeechDetected": no_speech,
            "requestId": data.get("requestId", "unknown"),
            "totalBilledTime": data.get("totalBilledTime", "unknown"),
        },
    )


class WhisperTranscriber:
    """Local transcription with faster-whisper, cached per model/device."""

    def __init__(self, settings: Optional[Settings] = None, model_id: Optional[str] = None, device: Optional[str] = None) -> None:
        self._settings = settings or Settings()
        self.model_id = model_id or self._settings.whisper_model_id
        self.device_pref = device or self._settings.whisper_device
        self.timeout = self._settings.transcription_timeout_seconds
        self._model = None
        self._lock = threading.Lock()
        self._history: list[str] = []

    def _resolve_device_and_compute_type(self) -> Tuple[str, str]:
        device = "cpu"
        if self.device_pref in ("auto", "cuda"):
            try:
                import ctranslate2  # type: ignore

                if ctranslate2.get_cuda_device_count() > 0:
                    device = "cuda"
            except Exception:
                device = "cpu"
        return device, ("float16" if device == "cuda" else "int8")

    def _ensure_model(self):
        if self._model is None:
            # Lazy import keeps app startup light
            from faster_whisper import WhisperModel  # type: ignore

            device, compute_type = self._resolve_device_and_compute_type()
            self._model = WhisperModel(
                self.model_id,
                device=device,
                compute_type=compute_type,
                download_root=str(self._settings.data_dir / "whisper"),
            )
        return self._model

    def _transcribe_sync(self, segment: AudioSegment) -> TranscriptFragment:
        with self._lock:
            model = self._ensure_model()
            seg_iter, info = model.transcribe(
                io.BytesIO(segment.data),
                vad_filter=True,
                language=self._settings.speech_language.split("-")[0],
                task="transcribe",
                beam_size=1,
                temperature=0.0,
                condition_on_previous_text=False,
                initial_prompt=initial_prompt(self._history),
            )
            texts = []
            confidences = []
            for seg in seg_iter:
                text = (seg.text or "").strip()
                if text:
                    texts.append(text)
                avg_lp = getattr(seg, "avg_logprob", None)
                if avg_lp is not None:
                    no_sp = float(getattr(seg, "no_speech_prob", 0.0) or 0.0)
                    confidences.append(max(0.0, min(1.0, math.exp(float(avg_lp)) * (1.0 - no_sp))))
        text = " ".join(texts)
        if text:
            self._history.append(text)
            del self._history[:-3]
        return TranscriptFragment(
            text=text,
            confidence=sum(confidences) / len(confidences) if confidences else 0.0,
            encoding="LINEAR16",
            duration=f"{float(getattr(info, 'duration', 0.0) or 0.0):.1f}s",
            processing_info={"noSpeechDetected": not text, "language": getattr(info, "language", None)},
        )

    async def transcribe(self, segment: AudioSegment) -> TranscriptFragment:
        if not segment.data:
            raise TranscriptionFailed(400, {"error": "No audio data provided"}, "Empty audio segment")
        try:
            return await asyncio.wait_for(asyncio.to_thread(self._transcribe_sync, segment), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise TranscriptionFailed(504, {"error": "Local transcription timed out"}) from exc
        except TranscriptionFailed:
            raise
        except Exception as exc:
            raise TranscriptionFailed(500, {"error": str(exc)}, str(exc)) from exc


def create_transcriber(settings: Settings, profile: str = "meeting") -> Transcriber:
    if settings.asr_backend == "whisper":
        return WhisperTranscriber(settings)
    if profile == "voice_chat":
        return GoogleSpeechTranscriber(
            api_key=settings.google_speech_api_key,
            phrases=VOICE_CHAT_PHRASES,
            model="latest_long",
            language=settings.speech_language,
            timeout=settings.transcription_timeout_seconds,
            word_details=False,
        )
    return GoogleSpeechTranscriber(
        api_key=settings.google_speech_api_key,
        phrases=MEETING_PHRASES,
        model="video",
        language=settings.speech_language,
        timeout=settings.transcription_timeout_seconds,
    )
