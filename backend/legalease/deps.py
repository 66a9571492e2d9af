from __future__ import annotations

from functools import lru_cache
from typing import Iterator

from sqlmodel import Session

from legalease.config import Settings
from legalease.models.base import engine
from legalease.services.llm import LLMClient, create_llm_client
from legalease.services.relay import RelayHub
from legalease.services.speech import SpeechSynthesizer
from legalease.services.transcript_store import LatestTranscriptStore
from legalease.services.transcription import Transcriber, create_transcriber


def get_session() -> Iterator[Session]:
    with Session(engine) as session:
        yield session


@lru_cache
def get_settings() -> Settings:
    return Settings()


@lru_cache
def get_store() -> LatestTranscriptStore:
    return LatestTranscriptStore(ttl_seconds=get_settings().store_ttl_seconds)


@lru_cache
def get_hub() -> RelayHub:
    return RelayHub()


@lru_cache
def get_transcriber() -> Transcriber:
    return create_transcriber(get_settings())


@lru_cache
def get_voice_transcriber() -> Transcriber:
    return create_transcriber(get_settings(), profile="voice_chat")


@lru_cache
def get_llm() -> LLMClient:
    return create_llm_client(get_settings())


@lru_cache
def get_synthesizer() -> SpeechSynthesizer:
    s = get_settings()
    return SpeechSynthesizer(s.google_tts_api_key, language=s.speech_language, timeout=s.tts_timeout_seconds)
