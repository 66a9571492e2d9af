from __future__ import annotations

from pathlib import Path
from typing import List, Literal
from pydantic import Field
from pydantic_settings import BaseSettings
import os


def _home() -> Path:
    return Path(os.getenv("LEGALEASE_HOME", str(Path.home() / ".legalease")))


class Settings(BaseSettings):
    app_name: str = "LegalEase"
    version: str = "0.1.0"

    home_dir: Path = Field(default_factory=_home)
    data_dir: Path = Field(default_factory=lambda: _home() / "data")
    logs_dir: Path = Field(default_factory=lambda: _home() / "logs")

    database_path: Path = Field(default_factory=lambda: _home() / "data" / "legalease.db")

    # Upstream credentials
    gemini_api_key: str = ""
    google_speech_api_key: str = ""
    google_tts_api_key: str = ""

    # The capture context runs on the meeting host page
    allowed_origins: List[str] = Field(
        default_factory=lambda: [
            "https://meet.google.com",
            "http://localhost:3000",
            "http://localhost:3001",
        ]
    )
    allowed_headers: List[str] = Field(
        default_factory=lambda: [
            "Content-Type",
            "X-Meeting-ID",
            "X-Client-Version",
            "Authorization",
            "Accept",
        ]
    )
    cors_max_age: int = 86400

    # Capture and buffering
    chunk_seconds: float = 5.0
    capture_sample_rate: int = 16000
    buffer_max_words: int = 500
    push_forward_threshold: int = 10
    pull_forward_threshold: int = 1

    # Relay
    relay_strategy: Literal["push", "pull"] = "push"
    relay_path: str = "/api/websocket"
    relay_max_reconnect_attempts: int = 5
    relay_reconnect_delay_seconds: float = 1.0
    store_ttl_seconds: float = 3600.0

    # Analysis and sync
    analysis_word_threshold: int = 20
    analysis_window_words: int = 200
    transcript_prompt_chars: int = 5000
    poll_interval_seconds: float = 2.0
    idle_timeout_seconds: float = 30.0
    min_save_chars: int = 50
    history_limit_per_user: int = 50

    # Timeouts for upstream calls
    transcription_timeout_seconds: float = 30.0
    analysis_timeout_seconds: float = 60.0
    tts_timeout_seconds: float = 30.0

    # Backends
    asr_backend: Literal["google", "whisper"] = "google"
    speech_language: str = "en-US"
    whisper_model_id: str = "small"
    whisper_device: Literal["auto", "cpu", "cuda"] = "auto"
    llm_backend: Literal["gemini", "llama_cpp"] = "gemini"
    gemini_model: str = "gemini-2.0-flash"
    llm_model_path: str = ""

    class Config:
        env_prefix = "LEGALEASE_"
        case_sensitive = False

    def ensure_dirs(self) -> None:
        for d in [self.home_dir, self.data_dir, self.logs_dir]:
            d.mkdir(parents=True, exist_ok=True)
