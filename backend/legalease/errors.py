"""Failure taxonomy shared by the capture pipeline and the API."""

from __future__ import annotations

from typing import Any, Optional


class LegalEaseError(Exception):
    """Base class for errors raised by legalease services."""


class ConfigurationError(LegalEaseError):
    """A required credential or setting is missing."""


class PermissionDenied(LegalEaseError):
    """No microphone or tab-audio access. Ends the capture session."""


class DeviceUnavailable(LegalEaseError):
    """Audio device could not be opened. Retry by calling start() again."""


class TranscriptionFailed(LegalEaseError):
    """The speech service rejected or failed one segment."""

    def __init__(self, status: int, body: Any = None, message: Optional[str] = None) -> None:
        self.status = status
        self.body = body
        super().__init__(message or f"Transcription failed with status {status}")


class RelayUnavailable(LegalEaseError):
    """The relay transport could not deliver a message."""


class AnalysisFailed(LegalEaseError):
    """The LLM call failed. Callers may re-trigger manually."""


class SynthesisFailed(LegalEaseError):
    """The text-to-speech service rejected a request."""

    def __init__(self, status: int, body: Any = None) -> None:
        self.status = status
        self.body = body
        super().__init__(f"Speech synthesis failed with status {status}")
