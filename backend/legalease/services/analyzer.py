from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional

from legalease.errors import AnalysisFailed
from legalease.services.llm import LLMClient
from legalease.services.transcript_store import now_ms


logger = logging.getLogger("legalease.analysis")

TRANSCRIPT_PROMPT = """You are an AI legal assistant in a meeting between lawyers and clients.
Analyze this legal conversation transcript and provide:

1. A concise summary of the key legal points discussed
2. Identification of any legal questions or concerns raised
3. Brief explanations of relevant legal concepts mentioned
4. Any important legal considerations that may have been overlooked

Format your response in clear, concise language that both legal professionals and clients can understand.

Transcript:
"{transcript}"
"""


@dataclass
class AnalysisResult:
    analysis: str
    meetingId: Optional[str]
    timestamp: int

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


def appended_words(previous: List[str], current: List[str]) -> int:
    """Words added to the end of ``current`` relative to ``previous``.

    ``current`` is ``previous`` with new words appended and, once a sliding
    window is full, its head dropped. The longest tail of ``previous`` that
    starts ``current`` is the overlap; unrelated text counts as all new.
    """
    for start in range(len(previous) + 1):
        tail = previous[start:]
        if current[: len(tail)] == tail:
            return len(current) - len(tail)
    return len(current)


def trailing_words(text: str, n: int) -> str:
    words = (text or "").split()
    if len(words) > n:
        words = words[-n:]
    return " ".join(words)


def build_transcript_prompt(transcript: str, max_chars: int = 5000) -> str:
    return TRANSCRIPT_PROMPT.format(transcript=transcript[:max_chars])


async def analyze_transcript(
    llm: LLMClient,
    transcript: str,
    meeting_id: Optional[str] = None,
    max_chars: int = 5000,
) -> AnalysisResult:
    """Free-form legal analysis of a transcript excerpt. No retry."""
    if not transcript or not transcript.strip():
        raise ValueError("No transcript provided for analysis")
    try:
        text = await llm.generate(build_transcript_prompt(transcript, max_chars))
    except AnalysisFailed:
        raise
    except Exception as exc:
        raise AnalysisFailed(str(exc)) from exc
    logger.info("Transcript analyzed", extra={"meeting_id": meeting_id, "chars": len(transcript)})
    return AnalysisResult(analysis=text, meetingId=meeting_id, timestamp=now_ms())


class IncrementalAnalyzer:
    """Re-analyzes a growing transcript over a trailing word window.

    The observed text is a sliding window, so growth is counted as the words
    appended since the previously observed window, not as its length. An
    analysis runs when more than ``word_threshold`` words were appended since
    the last successful one, or when requested explicitly. Only the trailing
    ``window_words`` words are sent.
    """

    def __init__(
        self,
        llm: LLMClient,
        word_threshold: int = 20,
        window_words: int = 200,
        max_chars: int = 5000,
    ) -> None:
        self.llm = llm
        self.word_threshold = word_threshold
        self.window_words = window_words
        self.max_chars = max_chars
        self.total_words = 0
        self.analyzed_word_count = 0
        self.last_result: Optional[AnalysisResult] = None
        self.in_flight = False
        self._seen: List[str] = []

    def track(self, transcript: str) -> int:
        """Count the words appended since the last observed text."""
        words = (transcript or "").split()
        if not words:
            return self.total_words
        self.total_words += appended_words(self._seen, words)
        self._seen = words
        return self.total_words

    def should_analyze(self) -> bool:
        return self.total_words - self.analyzed_word_count > self.word_threshold

    def reset(self, words: int = 0) -> None:
        self.analyzed_word_count = words

    async def observe(self, transcript: str, meeting_id: Optional[str] = None) -> Optional[AnalysisResult]:
        self.track(transcript)
        if self.in_flight or not self.should_analyze():
            return None
        return await self.analyze(transcript, meeting_id)

    async def analyze(self, transcript: str, meeting_id: Optional[str] = None) -> AnalysisResult:
        words = self.track(transcript)
        window = trailing_words(transcript, self.window_words)
        self.in_flight = True
        try:
            result = await analyze_transcript(self.llm, window, meeting_id, self.max_chars)
        finally:
            self.in_flight = False
        self.analyzed_word_count = words
        self.last_result = result
        return result
