"""Recognition vocabulary for legal meetings and voice chat."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

logger = logging.getLogger("legalease.vocabulary")


# Phrases boosted when transcribing live meetings
MEETING_PHRASES: List[str] = [
    "legal", "contract", "agreement", "clause", "plaintiff", "defendant",
    "lawyer", "attorney", "court", "judge", "law", "provision",
    "meeting", "conference", "call", "discussion", "conversation",
]

# Phrases boosted for short spoken questions to the assistant
VOICE_CHAT_PHRASES: List[str] = [
    "legal", "contract", "agreement", "clause", "law", "attorney",
    "document", "analysis", "help", "explain", "what", "how", "why",
]

# Terms the local model tends to misrecognize
LEGAL_VOCABULARY: List[str] = [
    "indemnification", "indemnify", "liability", "arbitration", "jurisdiction",
    "severability", "force majeure", "non-compete", "non-disclosure", "NDA",
    "breach", "remedy", "warranty", "termination", "confidentiality",
    "intellectual property", "governing law", "assignment", "escrow", "lien",
]

DEFAULT_BOOST = 10.0


def speech_contexts(phrases: Sequence[str], boost: float = DEFAULT_BOOST) -> List[Dict[str, object]]:
    """speechContexts block for the recognition config."""
    return [{"phrases": list(phrases), "boost": boost}]


def initial_prompt(previous_segments: Optional[Sequence[str]] = None) -> str:
    """Initial prompt biasing local Whisper decoding toward legal terms.

    Whisper accepts roughly 224 tokens of prompt; the result is clipped to
    about four characters per token.
    """
    parts = [
        "This is a legal meeting transcript. Topics include contracts, "
        "litigation, compliance, regulations, and legal procedures.",
        f"Specific terms: {', '.join(LEGAL_VOCABULARY[:15])}.",
    ]
    if previous_segments:
        recent = " ".join(previous_segments[-3:])
        if len(recent) > 200:
            recent = recent[-200:]
        parts.append(f"Previous discussion: ...{recent}")

    prompt = " ".join(parts)
    max_chars = 224 * 4
    if len(prompt) > max_chars:
        prompt = prompt[: max_chars - 3] + "..."
    logger.debug("Generated prompt (%d chars)", len(prompt))
    return prompt
