from __future__ import annotations

import logging
import threading
from typing import List, Optional


logger = logging.getLogger("legalease.buffer")


class TranscriptBuffer:
    """Rolling transcript window that decides when to forward.

    Words are kept in a sliding window of the trailing ``max_words``. New
    words are counted cumulatively so truncation does not hide growth:
    a forward happens when ``total_words - sent_word_count >= threshold``
    and the joined window differs from ``last_sent_text``.

    Empty fragments never forward and never touch ``last_sent_text``.
    """

    def __init__(self, max_words: int = 500, threshold: int = 10) -> None:
        if max_words <= 0:
            raise ValueError("max_words must be positive")
        self.max_words = max_words
        self.threshold = max(1, threshold)
        self._words: List[str] = []
        self._lock = threading.Lock()
        self.total_words = 0
        self.sent_word_count = 0
        self.last_sent_text = ""
        self.is_active = True

    @property
    def text(self) -> str:
        return " ".join(self._words)

    @property
    def word_count(self) -> int:
        return len(self._words)

    def add_fragment(self, fragment: str) -> Optional[str]:
        """Append a fragment. Returns the text to forward, or None."""
        if not self.is_active:
            logger.debug("Dropping fragment for inactive buffer")
            return None
        words = (fragment or "").split()
        if not words:
            return None

        with self._lock:
            self._words.extend(words)
            if len(self._words) > self.max_words:
                del self._words[: len(self._words) - self.max_words]
            self.total_words += len(words)

            new_words = self.total_words - self.sent_word_count
            current = " ".join(self._words)
            if new_words < self.threshold or current == self.last_sent_text:
                return None
            self.last_sent_text = current
            self.sent_word_count = self.total_words
        logger.debug("Forwarding transcript", extra={"new_words": new_words, "window_words": len(self._words)})
        return current

    def discard(self) -> None:
        with self._lock:
            self.is_active = False
            self._words = []
