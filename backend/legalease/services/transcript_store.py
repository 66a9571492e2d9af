from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, asdict
from typing import Callable, Dict, List, Optional


logger = logging.getLogger("legalease.store")

UNKNOWN_MEETING = "unknown"


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class TranscriptSlot:
    text: str
    meetingId: str
    timestamp: int  # epoch ms; 0 when never written

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


EMPTY_SLOT = TranscriptSlot(text="", meetingId="", timestamp=0)


class LatestTranscriptStore:
    """Latest transcript per meeting, with TTL eviction.

    Writes overwrite the slot for their meeting id. Reads without a meeting
    id return the most recent write across all meetings.
    """

    def __init__(self, ttl_seconds: float = 3600.0, clock: Callable[[], int] = now_ms) -> None:
        self.ttl_ms = int(ttl_seconds * 1000)
        self._clock = clock
        self._slots: Dict[str, TranscriptSlot] = {}
        self._latest_id: Optional[str] = None
        self._lock = threading.Lock()

    def write(self, text: str, meeting_id: Optional[str] = None) -> TranscriptSlot:
        key = meeting_id or UNKNOWN_MEETING
        slot = TranscriptSlot(text=text, meetingId=key, timestamp=self._clock())
        with self._lock:
            if self._latest_id is not None and self._latest_id != key:
                # Unkeyed readers switch sessions here
                logger.debug("Latest slot overwritten by another meeting", extra={"previous": self._latest_id, "meeting_id": key})
            self._slots[key] = slot
            self._latest_id = key
        logger.debug("Stored transcript", extra={"meeting_id": key, "chars": len(text)})
        return slot

    def read(self, meeting_id: Optional[str] = None) -> TranscriptSlot:
        self.evict_expired()
        with self._lock:
            key = meeting_id or self._latest_id
            if key is None:
                return EMPTY_SLOT
            return self._slots.get(key, EMPTY_SLOT)

    def evict_expired(self, now: Optional[int] = None) -> List[str]:
        if self.ttl_ms <= 0:
            return []
        cutoff = (now if now is not None else self._clock()) - self.ttl_ms
        with self._lock:
            expired = [k for k, s in self._slots.items() if s.timestamp < cutoff]
            for k in expired:
                del self._slots[k]
            if self._latest_id in expired:
                self._latest_id = None
        if expired:
            logger.info("Evicted idle transcripts", extra={"meeting_ids": expired})
        return expired

    def meeting_ids(self) -> List[str]:
        with self._lock:
            return list(self._slots)

    def clear(self) -> None:
        with self._lock:
            self._slots.clear()
            self._latest_id = None
