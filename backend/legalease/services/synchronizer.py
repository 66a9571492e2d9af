from __future__ import annotations

import asyncio
import inspect
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Set, Union

from legalease.errors import LegalEaseError
from legalease.services.history import session_idempotency_key


logger = logging.getLogger("legalease.sync")


class SessionState(str, Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    TRANSCRIBING = "transcribing"
    BUFFERING = "buffering"
    RELAYING = "relaying"
    ACTIVE = "active"
    IDLE_DETECTED = "idle_detected"
    SAVED = "saved"
    DISCARDED = "discarded"


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


UpdateCallback = Callable[[str, Optional[str]], Union[None, Awaitable[None]]]
SaveCallback = Callable[[str, Optional[str], str], Union[Any, Awaitable[Any]]]


class ClientSynchronizer:
    """Follows the latest transcript and persists the session once it goes idle.

    ``reader`` returns an object with ``text`` and ``meetingId`` (a store slot
    or relay payload), sync or async. A change resets the idle timer. When no
    change arrives for ``idle_timeout`` seconds the session is marked idle and
    saved once, provided the transcript has at least ``min_save_chars``
    characters. Saves are keyed by meeting and content so an idle save and a
    manual save of the same transcript persist one record.
    """

    def __init__(
        self,
        reader: Callable[[], Any],
        on_update: Optional[UpdateCallback] = None,
        on_save: Optional[SaveCallback] = None,
        idle_timeout: float = 30.0,
        min_save_chars: int = 50,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.reader = reader
        self.on_update = on_update
        self.on_save = on_save
        self.idle_timeout = idle_timeout
        self.min_save_chars = min_save_chars
        self._clock = clock
        self.state = SessionState.IDLE
        self.text = ""
        self.meeting_id: Optional[str] = None
        self.last_change_at: Optional[float] = None
        self.saved_keys: Set[str] = set()
        self._idle_handled = False

    async def poll_once(self) -> bool:
        """Read the slot once. Returns True when the text changed."""
        slot = await _resolve(self.reader())
        text = getattr(slot, "text", "") or ""
        if not text or text == self.text:
            return False
        self.text = text
        self.meeting_id = getattr(slot, "meetingId", None) or self.meeting_id
        self._idle_handled = False
        self.state = SessionState.ACTIVE
        try:
            if self.on_update is not None:
                await _resolve(self.on_update(text, self.meeting_id))
        finally:
            # Idle time counts from the end of update handling
            self.last_change_at = self._clock()
        return True

    async def check_idle(self) -> bool:
        """Returns True when this call performed the idle save."""
        if self.last_change_at is None or self._idle_handled:
            return False
        if self._clock() - self.last_change_at < self.idle_timeout:
            return False
        self._idle_handled = True
        if self.state != SessionState.SAVED:
            self.state = SessionState.IDLE_DETECTED
        logger.info("Session idle", extra={"meeting_id": self.meeting_id, "chars": len(self.text)})
        if len(self.text) < self.min_save_chars:
            return False
        return await self.save()

    async def save(self) -> bool:
        """Persist the current transcript. Duplicate saves are skipped."""
        if not self.text:
            return False
        key = session_idempotency_key(self.meeting_id, self.text)
        if key in self.saved_keys:
            logger.debug("Session already saved", extra={"key": key})
            return False
        if self.on_save is not None:
            await _resolve(self.on_save(self.text, self.meeting_id, key))
        self.saved_keys.add(key)
        self.state = SessionState.SAVED
        logger.info("Session saved", extra={"meeting_id": self.meeting_id, "key": key})
        return True

    def discard(self) -> None:
        self.state = SessionState.DISCARDED
        self.text = ""
        self.last_change_at = None

    async def run(self, interval: float = 2.0, stop: Optional[asyncio.Event] = None) -> None:
        stop = stop or asyncio.Event()
        while not stop.is_set():
            try:
                await self.poll_once()
                await self.check_idle()
            except LegalEaseError as exc:
                logger.warning("Synchronizer tick failed", extra={"error": str(exc)})
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
