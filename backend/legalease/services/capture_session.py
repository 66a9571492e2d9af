from __future__ import annotations

import asyncio
import logging
import re
from typing import Callable, Optional

from legalease.errors import (
    ConfigurationError,
    LegalEaseError,
    PermissionDenied,
    RelayUnavailable,
    TranscriptionFailed,
)
from legalease.services.audio_capture import AudioSegment, AudioSource, ChunkedAudioCapture
from legalease.services.relay import RelayChannel, RelayPayload
from legalease.services.synchronizer import SessionState
from legalease.services.transcript_buffer import TranscriptBuffer
from legalease.services.transcription import Transcriber


logger = logging.getLogger("legalease.capture")

UNKNOWN_MEETING_ID = "unknown-meeting"
_MEETING_ID_RE = re.compile(r"/([a-zA-Z0-9-]+)(?:\?|$)")


def meeting_id_from_url(url: Optional[str]) -> str:
    match = _MEETING_ID_RE.search(url or "")
    return match.group(1) if match else UNKNOWN_MEETING_ID


def _queue_put_safe(q: asyncio.Queue, item: Optional[AudioSegment]) -> None:
    try:
        q.put_nowait(item)
    except asyncio.QueueFull:
        # drop if backpressure
        logger.warning("Segment queue full; dropping segment")


class CaptureSession:
    """One capture run: audio -> transcription -> buffer -> relay.

    Segments leave the audio thread through a bounded queue and are
    transcribed one at a time in emission order. A failed segment is logged
    and skipped. A device or permission failure ends the session.
    """

    def __init__(
        self,
        source_factory: Callable[[], AudioSource],
        transcriber: Transcriber,
        relay: RelayChannel,
        meeting_id: str = UNKNOWN_MEETING_ID,
        chunk_seconds: float = 5.0,
        forward_threshold: int = 10,
        max_words: int = 500,
        target_rate: int = 16000,
        queue_size: int = 8,
    ) -> None:
        self.transcriber = transcriber
        self.relay = relay
        self.meeting_id = meeting_id
        self.buffer = TranscriptBuffer(max_words=max_words, threshold=forward_threshold)
        self.capture = ChunkedAudioCapture(
            source_factory,
            on_data_available=self._on_segment,
            chunk_seconds=chunk_seconds,
            target_rate=target_rate,
            on_error=self._on_capture_error,
        )
        self.state = SessionState.IDLE
        self.error: Optional[LegalEaseError] = None
        self.forwarded = 0
        self.dropped = 0
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._worker: Optional[asyncio.Task] = None
        self._done = asyncio.Event()

    async def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        await self.relay.open()
        try:
            self.capture.start()
        except LegalEaseError:
            await self.relay.close()
            raise
        self.state = SessionState.CAPTURING
        self._worker = asyncio.create_task(self._consume())
        logger.info("Capture session started", extra={"meeting_id": self.meeting_id})

    # Called on the capture timer thread
    def _on_segment(self, segment: AudioSegment) -> None:
        if self._loop is None:
            return
        self._loop.call_soon_threadsafe(_queue_put_safe, self._queue, segment)

    def _on_capture_error(self, exc: Exception) -> None:
        if self._loop is None:
            return
        self._loop.call_soon_threadsafe(self._fail, exc)

    def _fail(self, exc: Exception) -> None:
        self.error = exc if isinstance(exc, LegalEaseError) else LegalEaseError(str(exc))
        if isinstance(exc, PermissionDenied):
            logger.error("Audio permission denied; ending session", extra={"meeting_id": self.meeting_id})
        else:
            logger.error("Audio device failed; ending session", extra={"meeting_id": self.meeting_id, "error": str(exc)})
        self._done.set()

    async def _consume(self) -> None:
        while True:
            segment = await self._queue.get()
            if segment is None:
                break
            await self.process_segment(segment)

    async def process_segment(self, segment: AudioSegment) -> Optional[str]:
        """Transcribe one segment and forward when the buffer says so."""
        if not self.buffer.is_active:
            return None
        self.state = SessionState.TRANSCRIBING
        try:
            fragment = await self.transcriber.transcribe(segment)
        except TranscriptionFailed as exc:
            logger.warning("Segment transcription failed", extra={"status": exc.status, "error": str(exc)})
            return None
        except ConfigurationError as exc:
            logger.error("Transcription not configured", extra={"error": str(exc)})
            return None
        # Stopped while the request was in flight
        if not self.buffer.is_active:
            logger.debug("Ignoring late fragment")
            return None
        self.state = SessionState.BUFFERING
        text = self.buffer.add_fragment(fragment.text)
        if text is None:
            return None
        await self.forward(text)
        return text

    async def forward(self, text: str) -> bool:
        self.state = SessionState.RELAYING
        payload = RelayPayload(text=text, meetingId=self.meeting_id)
        try:
            delivered = await self.relay.send(payload)
        except RelayUnavailable as exc:
            logger.warning("Relay write failed", extra={"error": str(exc)})
            delivered = False
        if delivered:
            self.forwarded += 1
        else:
            self.dropped += 1
        return delivered

    async def wait(self) -> None:
        await self._done.wait()

    async def stop(self) -> None:
        if self.state in (SessionState.DISCARDED, SessionState.IDLE):
            return
        self.capture.stop()
        self.buffer.discard()
        while not self._queue.empty():
            self._queue.get_nowait()
        _queue_put_safe(self._queue, None)
        if self._worker is not None:
            await self._worker
            self._worker = None
        await self.relay.close()
        self.state = SessionState.DISCARDED
        self._done.set()
        logger.info(
            "Capture session stopped",
            extra={"meeting_id": self.meeting_id, "forwarded": self.forwarded, "dropped": self.dropped},
        )
