"""Test the capture -> transcription -> buffer -> relay wiring."""

import asyncio

import numpy as np
import pytest

from legalease.errors import PermissionDenied, RelayUnavailable, TranscriptionFailed
from legalease.services.audio_capture import AudioSegment
from legalease.services.capture_session import CaptureSession, meeting_id_from_url
from legalease.services.relay import RelayChannel, RelayState
from legalease.services.synchronizer import SessionState
from legalease.services.transcription import TranscriptFragment


class FakeSource:
    def __init__(self, error=None):
        self.error = error
        self.on_frames = None
        self.on_closed = None

    def open(self, profile, on_frames, on_closed):
        if self.error is not None:
            raise self.error
        self.on_frames = on_frames
        self.on_closed = on_closed
        return 16000

    def close(self):
        pass


class FakeRelay(RelayChannel):
    def __init__(self, error=None):
        super().__init__()
        self.sent = []
        self.error = error
        self.closed = False

    async def open(self):
        self._set_state(RelayState.CONNECTED)

    async def send(self, payload):
        if self.error is not None:
            raise self.error
        self.sent.append(payload)
        return True

    async def close(self):
        self.closed = True
        self._set_state(RelayState.DISCONNECTED)


def make_session(source, transcriber, relay, threshold=10):
    return CaptureSession(
        lambda: source,
        transcriber,
        relay,
        meeting_id="abc-defg-hij",
        chunk_seconds=60.0,
        forward_threshold=threshold,
    )


def segment():
    return AudioSegment(data=b"wav", mime_type="audio/wav", captured_at=0.0)


@pytest.mark.parametrize(
    "url, expected",
    [
        ("https://meet.google.com/abc-defg-hij", "abc-defg-hij"),
        ("https://meet.google.com/abc-defg-hij?authuser=0", "abc-defg-hij"),
        ("https://meet.google.com/", "unknown-meeting"),
        (None, "unknown-meeting"),
    ],
)
def test_meeting_id_from_url(url, expected):
    assert meeting_id_from_url(url) == expected


def test_two_segments_forward_once(transcriber):
    transcriber.texts = [
        "Hello this is a test of the assistant",
        "please review the indemnification clause",
    ]
    source, relay = FakeSource(), FakeRelay()

    async def scenario():
        session = make_session(source, transcriber, relay)
        await session.start()
        for _ in range(2):
            source.on_frames(np.zeros(1600, dtype=np.float32))
            session.capture.flush_segment()
            await asyncio.sleep(0.02)
        await session.stop()
        return session

    session = asyncio.run(scenario())
    assert len(transcriber.segments) == 2
    assert len(relay.sent) == 1
    payload = relay.sent[0]
    assert len(payload.text.split()) == 13
    assert payload.meetingId == "abc-defg-hij"
    assert session.forwarded == 1
    assert session.state == SessionState.DISCARDED
    assert relay.closed


def test_failed_segment_is_skipped(transcriber):
    relay = FakeRelay()
    session = make_session(FakeSource(), transcriber, relay, threshold=1)

    async def scenario():
        transcriber.error = TranscriptionFailed(500, {"error": "boom"})
        first = await session.process_segment(segment())
        transcriber.error = None
        transcriber.texts = ["the next segment works"]
        second = await session.process_segment(segment())
        return first, second

    first, second = asyncio.run(scenario())
    assert first is None
    assert second == "the next segment works"
    assert [p.text for p in relay.sent] == ["the next segment works"]


def test_late_fragment_after_stop_is_ignored():
    release = None

    class SlowTranscriber:
        async def transcribe(self, seg):
            await release.wait()
            return TranscriptFragment(text="words that arrive too late for anyone")

    relay = FakeRelay()
    session = make_session(FakeSource(), SlowTranscriber(), relay, threshold=1)

    async def scenario():
        nonlocal release
        release = asyncio.Event()
        task = asyncio.create_task(session.process_segment(segment()))
        await asyncio.sleep(0)
        session.buffer.discard()
        release.set()
        return await task

    assert asyncio.run(scenario()) is None
    assert relay.sent == []


def test_relay_failure_is_counted_not_raised(transcriber):
    relay = FakeRelay(error=RelayUnavailable("HTTP 500"))
    session = make_session(FakeSource(), transcriber, relay, threshold=1)
    transcriber.texts = ["still capturing"]
    text = asyncio.run(session.process_segment(segment()))
    assert text == "still capturing"
    assert session.dropped == 1
    assert session.forwarded == 0


def test_permission_denied_at_start(transcriber):
    relay = FakeRelay()
    session = make_session(FakeSource(error=OSError("Permission denied")), transcriber, relay)
    with pytest.raises(PermissionDenied):
        asyncio.run(session.start())
    assert relay.closed


def test_device_failure_ends_session(transcriber):
    source, relay = FakeSource(), FakeRelay()

    async def scenario():
        session = make_session(source, transcriber, relay)
        await session.start()
        source.on_closed(OSError("access denied by system"))
        await asyncio.wait_for(session.wait(), timeout=1.0)
        await session.stop()
        return session

    session = asyncio.run(scenario())
    assert isinstance(session.error, PermissionDenied)
    assert not session.capture.is_active


def test_capture_uses_configured_sample_rate(transcriber):
    session = CaptureSession(lambda: FakeSource(), transcriber, FakeRelay(), chunk_seconds=60.0, target_rate=8000)
    assert session.capture.target_rate == 8000
