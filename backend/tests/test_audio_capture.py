"""Test chunked capture against a fake audio source."""

import io
import wave

import numpy as np
import pytest

from legalease.errors import DeviceUnavailable, PermissionDenied
from legalease.services.audio_capture import (
    ChunkedAudioCapture,
    classify_capture_error,
    encode_wav,
)


class FakeSource:
    def __init__(self, fail_profiles=(), error=None, rate=16000):
        self.fail_profiles = set(fail_profiles)
        self.error = error or OSError("Invalid sample rate")
        self.rate = rate
        self.profile = None
        self.closed = False
        self.on_frames = None
        self.on_closed = None

    def open(self, profile, on_frames, on_closed):
        self.profile = profile
        if profile.name in self.fail_profiles or "*" in self.fail_profiles:
            raise self.error
        self.on_frames = on_frames
        self.on_closed = on_closed
        return self.rate

    def close(self):
        self.closed = True


def make_capture(source, segments, errors=None):
    return ChunkedAudioCapture(
        lambda: source,
        on_data_available=segments.append,
        chunk_seconds=60.0,
        on_error=(errors.append if errors is not None else None),
    )


def wav_frames(blob):
    with wave.open(io.BytesIO(blob), "rb") as wf:
        assert wf.getnchannels() == 1
        assert wf.getsampwidth() == 2
        assert wf.getframerate() == 16000
        return wf.getnframes()


def test_each_boundary_emits_one_segment():
    source, segments = FakeSource(), []
    capture = make_capture(source, segments)
    assert capture.start() is True
    try:
        source.on_frames(np.zeros(1600, dtype=np.float32))
        source.on_frames(np.zeros(1600, dtype=np.float32))
        segment = capture.flush_segment()
        assert segment is not None
        assert segment.mime_type == "audio/wav"
        assert wav_frames(segment.data) == 3200
        assert segments == [segment]
        # Nothing captured since the last boundary
        assert capture.flush_segment() is None
        assert len(segments) == 1
    finally:
        capture.stop()


def test_start_twice_returns_false():
    source, segments = FakeSource(), []
    capture = make_capture(source, segments)
    assert capture.start() is True
    assert capture.start() is False
    capture.stop()


def test_falls_back_to_next_profile():
    source, segments = FakeSource(fail_profiles={"high"}), []
    capture = make_capture(source, segments)
    assert capture.start() is True
    assert capture.profile.name == "standard"
    capture.stop()


def test_all_profiles_failing_raises_device_unavailable():
    source, segments = FakeSource(fail_profiles={"*"}), []
    capture = make_capture(source, segments)
    with pytest.raises(DeviceUnavailable):
        capture.start()
    assert not capture.is_active


def test_permission_error_is_classified():
    source = FakeSource(fail_profiles={"*"}, error=OSError("Permission denied by user"))
    capture = make_capture(source, [])
    with pytest.raises(PermissionDenied):
        capture.start()


def test_stop_is_idempotent_and_discards_audio():
    source, segments = FakeSource(), []
    capture = make_capture(source, segments)
    capture.start()
    source.on_frames(np.ones(800, dtype=np.float32) * 0.1)
    capture.stop()
    capture.stop()
    assert source.closed
    assert segments == []
    assert capture.flush_segment() is None


def test_device_loss_stops_capture_and_reports():
    source, segments, errors = FakeSource(), [], []
    capture = make_capture(source, segments, errors)
    capture.start()
    source.on_closed(OSError("device unplugged"))
    assert not capture.is_active
    assert len(errors) == 1
    assert isinstance(errors[0], DeviceUnavailable)


def test_source_rate_is_resampled():
    source, segments = FakeSource(rate=48000), []
    capture = make_capture(source, segments)
    capture.start()
    try:
        source.on_frames(np.zeros(4800, dtype=np.float32))
        segment = capture.flush_segment()
        assert abs(wav_frames(segment.data) - 1600) <= 16
    finally:
        capture.stop()


def test_encode_wav_clips_samples():
    blob = encode_wav(np.array([2.0, -2.0, 0.0], dtype=np.float32), 16000)
    with wave.open(io.BytesIO(blob), "rb") as wf:
        samples = np.frombuffer(wf.readframes(3), dtype=np.int16)
    assert samples.tolist() == [32767, -32768, 0]


def test_classify_capture_error():
    assert isinstance(classify_capture_error(RuntimeError("Access denied")), PermissionDenied)
    assert isinstance(classify_capture_error(RuntimeError("no such device")), DeviceUnavailable)
