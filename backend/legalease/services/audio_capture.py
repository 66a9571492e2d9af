from __future__ import annotations

import io
import threading
import time
import wave
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Sequence

import numpy as np
import logging
import warnings
import soxr

try:
    import sounddevice as sd
except Exception:  # pragma: no cover - allow import on systems without PortAudio
    sd = None

try:
    import soundcard as sc  # loopback capture of tab/system audio
except Exception:
    sc = None

from legalease.errors import DeviceUnavailable, PermissionDenied


logger = logging.getLogger("legalease.audio")

DEFAULT_BLOCKSIZE = 4096  # frames; larger buffers reduce discontinuity
WAV_MIME = "audio/wav"
if sc is not None:
    try:
        warnings.filterwarnings("ignore", category=sc.SoundcardRuntimeWarning)  # type: ignore[attr-defined]
    except Exception:
        pass


@dataclass
class AudioSegment:
    data: bytes
    mime_type: str
    captured_at: float

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class ConstraintProfile:
    name: str
    samplerate: Optional[int]  # None: device default
    channels: Optional[int]  # None: device default
    blocksize: int = DEFAULT_BLOCKSIZE


# Tried in order, highest quality first
CONSTRAINT_PROFILES: Sequence[ConstraintProfile] = (
    ConstraintProfile("high", samplerate=16000, channels=1),
    ConstraintProfile("standard", samplerate=None, channels=1),
    ConstraintProfile("basic", samplerate=None, channels=None, blocksize=0),
)

FramesCallback = Callable[[np.ndarray], None]
ClosedCallback = Callable[[Optional[BaseException]], None]


class AudioSource(Protocol):
    def open(self, profile: ConstraintProfile, on_frames: FramesCallback, on_closed: ClosedCallback) -> int:
        """Start delivering float32 mono frames. Returns the source sample rate."""

    def close(self) -> None:
        ...


def _to_mono_float32(data: np.ndarray) -> np.ndarray:
    data_f32 = np.asarray(data, dtype=np.float32)
    if data_f32.ndim == 2:
        data_f32 = data_f32.mean(axis=1) if data_f32.shape[1] > 1 else data_f32[:, 0]
    return data_f32


def _to_int16(data: np.ndarray) -> np.ndarray:
    return np.clip(data * 32767.0, -32768, 32767).astype(np.int16)


def encode_wav(frames: np.ndarray, samplerate: int) -> bytes:
    """Encode float32 mono frames in [-1, 1] as a 16-bit PCM WAV blob."""
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)  # int16
        wf.setframerate(samplerate)
        wf.writeframes(_to_int16(frames).tobytes())
    return buf.getvalue()


def classify_capture_error(exc: BaseException) -> Exception:
    msg = str(exc).lower()
    if any(k in msg for k in ("permission", "denied", "not permitted", "not allowed")):
        return PermissionDenied(str(exc) or "Microphone access denied")
    return DeviceUnavailable(str(exc) or "Audio device unavailable")


class MicrophoneSource:
    """Microphone input through sounddevice."""

    def __init__(self, device: Optional[str] = None) -> None:
        self.device = device
        self._stream = None

    def open(self, profile: ConstraintProfile, on_frames: FramesCallback, on_closed: ClosedCallback) -> int:
        if sd is None:
            raise DeviceUnavailable("sounddevice not available")
        if self.device is not None:
            dev = int(self.device)
        else:
            dev = sd.default.device[0] if sd.default.device is not None else None
        info = sd.query_devices(dev, "input") if dev is not None and dev != -1 else sd.query_devices(kind="input")
        rate = profile.samplerate or int(info.get("default_samplerate", 48000))
        channels = profile.channels or max(1, min(2, int(info.get("max_input_channels", 1)) or 1))

        def _cb(indata, frames, time_info, status):  # noqa: ANN001 - external callback signature
            if status:
                logger.debug("Input stream status: %s", status)
            on_frames(_to_mono_float32(indata))

        def _finished() -> None:
            on_closed(None)

        kwargs = dict(channels=channels, dtype="float32", callback=_cb, finished_callback=_finished)
        if dev is not None and dev != -1:
            kwargs["device"] = dev
        if profile.samplerate is not None or profile.channels is not None:
            kwargs["samplerate"] = rate
        if profile.blocksize:
            kwargs["blocksize"] = profile.blocksize
        stream = sd.InputStream(**kwargs)
        stream.start()
        self._stream = stream
        logger.info(
            "Mic capture started",
            extra={"device": info.get("name"), "rate": rate, "channels": channels, "profile": profile.name},
        )
        return int(stream.samplerate or rate)

    def close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.stop()
            stream.close()


class LoopbackSource:
    """Tab/system audio through a soundcard loopback microphone."""

    def __init__(self, speaker_name: Optional[str] = None) -> None:
        self.speaker_name = speaker_name
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    def _find_microphone(self):
        if sc is None:
            raise DeviceUnavailable("soundcard not available")
        name = self.speaker_name or sc.default_speaker().name
        return sc.get_microphone(str(name), include_loopback=True)

    def open(self, profile: ConstraintProfile, on_frames: FramesCallback, on_closed: ClosedCallback) -> int:
        mic = self._find_microphone()
        rate = profile.samplerate or 48000
        blocksize = profile.blocksize or DEFAULT_BLOCKSIZE
        self._stop_event.clear()

        def _loop() -> None:
            error: Optional[BaseException] = None
            try:
                with mic.recorder(samplerate=rate, blocksize=blocksize) as rec:
                    while not self._stop_event.is_set():
                        on_frames(_to_mono_float32(rec.record(blocksize)))
            except Exception as exc:
                error = exc
            on_closed(error)

        self._thread = threading.Thread(target=_loop, daemon=True)
        self._thread.start()
        logger.info("Loopback capture started", extra={"device": getattr(mic, "name", None), "rate": rate})
        return rate

    def close(self) -> None:
        self._stop_event.set()
        t, self._thread = self._thread, None
        if t is not None and t is not threading.current_thread():
            t.join(timeout=1.0)


class ChunkedAudioCapture:
    """Records a live stream in fixed-duration segments.

    Every ``chunk_seconds`` the frames captured since the last boundary are
    encoded as one WAV blob and handed to ``on_data_available``. Empty
    intervals emit nothing. Frames are resampled to ``target_rate``.
    """

    def __init__(
        self,
        source_factory: Callable[[], AudioSource],
        on_data_available: Callable[[AudioSegment], None],
        chunk_seconds: float = 5.0,
        target_rate: int = 16000,
        on_error: Optional[Callable[[Exception], None]] = None,
        profiles: Sequence[ConstraintProfile] = CONSTRAINT_PROFILES,
    ) -> None:
        self.source_factory = source_factory
        self.on_data_available = on_data_available
        self.chunk_seconds = chunk_seconds
        self.target_rate = target_rate
        self.on_error = on_error
        self.profiles = profiles

        self._lock = threading.Lock()
        self._frames: List[np.ndarray] = []
        self._source: Optional[AudioSource] = None
        self._source_rate: Optional[int] = None
        self._timer: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._active = False
        self.profile: Optional[ConstraintProfile] = None

    @property
    def is_active(self) -> bool:
        return self._active

    def start(self) -> bool:
        if self._active:
            return False

        last_error: Optional[BaseException] = None
        for profile in self.profiles:
            source = self.source_factory()
            try:
                rate = source.open(profile, self._on_frames, self._on_source_closed)
            except Exception as exc:
                last_error = exc
                logger.warning("Capture profile failed", extra={"profile": profile.name, "error": str(exc)})
                try:
                    source.close()
                except Exception:
                    pass
                continue
            self._source = source
            self._source_rate = int(rate)
            self.profile = profile
            break
        else:
            if isinstance(last_error, (PermissionDenied, DeviceUnavailable)):
                raise last_error
            raise classify_capture_error(last_error or RuntimeError("no audio source"))

        with self._lock:
            self._frames = []
        self._stop_event.clear()
        self._active = True
        self._timer = threading.Thread(target=self._run_timer, name="chunk-timer", daemon=True)
        self._timer.start()
        logger.info("Chunked capture started", extra={"profile": self.profile.name, "chunk_seconds": self.chunk_seconds})
        return True

    def stop(self) -> None:
        if not self._active:
            return
        self._active = False
        self._stop_event.set()
        timer, self._timer = self._timer, None
        if timer is not None and timer is not threading.current_thread():
            timer.join(timeout=self.chunk_seconds + 1.0)
        source, self._source = self._source, None
        if source is not None:
            try:
                source.close()
            except Exception:
                logger.exception("Failed to close audio source")
        # In-flight audio is discarded, not emitted
        with self._lock:
            self._frames = []
        logger.info("Chunked capture stopped")

    def flush_segment(self) -> Optional[AudioSegment]:
        """Cut a segment boundary now and emit the captured interval."""
        with self._lock:
            frames, self._frames = self._frames, []
        if not frames or not self._active:
            return None
        data = np.concatenate(frames)
        if data.size == 0:
            return None
        segment = AudioSegment(
            data=encode_wav(data, self.target_rate),
            mime_type=WAV_MIME,
            captured_at=time.time(),
        )
        try:
            self.on_data_available(segment)
        except Exception:
            logger.exception("onDataAvailable callback failed")
        return segment

    def _run_timer(self) -> None:
        while not self._stop_event.wait(self.chunk_seconds):
            self.flush_segment()

    def _on_frames(self, frames: np.ndarray) -> None:
        if not self._active:
            return
        if self._source_rate and self._source_rate != self.target_rate:
            try:
                frames = soxr.resample(frames, self._source_rate, self.target_rate)
            except Exception:
                logger.debug("Resample failed; keeping source rate frames")
        with self._lock:
            self._frames.append(np.asarray(frames, dtype=np.float32))

    def _on_source_closed(self, error: Optional[BaseException]) -> None:
        if not self._active:
            return
        exc = classify_capture_error(error) if error is not None else DeviceUnavailable("Audio stream ended")
        logger.error("Audio device failed during capture", extra={"error": str(exc)})
        self.stop()
        if self.on_error is not None:
            self.on_error(exc)


def source_factory_for(kind: str, device: Optional[str] = None) -> Callable[[], AudioSource]:
    if kind == "loopback":
        return lambda: LoopbackSource(device)
    return lambda: MicrophoneSource(device)


def list_devices() -> dict:
    inputs: List[dict] = []
    outputs: List[dict] = []
    if sd is None:
        return {"inputs": inputs, "outputs": outputs}
    try:
        devices = sd.query_devices()
        default_input = sd.default.device[0] if sd.default.device is not None else None
        default_output = sd.default.device[1] if sd.default.device is not None else None
        for idx, dev in enumerate(devices):
            name = dev.get("name", f"Device {idx}")
            if dev.get("max_input_channels", 0) > 0:
                inputs.append({"id": str(idx), "name": name, "kind": "input", "is_default": idx == default_input})
            if dev.get("max_output_channels", 0) > 0:
                outputs.append({"id": str(idx), "name": name, "kind": "output", "is_default": idx == default_output})
    except Exception:
        logger.warning("Device query failed", exc_info=True)
    return {"inputs": inputs, "outputs": outputs}
