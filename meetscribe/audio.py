"""Audio sources that turn an input device or file into timed chunks."""

from __future__ import annotations

import asyncio
import io
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import AsyncIterator, Callable, List, Optional, Protocol

import numpy as np
import soundfile as sf

from .errors import AcquisitionError
from .models import AudioChunk, CaptureConfig

FrameListener = Callable[[np.ndarray], None]

_FORMATS = {
    "wav": ("WAV", "PCM_16", "audio/wav"),
    "flac": ("FLAC", "PCM_16", "audio/flac"),
    "ogg": ("OGG", "VORBIS", "audio/ogg"),
}

_FLUSH = object()


class AudioSource(Protocol):
    """Capability interface for anything that produces audio chunks."""

    async def start(self, config: CaptureConfig) -> AsyncIterator[AudioChunk]:
        """Acquire the input and return the chunk stream."""

    async def stop(self) -> None:
        """Flush any partial buffer as a final chunk and release the input."""


def mime_type_for(fmt: str) -> str:
    try:
        return _FORMATS[fmt.lower()][2]
    except KeyError as exc:
        raise ValueError(f"Unsupported audio format '{fmt}' (expected one of {sorted(_FORMATS)})") from exc


def encode_pcm(frames: np.ndarray, sample_rate: int, fmt: str = "wav") -> bytes:
    """Encode float32 frames into the requested container."""

    try:
        container, subtype, _mime = _FORMATS[fmt.lower()]
    except KeyError as exc:
        raise ValueError(f"Unsupported audio format '{fmt}'") from exc
    buffer = io.BytesIO()
    sf.write(buffer, frames, sample_rate, format=container, subtype=subtype)
    return buffer.getvalue()


def conform_frames(frames: np.ndarray, source_rate: int, config: CaptureConfig) -> np.ndarray:
    """Downmix or widen to the capture channel count and resample linearly."""

    frames = np.asarray(frames, dtype=np.float32)
    if frames.ndim == 1:
        frames = frames.reshape(-1, 1)
    channels = frames.shape[1]
    if channels != config.channels:
        if config.channels == 1:
            frames = frames.mean(axis=1, keepdims=True)
        else:
            frames = frames[:, np.arange(config.channels) % channels]
    if source_rate == config.sample_rate or not len(frames):
        return frames

    dst_len = max(1, int(round(len(frames) * config.sample_rate / source_rate)))
    src_positions = np.linspace(0.0, 1.0, num=len(frames), endpoint=False)
    dst_positions = np.linspace(0.0, 1.0, num=dst_len, endpoint=False)
    resampled = [np.interp(dst_positions, src_positions, frames[:, c]) for c in range(frames.shape[1])]
    return np.stack(resampled, axis=1).astype(np.float32)


def list_input_devices() -> List[dict]:
    sd = _load_sounddevice()
    devices = []
    for index, device in enumerate(sd.query_devices()):
        if device.get("max_input_channels", 0) <= 0:
            continue
        devices.append(
            {
                "index": index,
                "name": device.get("name", f"device {index}"),
                "channels": device.get("max_input_channels", 0),
                "default_samplerate": device.get("default_samplerate"),
            }
        )
    return devices


def _load_sounddevice():
    try:
        import sounddevice as sd  # type: ignore
    except Exception as exc:  # pragma: no cover - PortAudio missing on host
        raise AcquisitionError(
            "The `sounddevice` package (and a PortAudio library) is required for recording."
        ) from exc
    return sd


class _ChunkBuffer:
    """Accumulates frames until a full chunk is available."""

    def __init__(self, config: CaptureConfig) -> None:
        self._config = config
        self._frames_per_chunk = max(1, int(config.sample_rate * config.chunk_seconds))
        self._mime = mime_type_for(config.format)
        self._pending: List[np.ndarray] = []
        self._buffered = 0
        self._sequence = 0

    def add(self, frames: np.ndarray) -> List[AudioChunk]:
        self._pending.append(frames)
        self._buffered += len(frames)
        chunks = []
        while self._buffered >= self._frames_per_chunk:
            data = np.concatenate(self._pending, axis=0)
            head, tail = data[: self._frames_per_chunk], data[self._frames_per_chunk :]
            self._pending = [tail] if len(tail) else []
            self._buffered = len(tail)
            chunks.append(self._make_chunk(head))
        return chunks

    def flush(self) -> Optional[AudioChunk]:
        if not self._buffered:
            return None
        data = np.concatenate(self._pending, axis=0)
        self._pending = []
        self._buffered = 0
        return self._make_chunk(data)

    def _make_chunk(self, frames: np.ndarray) -> AudioChunk:
        self._sequence += 1
        return AudioChunk(
            data=encode_pcm(frames, self._config.sample_rate, self._config.format),
            captured_at=datetime.now(),
            sequence=self._sequence,
            mime_type=self._mime,
        )


class MicrophoneSource:
    """Stream the default (or configured) microphone as timed chunks.

    PortAudio delivers frames on its own thread; they are handed to the event
    loop with ``call_soon_threadsafe`` and chunked there, so nothing else in
    the pipeline runs off the loop.
    """

    def __init__(self, frame_listener: Optional[FrameListener] = None) -> None:
        self._frame_listener = frame_listener
        self._stream = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None
        self._stop_requested = False
        self.release_count = 0

    @property
    def active(self) -> bool:
        return self._stream is not None

    async def start(self, config: CaptureConfig) -> AsyncIterator[AudioChunk]:
        if self._stream is not None:
            raise AcquisitionError("The input device is already in use by this session.")
        sd = _load_sounddevice()
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._stop_requested = False
        logging.debug(
            "Capture hints: echo_cancellation=%s noise_suppression=%s auto_gain_control=%s",
            config.echo_cancellation,
            config.noise_suppression,
            config.auto_gain_control,
        )
        stream = None
        try:
            stream = sd.InputStream(
                samplerate=config.sample_rate,
                channels=config.channels,
                dtype="float32",
                device=config.device,
                callback=self._callback,
            )
            stream.start()
        except Exception as exc:
            if stream is not None:
                try:
                    stream.close()
                except Exception as close_exc:
                    logging.warning("Failed to close input stream after open error: %s", close_exc)
            raise AcquisitionError(f"Could not open input device: {exc}") from exc
        self._stream = stream
        logging.info("Microphone opened at %d Hz, %d channel(s)", config.sample_rate, config.channels)
        return self._chunks(config)

    async def stop(self) -> None:
        if self._stop_requested:
            return
        self._stop_requested = True
        self._release()
        if self._queue is not None and self._loop is not None:
            # frames handed over by the final callbacks are already scheduled; flush after them
            self._loop.call_soon(self._queue.put_nowait, _FLUSH)

    def _callback(self, indata, frames, time_info, status) -> None:  # type: ignore[override]
        if status:
            logging.debug("Recorder status: %s", status)
        loop, queue = self._loop, self._queue
        if loop is None or queue is None:
            return
        try:
            loop.call_soon_threadsafe(queue.put_nowait, indata.copy())
        except RuntimeError:
            logging.debug("Event loop closed; dropping %d frames", frames)

    async def _chunks(self, config: CaptureConfig) -> AsyncIterator[AudioChunk]:
        buffer = _ChunkBuffer(config)
        queue = self._queue
        try:
            while True:
                item = await queue.get()
                if item is _FLUSH:
                    final = buffer.flush()
                    if final is not None:
                        logging.debug("Flushing final partial chunk of %d bytes", final.size)
                        yield final
                    return
                self._notify_listener(item)
                for chunk in buffer.add(item):
                    yield chunk
        finally:
            self._release()

    def _notify_listener(self, frames: np.ndarray) -> None:
        if self._frame_listener is None:
            return
        try:
            self._frame_listener(frames)
        except Exception as exc:
            logging.debug("Frame listener error: %s", exc)

    def _release(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except Exception as exc:
            logging.warning("Failed to close input stream cleanly: %s", exc)
        self.release_count += 1
        logging.info("Microphone released")


class FileSource:
    """Replay an audio file as if it were captured live."""

    def __init__(
        self,
        path: Path,
        *,
        realtime: bool = False,
        frame_listener: Optional[FrameListener] = None,
    ) -> None:
        self.path = Path(path)
        self.realtime = realtime
        self._frame_listener = frame_listener
        self._file: Optional[sf.SoundFile] = None
        self._stop_event: Optional[asyncio.Event] = None
        self.release_count = 0

    @property
    def active(self) -> bool:
        return self._file is not None

    async def start(self, config: CaptureConfig) -> AsyncIterator[AudioChunk]:
        if self._file is not None:
            raise AcquisitionError(f"{self.path} is already being read.")
        try:
            handle = sf.SoundFile(str(self.path))
        except Exception as exc:
            raise AcquisitionError(f"Could not open audio file {self.path}: {exc}") from exc
        self._file = handle
        self._stop_event = asyncio.Event()
        return self._chunks(config, handle)

    async def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()

    async def _chunks(self, config: CaptureConfig, handle: sf.SoundFile) -> AsyncIterator[AudioChunk]:
        if handle.samplerate != config.sample_rate or handle.channels != config.channels:
            logging.info(
                "Converting %s from %d Hz, %d channel(s) to %d Hz, %d channel(s)",
                self.path,
                handle.samplerate,
                handle.channels,
                config.sample_rate,
                config.channels,
            )
        sample_rate = handle.samplerate
        frames_per_chunk = max(1, int(sample_rate * config.chunk_seconds))
        mime = mime_type_for(config.format)
        started = datetime.now()
        offset = 0
        sequence = 0
        try:
            while not self._stop_event.is_set():
                frames = handle.read(frames_per_chunk, dtype="float32", always_2d=True)
                if not len(frames):
                    return
                if self._frame_listener is not None:
                    try:
                        self._frame_listener(frames)
                    except Exception as exc:
                        logging.debug("Frame listener error: %s", exc)
                sequence += 1
                yield AudioChunk(
                    data=encode_pcm(conform_frames(frames, sample_rate, config), config.sample_rate, config.format),
                    captured_at=started + timedelta(seconds=offset / sample_rate),
                    sequence=sequence,
                    mime_type=mime,
                )
                offset += len(frames)
                if self.realtime:
                    try:
                        await asyncio.wait_for(self._stop_event.wait(), timeout=config.chunk_seconds)
                    except asyncio.TimeoutError:
                        pass
                else:
                    await asyncio.sleep(0)
        finally:
            self._release()

    def _release(self) -> None:
        handle, self._file = self._file, None
        if handle is None:
            return
        handle.close()
        self.release_count += 1
