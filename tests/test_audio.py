import asyncio
import io
from types import SimpleNamespace

import numpy as np
import pytest
import soundfile as sf

from meetscribe import audio
from meetscribe.audio import FileSource, MicrophoneSource, encode_pcm, mime_type_for
from meetscribe.errors import AcquisitionError
from meetscribe.models import CaptureConfig


class FakeStream:
    instances = []

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.callback = kwargs["callback"]
        self.started = False
        self.closed = 0
        FakeStream.instances.append(self)

    def start(self):
        self.started = True

    def stop(self):
        self.started = False

    def close(self):
        self.closed += 1


class FailingStream:
    def __init__(self, **kwargs):
        raise RuntimeError("Error querying device -1")


class UnstartableStream(FakeStream):
    def start(self):
        raise RuntimeError("Device unavailable")


@pytest.fixture
def fake_sounddevice(monkeypatch):
    FakeStream.instances = []
    module = SimpleNamespace(InputStream=FakeStream)
    monkeypatch.setattr(audio, "_load_sounddevice", lambda: module)
    return module


def test_encode_pcm_produces_readable_wav():
    frames = np.zeros((1600, 1), dtype=np.float32)

    data = encode_pcm(frames, 16000, "wav")

    decoded, rate = sf.read(io.BytesIO(data))
    assert rate == 16000
    assert len(decoded) == 1600


def test_unknown_format_is_rejected():
    with pytest.raises(ValueError):
        mime_type_for("mp3")


@pytest.mark.asyncio
async def test_microphone_chunks_at_boundaries_and_flushes_on_stop(fake_sounddevice):
    heard = []
    source = MicrophoneSource(frame_listener=lambda frames: heard.append(len(frames)))
    config = CaptureConfig(sample_rate=1000, chunk_seconds=0.5)

    stream = await source.start(config)
    fake = FakeStream.instances[0]
    assert fake.started
    assert fake.kwargs["samplerate"] == 1000
    assert fake.kwargs["channels"] == 1

    fake.callback(np.zeros((800, 1), dtype=np.float32), 800, None, None)
    first = await stream.__anext__()
    await source.stop()
    rest = [chunk async for chunk in stream]

    assert first.sequence == 1
    assert len(sf.read(io.BytesIO(first.data))[0]) == 500
    assert [chunk.sequence for chunk in rest] == [2]
    assert len(sf.read(io.BytesIO(rest[0].data))[0]) == 300
    assert heard == [800]
    assert fake.closed == 1
    assert source.release_count == 1
    assert not source.active


@pytest.mark.asyncio
async def test_microphone_stop_without_audio_yields_nothing(fake_sounddevice):
    source = MicrophoneSource()
    stream = await source.start(CaptureConfig())

    await source.stop()
    await source.stop()
    chunks = [chunk async for chunk in stream]

    assert chunks == []
    assert source.release_count == 1


@pytest.mark.asyncio
async def test_microphone_released_when_consumer_closes_stream(fake_sounddevice):
    source = MicrophoneSource()
    stream = await source.start(CaptureConfig(sample_rate=1000, chunk_seconds=0.1))
    FakeStream.instances[0].callback(np.zeros((100, 1), dtype=np.float32), 100, None, None)

    await stream.__anext__()
    await stream.aclose()

    assert source.release_count == 1
    assert FakeStream.instances[0].closed == 1


@pytest.mark.asyncio
async def test_microphone_open_failure_raises_acquisition_error(monkeypatch):
    monkeypatch.setattr(audio, "_load_sounddevice", lambda: SimpleNamespace(InputStream=FailingStream))
    source = MicrophoneSource()

    with pytest.raises(AcquisitionError):
        await source.start(CaptureConfig())

    assert not source.active
    assert source.release_count == 0


@pytest.mark.asyncio
async def test_microphone_start_failure_closes_opened_stream(monkeypatch):
    FakeStream.instances = []
    monkeypatch.setattr(audio, "_load_sounddevice", lambda: SimpleNamespace(InputStream=UnstartableStream))
    source = MicrophoneSource()

    with pytest.raises(AcquisitionError, match="Device unavailable"):
        await source.start(CaptureConfig())

    assert FakeStream.instances[0].closed == 1
    assert not source.active


@pytest.mark.asyncio
async def test_microphone_flushes_frames_delivered_just_before_stop(fake_sounddevice):
    source = MicrophoneSource()
    stream = await source.start(CaptureConfig(sample_rate=1000, chunk_seconds=0.5))

    FakeStream.instances[0].callback(np.zeros((300, 1), dtype=np.float32), 300, None, None)
    await source.stop()
    chunks = [chunk async for chunk in stream]

    assert [chunk.sequence for chunk in chunks] == [1]
    assert len(sf.read(io.BytesIO(chunks[0].data))[0]) == 300
    assert source.release_count == 1


@pytest.mark.asyncio
async def test_file_source_yields_fixed_chunks_with_capture_offsets(tmp_path):
    path = tmp_path / "meeting.wav"
    sf.write(str(path), np.zeros(8000 * 5 // 2, dtype=np.float32), 8000)
    source = FileSource(path)

    stream = await source.start(CaptureConfig(sample_rate=8000, chunk_seconds=1.0))
    chunks = [chunk async for chunk in stream]

    assert [chunk.sequence for chunk in chunks] == [1, 2, 3]
    assert (chunks[1].captured_at - chunks[0].captured_at).total_seconds() == pytest.approx(1.0)
    assert len(sf.read(io.BytesIO(chunks[-1].data))[0]) == 4000
    assert source.release_count == 1


@pytest.mark.asyncio
async def test_file_source_stop_ends_realtime_stream(tmp_path):
    path = tmp_path / "long.wav"
    sf.write(str(path), np.zeros(8000 * 10, dtype=np.float32), 8000)
    source = FileSource(path, realtime=True)

    stream = await source.start(CaptureConfig(chunk_seconds=1.0))
    first = await stream.__anext__()
    await source.stop()
    rest = [chunk async for chunk in stream]

    assert first.sequence == 1
    assert rest == []
    assert source.release_count == 1


@pytest.mark.asyncio
async def test_missing_file_is_an_acquisition_error(tmp_path):
    with pytest.raises(AcquisitionError):
        await FileSource(tmp_path / "absent.wav").start(CaptureConfig())


@pytest.mark.asyncio
async def test_file_source_converts_to_capture_format(tmp_path):
    path = tmp_path / "stereo.wav"
    tone = np.sin(np.linspace(0, 2 * np.pi * 440, 44100, endpoint=False)).astype(np.float32)
    sf.write(str(path), np.stack([tone, tone], axis=1), 44100)
    source = FileSource(path)

    stream = await source.start(CaptureConfig(sample_rate=16000, channels=1, chunk_seconds=1.0))
    chunks = [chunk async for chunk in stream]

    decoded, rate = sf.read(io.BytesIO(chunks[0].data))
    assert len(chunks) == 1
    assert rate == 16000
    assert decoded.ndim == 1
    assert len(decoded) == 16000


def test_conform_frames_widens_mono():
    frames = np.arange(4, dtype=np.float32).reshape(-1, 1)

    widened = audio.conform_frames(frames, 8000, CaptureConfig(sample_rate=8000, channels=2))

    assert widened.shape == (4, 2)
    assert np.array_equal(widened[:, 0], widened[:, 1])
