import asyncio
from datetime import datetime, timedelta

import pytest

from meetscribe.errors import AcquisitionError
from meetscribe.models import AudioChunk, Success


class ScriptedClient:
    """Returns scripted outcomes per chunk sequence; the last one repeats."""

    def __init__(self, script=None, default=None, delays=None):
        self.script = {key: list(value) for key, value in (script or {}).items()}
        self.default = default or Success("hello from the meeting")
        self.delays = delays or {}
        self.calls = []
        self.active = 0
        self.max_active = 0
        self.closed = False

    async def transcribe(self, chunk):
        self.calls.append(chunk.sequence)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            gate = self.delays.get(chunk.sequence)
            if isinstance(gate, asyncio.Event):
                await gate.wait()
            elif gate:
                await asyncio.sleep(gate)
            else:
                await asyncio.sleep(0)
        finally:
            self.active -= 1
        outcomes = self.script.get(chunk.sequence)
        if not outcomes:
            return self.default
        return outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]

    async def aclose(self):
        self.closed = True


class ListSource:
    """Audio source that replays prepared chunks until stopped."""

    def __init__(self, chunks=(), final=None, fail=False):
        self.chunks = list(chunks)
        self.final = final
        self.fail = fail
        self.started = 0
        self.released = 0
        self._queue = None

    async def start(self, config):
        if self.fail:
            raise AcquisitionError("Permission denied")
        self.started += 1
        self._queue = asyncio.Queue()
        for chunk in self.chunks:
            self._queue.put_nowait(chunk)
        return self._stream()

    def push(self, chunk):
        self._queue.put_nowait(chunk)

    async def stop(self):
        if self._queue is not None:
            self._queue.put_nowait(None)

    async def _stream(self):
        try:
            while True:
                item = await self._queue.get()
                if item is None:
                    if self.final is not None:
                        yield self.final
                    return
                yield item
        finally:
            self.released += 1


class FakeSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture
def make_chunk():
    base = datetime(2024, 5, 6, 9, 30, 0)

    def factory(sequence=1, size=4096, offset=None):
        seconds = (sequence - 1) * 3 if offset is None else offset
        return AudioChunk(
            data=b"\x01" * size,
            captured_at=base + timedelta(seconds=seconds),
            sequence=sequence,
        )

    return factory


@pytest.fixture
def scripted_client():
    return ScriptedClient


@pytest.fixture
def list_source():
    return ListSource


@pytest.fixture
def fake_sleep():
    return FakeSleep()
