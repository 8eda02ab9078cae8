"""Session controller that owns one recording from start to stop."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Set

from .audio import AudioSource
from .errors import MeetscribeError
from .filters import accept_chunk
from .models import (
    AudioChunk,
    CaptureConfig,
    Config,
    PermanentFailure,
    PipelineState,
    RetryItem,
    Success,
    TranscriptEntry,
    TranscriptionOutcome,
    TransientFailure,
)
from .retry import RetryCoordinator, Sleeper
from .transcriber import TranscriptionClient
from .transcript import TranscriptAssembler
from .waveform import LevelMonitor


@dataclass(slots=True)
class SessionStats:
    chunks_captured: int = 0
    chunks_filtered: int = 0
    requests: int = 0
    successes: int = 0
    noise: int = 0
    transient_failures: int = 0
    permanent_failures: int = 0
    retry_attempts: int = 0


@dataclass(slots=True)
class SessionResult:
    transcript: str
    entries: List[TranscriptEntry]
    stats: SessionStats
    abandoned: List[RetryItem] = field(default_factory=list)
    capture_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ordering": "arrival",
            "transcript": self.transcript,
            "entries": [entry.to_dict() for entry in self.entries],
            "stats": asdict(self.stats),
            "abandoned_chunks": [item.chunk.sequence for item in self.abandoned],
            "capture_error": self.capture_error,
        }


class RecordingSession:
    """Drives capture, filtering, dispatch, retries and transcript assembly.

    Chunks are transcribed concurrently, at most ``max_concurrency`` at a
    time, so results land in the transcript in completion order. Transient
    failures wait in the retry coordinator; by default they are drained once
    when the session stops and anything still failing after that pass is
    abandoned.
    """

    def __init__(
        self,
        source: AudioSource,
        client: TranscriptionClient,
        config: Optional[Config] = None,
        *,
        capture: Optional[CaptureConfig] = None,
        assembler: Optional[TranscriptAssembler] = None,
        monitor: Optional[LevelMonitor] = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.config = config or Config()
        self.capture = capture or self.config.capture_config()
        self.assembler = assembler or TranscriptAssembler(self.config.speaker_label)
        self.monitor = monitor
        self.state = PipelineState.IDLE
        self.stats = SessionStats()
        self.retries = RetryCoordinator(
            client,
            self._on_retry_success,
            max_retries=self.config.max_retries,
            sleep=sleep,
        )
        self._source = source
        self._client = client
        self._semaphore = asyncio.Semaphore(self.config.max_concurrency)
        self._in_flight: Set[asyncio.Task] = set()
        self._capture_task: Optional[asyncio.Task] = None
        self._background_task: Optional[asyncio.Task] = None
        self._stopped: Optional[asyncio.Event] = None
        self._abandoned: List[RetryItem] = []
        self._capture_error: Optional[str] = None

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def start(self) -> None:
        if self.state is not PipelineState.IDLE:
            raise MeetscribeError(f"Cannot start a session that is {self.state.value}.")
        # AcquisitionError propagates and the session stays idle
        stream = await self._source.start(self.capture)
        self.state = PipelineState.RECORDING
        self._stopped = asyncio.Event()
        if self.monitor is not None:
            self.monitor.start()
        self._capture_task = asyncio.create_task(self._capture(stream))
        if self.config.retry_mode == "background":
            self._background_task = asyncio.create_task(
                self.retries.run_background(self.config.retry_interval)
            )
        logging.info(
            "Recording started with %.1fs chunks (max %d concurrent requests)",
            self.capture.chunk_seconds,
            self.config.max_concurrency,
        )

    async def wait_captured(self) -> None:
        """Wait until the source stops producing chunks on its own."""

        if self._capture_task is not None:
            await asyncio.shield(self._capture_task)

    async def stop(self) -> SessionResult:
        if self.state is PipelineState.IDLE:
            return self.result()
        if self.state is PipelineState.STOPPING:
            await self._stopped.wait()
            return self.result()

        self.state = PipelineState.STOPPING
        logging.info("Stopping recording, processing final chunks...")
        try:
            await self._source.stop()
            if self._capture_task is not None:
                await self._capture_task
            if self._background_task is not None:
                self._background_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._background_task
            while self._in_flight:
                await asyncio.gather(*list(self._in_flight), return_exceptions=True)
            await self.retries.drain()
            self.assembler.mark_complete()
        finally:
            self._abandoned = self.retries.abandon()
            self.stats.retry_attempts = self.retries.attempts_made
            if self.monitor is not None:
                self.monitor.stop()
            self.state = PipelineState.IDLE
            self._stopped.set()
        return self.result()

    def result(self) -> SessionResult:
        return SessionResult(
            transcript=self.assembler.get_full_text(),
            entries=self.assembler.entries,
            stats=self.stats,
            abandoned=list(self._abandoned),
            capture_error=self._capture_error,
        )

    async def __aenter__(self) -> "RecordingSession":
        await self.start()
        return self

    async def __aexit__(self, *args) -> None:
        await self.stop()

    async def _capture(self, stream: AsyncIterator[AudioChunk]) -> None:
        try:
            async for chunk in stream:
                self.stats.chunks_captured += 1
                if not accept_chunk(chunk, self.config.min_chunk_bytes):
                    self.stats.chunks_filtered += 1
                    logging.debug("Chunk %d too small (%d bytes), skipping transcription", chunk.sequence, chunk.size)
                    continue
                task = asyncio.create_task(self._dispatch(chunk))
                self._in_flight.add(task)
                task.add_done_callback(self._dispatch_done)
        except Exception as exc:
            logging.exception("Audio capture failed")
            self._capture_error = str(exc)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _dispatch(self, chunk: AudioChunk) -> None:
        async with self._semaphore:
            self.stats.requests += 1
            try:
                outcome = await self._client.transcribe(chunk)
            except Exception as exc:
                logging.exception("Transcription client raised for chunk %d", chunk.sequence)
                outcome = TransientFailure(str(exc) or exc.__class__.__name__)
        self._route(chunk, outcome)

    def _dispatch_done(self, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logging.error("Failed to record transcription result", exc_info=exc)

    def _route(self, chunk: AudioChunk, outcome: TranscriptionOutcome) -> None:
        if isinstance(outcome, Success):
            self._record_success(chunk, outcome)
        elif isinstance(outcome, PermanentFailure):
            self.stats.permanent_failures += 1
            logging.warning("Dropping chunk %d: %s", chunk.sequence, outcome.reason)
        else:
            self.stats.transient_failures += 1
            self.retries.enqueue(chunk)

    def _on_retry_success(self, chunk: AudioChunk, outcome: Success) -> None:
        self._record_success(chunk, outcome)

    def _record_success(self, chunk: AudioChunk, outcome: Success) -> None:
        if not outcome.text:
            self.stats.noise += 1
            logging.debug("Skipping chunk %d: no meaningful text", chunk.sequence)
            return
        self.stats.successes += 1
        self.assembler.append(outcome.text, chunk.captured_at)
