"""Sequential replay of chunks whose transcription failed transiently."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List

from .errors import ExhaustedRetryError
from .models import (
    AudioChunk,
    PermanentFailure,
    RetryItem,
    Success,
    TranscriptionOutcome,
    TransientFailure,
)
from .transcriber import TranscriptionClient

SuccessHandler = Callable[[AudioChunk, Success], None]
Sleeper = Callable[[float], Awaitable[None]]


@dataclass(slots=True)
class DrainReport:
    """What happened to each item during one drain pass."""

    succeeded: int = 0
    dropped: int = 0
    attempts: int = 0
    exhausted: List[ExhaustedRetryError] = field(default_factory=list)

    @property
    def repended(self) -> int:
        return len(self.exhausted)


class RetryCoordinator:
    """Holds transiently failed chunks and replays them with exponential backoff.

    Items are processed one at a time so that backoff waits bound the load on
    the transcription service. The delay before the next attempt is
    ``backoff_base ** attempts`` seconds (2 s, 4 s, ... with the defaults).
    An item that fails ``max_retries`` attempts in a pass goes back to the
    pending set for a later drain.
    """

    def __init__(
        self,
        client: TranscriptionClient,
        on_success: SuccessHandler,
        *,
        max_retries: int = 3,
        backoff_base: float = 2.0,
        sleep: Sleeper = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._on_success = on_success
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self._sleep = sleep
        self._clock = clock
        self._items: List[RetryItem] = []
        self._lock = asyncio.Lock()
        self.attempts_made = 0

    def __len__(self) -> int:
        return len(self._items)

    @property
    def pending(self) -> List[RetryItem]:
        return list(self._items)

    def enqueue(self, chunk: AudioChunk) -> RetryItem:
        item = RetryItem(chunk=chunk, attempts=0, next_eligible_at=self._clock())
        self._items.append(item)
        logging.debug("Chunk %d queued for retry (%d pending)", chunk.sequence, len(self._items))
        return item

    def abandon(self) -> List[RetryItem]:
        """Forget every pending item and return what was given up."""

        abandoned, self._items = self._items, []
        if abandoned:
            logging.warning("Abandoning %d chunk(s) that never transcribed", len(abandoned))
        return abandoned

    async def drain(self, *, only_eligible: bool = False) -> DrainReport:
        """Run one pass over every item pending when the drain started.

        With ``only_eligible`` the pass skips items whose backoff has not
        elapsed yet; they stay pending in their original order.
        """

        async with self._lock:
            now = self._clock()
            remaining: List[RetryItem] = []
            waiting: List[RetryItem] = []
            for item in self._items:
                if only_eligible and item.next_eligible_at > now:
                    waiting.append(item)
                else:
                    remaining.append(item)
            self._items = []
            report = DrainReport()
            repended: List[RetryItem] = []
            if remaining:
                logging.info("Retrying %d failed chunk(s)", len(remaining))
            try:
                while remaining:
                    item = remaining[0]
                    outcome = await self._attempt(item, report)
                    remaining.pop(0)
                    if isinstance(outcome, Success):
                        report.succeeded += 1
                        self._on_success(item.chunk, outcome)
                    elif isinstance(outcome, PermanentFailure):
                        report.dropped += 1
                        logging.warning("Dropping chunk %d: %s", item.chunk.sequence, outcome.reason)
                    else:
                        error = ExhaustedRetryError(item.chunk.sequence, item.attempts, outcome.reason)
                        logging.warning("%s", error)
                        report.exhausted.append(error)
                        item.next_eligible_at = self._clock() + self.backoff_base ** max(self.max_retries, 1)
                        repended.append(item)
            finally:
                # chunks that failed while this pass ran stay behind the re-pended ones
                self._items = repended + waiting + remaining + self._items
            return report

    async def _attempt(self, item: RetryItem, report: DrainReport) -> TranscriptionOutcome:
        if self.max_retries < 1:
            return TransientFailure("retries disabled")
        tries = 0
        while True:
            try:
                outcome = await self._client.transcribe(item.chunk)
            except Exception as exc:
                logging.exception("Transcription client raised while retrying chunk %d", item.chunk.sequence)
                outcome = TransientFailure(str(exc) or exc.__class__.__name__)
            tries += 1
            item.attempts += 1
            report.attempts += 1
            self.attempts_made += 1
            if not isinstance(outcome, (Success, PermanentFailure)) and tries < self.max_retries:
                delay = self.backoff_base ** tries
                item.next_eligible_at = self._clock() + delay
                logging.debug("Chunk %d retry %d failed; waiting %.1fs", item.chunk.sequence, tries, delay)
                await self._sleep(delay)
                continue
            return outcome

    async def run_background(self, interval: float = 5.0) -> None:
        """Drain periodically until cancelled."""

        while True:
            await self._sleep(interval)
            if self._items:
                await self.drain(only_eligible=True)
