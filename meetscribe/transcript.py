"""Running transcript built from transcription results as they arrive."""

from __future__ import annotations

from datetime import datetime
from typing import Callable, List, Optional

from .models import TranscriptEntry

COMPLETE_MARKER = "[Transcription complete]"
DEFAULT_SPEAKER = "Speaker 1"


class TranscriptAssembler:
    """Append-only transcript in completion order.

    No diarization is performed: every entry carries the same speaker label
    for the whole session.
    """

    def __init__(
        self,
        speaker_label: str = DEFAULT_SPEAKER,
        time_format: str = "%H:%M:%S",
        listener: Optional[Callable[[TranscriptEntry], None]] = None,
    ) -> None:
        self.speaker_label = speaker_label
        self.time_format = time_format
        self.listener = listener
        self._entries: List[TranscriptEntry] = []
        self._complete = False

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> List[TranscriptEntry]:
        return list(self._entries)

    @property
    def is_complete(self) -> bool:
        return self._complete

    def append(self, text: str, captured_at: datetime) -> TranscriptEntry:
        entry = TranscriptEntry(
            timestamp=captured_at.strftime(self.time_format),
            speaker=self.speaker_label,
            text=text,
            captured_at=captured_at,
            arrival_index=len(self._entries),
        )
        self._entries.append(entry)
        if self.listener is not None:
            self.listener(entry)
        return entry

    def get_full_text(self) -> str:
        parts = [entry.format() for entry in self._entries]
        if self._complete:
            parts.append(COMPLETE_MARKER)
        return "\n\n".join(parts)

    def mark_complete(self) -> None:
        self._complete = True
