"""Dataclasses describing the objects that flow through a recording session."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union


_MIME_EXTENSIONS = {
    "audio/wav": "wav",
    "audio/flac": "flac",
    "audio/ogg": "ogg",
    "audio/webm": "webm",
    "audio/mp4": "m4a",
}


class PipelineState(enum.Enum):
    IDLE = "idle"
    RECORDING = "recording"
    STOPPING = "stopping"


@dataclass(frozen=True, slots=True)
class AudioChunk:
    """A bounded slice of captured audio with its capture timestamp."""

    data: bytes
    captured_at: datetime
    sequence: int = 0
    mime_type: str = "audio/wav"

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def extension(self) -> str:
        base = self.mime_type.split(";", 1)[0].strip().lower()
        return _MIME_EXTENSIONS.get(base, "webm")


@dataclass(slots=True)
class Success:
    text: str
    language: Optional[str] = None
    segments: List[Dict[str, Any]] = field(default_factory=list)


@dataclass(slots=True)
class TransientFailure:
    reason: str


@dataclass(slots=True)
class PermanentFailure:
    reason: str


TranscriptionOutcome = Union[Success, TransientFailure, PermanentFailure]


@dataclass(slots=True)
class RetryItem:
    """A chunk waiting for another transcription attempt."""

    chunk: AudioChunk
    attempts: int = 0
    next_eligible_at: float = 0.0


@dataclass(frozen=True, slots=True)
class TranscriptEntry:
    """One transcript line.

    Entries are stored in the order their transcription finished, which may
    differ from capture order; ``ordering`` records that explicitly.
    """

    timestamp: str
    speaker: str
    text: str
    captured_at: datetime
    arrival_index: int
    ordering: str = "arrival"

    def format(self) -> str:
        return f"[{self.timestamp}] {self.speaker}: {self.text}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "speaker": self.speaker,
            "text": self.text,
            "captured_at": self.captured_at.isoformat(),
            "arrival_index": self.arrival_index,
        }


@dataclass(slots=True)
class CaptureConfig:
    """Fixed capture settings applied when the input device is opened."""

    sample_rate: int = 16000
    channels: int = 1
    chunk_seconds: float = 3.0
    echo_cancellation: bool = True
    noise_suppression: bool = True
    auto_gain_control: bool = True
    device: Optional[Union[int, str]] = None
    format: str = "wav"


@dataclass(slots=True)
class Config:
    """User configuration stored on disk."""

    backend: str = "auto"
    transcription_url: Optional[str] = None
    summary_url: Optional[str] = None
    api_token: Optional[str] = None
    openai_api_key: Optional[str] = None
    openai_model: str = "whisper-1"
    request_timeout: float = 30.0
    verify_ssl: bool = True
    chunk_seconds: float = 3.0
    sample_rate: int = 16000
    audio_format: str = "wav"
    input_device: Optional[str] = None
    min_chunk_bytes: int = 1024
    max_retries: int = 3
    max_concurrency: int = 4
    retry_mode: str = "on_stop"
    retry_interval: float = 10.0
    speaker_label: str = "Speaker 1"

    def capture_config(self) -> CaptureConfig:
        device: Optional[Union[int, str]] = self.input_device
        if isinstance(device, str) and device.isdigit():
            device = int(device)
        return CaptureConfig(
            sample_rate=self.sample_rate,
            chunk_seconds=self.chunk_seconds,
            device=device,
            format=self.audio_format,
        )
