"""Exception hierarchy for the capture and transcription pipeline."""

from __future__ import annotations


class MeetscribeError(RuntimeError):
    """Base class for errors raised by meetscribe."""


class AcquisitionError(MeetscribeError):
    """Raised when the input device is unavailable or access is denied."""


class TranscriptionError(MeetscribeError):
    """Raised when a single chunk cannot be transcribed."""


class TransientTranscriptionError(TranscriptionError):
    """Network or service failure; the chunk may be retried."""


class PermanentTranscriptionError(TranscriptionError):
    """The service rejected the chunk as invalid input; retrying is pointless."""


class ExhaustedRetryError(TranscriptionError):
    """A chunk failed every attempt within a drain pass."""

    def __init__(self, sequence: int, attempts: int, reason: str) -> None:
        super().__init__(f"Chunk {sequence} still failing after {attempts} attempt(s): {reason}")
        self.sequence = sequence
        self.attempts = attempts
        self.reason = reason


class SummaryError(MeetscribeError):
    """Raised when the summary endpoint cannot produce a summary."""
