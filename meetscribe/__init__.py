"""Top-level package for meetscribe."""

__version__ = "0.1.0"

from . import config, filters, retry, session, summarizer, transcriber, transcript, waveform

__all__ = ["config", "filters", "retry", "session", "summarizer", "transcriber", "transcript", "waveform"]
