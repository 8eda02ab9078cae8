"""Silence and noise rules applied before and after transcription."""

from __future__ import annotations

import re
from typing import Optional

from .models import AudioChunk

MIN_CHUNK_BYTES = 1024
MIN_TEXT_LENGTH = 3

_LETTER_RE = re.compile(r"[^\W\d_]")


def accept_chunk(chunk: AudioChunk, min_bytes: int = MIN_CHUNK_BYTES) -> bool:
    """Return True when the chunk is large enough to be worth transcribing.

    Smaller chunks are treated as silence: they are not failures and are
    never retried.
    """

    return chunk.size >= min_bytes


def clean_text(raw: Optional[str]) -> Optional[str]:
    """Trim recognised text, returning None for recognition noise."""

    if not raw:
        return None
    text = raw.strip()
    if len(text) < MIN_TEXT_LENGTH or not _LETTER_RE.search(text):
        return None
    return text
