"""Meeting summaries from a remote endpoint or a local extractive fallback."""

from __future__ import annotations

import logging
import math
import re
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple

import httpx

from .errors import SummaryError
from .models import Config
from .transcript import COMPLETE_MARKER

_WORD_RE = re.compile(r"[\w']+")
_ENTRY_PREFIX_RE = re.compile(r"^\[\d{2}:\d{2}:\d{2}\]\s+[^:]+:\s*", re.MULTILINE)


class Summarizer(Protocol):
    async def summarise(self, notes: str, transcript: str) -> str:
        """Summarise meeting notes and transcript."""

    async def aclose(self) -> None:
        """Release resources."""


def _prepare(notes: Optional[str], transcript: Optional[str]) -> Tuple[str, str]:
    notes = (notes or "").strip()
    transcript = (transcript or "").replace(COMPLETE_MARKER, "").strip()
    if not notes and not transcript:
        raise SummaryError("Please add notes or a transcript before generating a summary.")
    return notes, transcript


class SummaryClient:
    """Requests a summary of meeting notes and transcript.

    The transcript is sent as-is, apart from the completion marker, and is
    never modified by a failed request.
    """

    def __init__(
        self,
        url: str,
        *,
        token: Optional[str] = None,
        timeout: float = 60.0,
        verify_ssl: bool = True,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not url:
            raise SummaryError("No summary endpoint configured. Run `meetscribe config --summary-url URL` first.")
        self.url = url
        headers: Dict[str, str] = {}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._headers = headers
        self._client = client or httpx.AsyncClient(timeout=timeout, verify=verify_ssl)

    async def summarise(self, notes: str, transcript: str) -> str:
        notes, transcript = _prepare(notes, transcript)

        try:
            response = await self._client.post(
                self.url,
                json={"notes": notes, "transcript": transcript},
                headers=self._headers,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            detail = _error_message(exc.response)
            logging.warning("Summary request failed: %s %s", exc.response.status_code, detail)
            raise SummaryError(f"Failed to generate summary: {detail}") from exc
        except httpx.HTTPError as exc:
            raise SummaryError(f"Failed to generate summary: {exc}") from exc

        try:
            payload: Any = response.json()
        except ValueError as exc:
            raise SummaryError(f"Summary endpoint returned an unreadable response: {exc}") from exc
        summary = payload.get("summary") if isinstance(payload, dict) else None
        if not summary:
            raise SummaryError("Summary endpoint returned no summary.")
        return str(summary).strip()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "SummaryClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(payload, dict) and payload.get("error"):
        return str(payload["error"])
    return response.reason_phrase


class ExtractiveSummarizer:
    """A naive frequency based summariser used when no endpoint is configured.

    Speaker and timestamp prefixes are stripped from transcript lines, then
    sentences from the notes and transcript are ranked by TF-IDF inspired
    word importance. The highest ranking sentences are returned in their
    original order.
    """

    def __init__(self, max_sentences: int = 3) -> None:
        self.max_sentences = max_sentences

    async def summarise(self, notes: str, transcript: str) -> str:
        notes, transcript = _prepare(notes, transcript)
        spoken = _ENTRY_PREFIX_RE.sub("", transcript)
        sentences = _split_sentences(notes) + _split_sentences(spoken)
        if len(sentences) <= self.max_sentences:
            return " ".join(sentences)

        scores = self._score_sentences(sentences)
        ranked = sorted(range(len(sentences)), key=lambda i: scores[i], reverse=True)
        top_indices = sorted(ranked[: self.max_sentences])
        return " ".join(sentences[i] for i in top_indices)

    async def aclose(self) -> None:
        return None

    async def __aenter__(self) -> "ExtractiveSummarizer":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    def _score_sentences(self, sentences: List[str]) -> List[float]:
        words_per_sentence = [_tokenize(sentence) for sentence in sentences]
        tf_scores = [_term_frequency(words) for words in words_per_sentence]
        idf_scores = _inverse_document_frequency(words_per_sentence)

        sentence_scores = []
        for words, tf in zip(words_per_sentence, tf_scores):
            score = sum(tf.get(word, 0.0) * idf_scores.get(word, 0.0) for word in words)
            sentence_scores.append(score)
        return sentence_scores


def get_summarizer(config: Config) -> Summarizer:
    """Use the summary endpoint when one is configured, else summarise locally."""

    if config.summary_url:
        return SummaryClient(
            config.summary_url,
            token=config.api_token,
            timeout=max(config.request_timeout, 60.0),
            verify_ssl=config.verify_ssl,
        )
    logging.info("No summary endpoint configured; using the local extractive summariser")
    return ExtractiveSummarizer()


def _split_sentences(text: str) -> List[str]:
    text = text.strip()
    if not text:
        return []
    sentences = re.split(r"(?<=[.!?])\s+|\n+", text)
    return [s.strip() for s in sentences if s.strip()]


def _tokenize(sentence: str) -> List[str]:
    return [match.group(0).lower() for match in _WORD_RE.finditer(sentence)]


def _term_frequency(words: Iterable[str]) -> Counter:
    counter: Counter[str] = Counter(words)
    total = sum(counter.values()) or 1
    return Counter({word: count / total for word, count in counter.items()})


def _inverse_document_frequency(docs: List[List[str]]) -> Counter:
    doc_count = len(docs)
    counter: Counter[str] = Counter()
    for doc in docs:
        counter.update(set(doc))
    return Counter({word: math.log(doc_count / (1 + count)) + 1 for word, count in counter.items()})
