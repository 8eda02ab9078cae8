"""Transcription clients that turn one audio chunk into an outcome."""

from __future__ import annotations

import base64
import logging
import time
from typing import Any, Dict, List, Optional, Protocol

import httpx
from pydantic import BaseModel, Field

from .config import ConfigError
from .filters import clean_text
from .models import (
    AudioChunk,
    Config,
    PermanentFailure,
    Success,
    TranscriptionOutcome,
    TransientFailure,
)

INVALID_INPUT_MARKER = "invalid"


class TranscriptionClient(Protocol):
    """Common interface for transcription clients."""

    async def transcribe(self, chunk: AudioChunk) -> TranscriptionOutcome:
        """Transcribe one chunk without raising for per-chunk failures."""

    async def aclose(self) -> None:
        """Release network resources."""


class TranscriptSegment(BaseModel):
    start: float = 0.0
    end: float = 0.0
    text: str = ""


class TranscriptionResponse(BaseModel):
    text: Optional[str] = ""
    language: Optional[str] = None
    segments: Optional[List[TranscriptSegment]] = Field(default_factory=list)


def chunk_filename(chunk: AudioChunk) -> str:
    return f"chunk-{int(time.time() * 1000)}.{chunk.extension}"


def classify_failure(message: str, status_code: Optional[int] = None) -> TranscriptionOutcome:
    """Map an error message to a transient or permanent failure.

    Only client-side rejections that call the input invalid are permanent;
    server errors are always worth another attempt.
    """

    client_side = status_code is None or status_code < 500
    if client_side and INVALID_INPUT_MARKER in message.lower():
        return PermanentFailure(message)
    return TransientFailure(message)


def build_success(text: Optional[str], language: Optional[str] = None, segments: Optional[list] = None) -> Success:
    """Return a Success whose text is empty when the result is recognition noise."""

    cleaned = clean_text(text)
    return Success(text=cleaned or "", language=language, segments=list(segments or []))


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(payload, dict):
        for key in ("error", "message", "detail"):
            value = payload.get(key)
            if value:
                return str(value)
    return response.text or response.reason_phrase


class HttpTranscriptionClient:
    """Posts base64 encoded chunks to a JSON transcription endpoint."""

    def __init__(
        self,
        url: str,
        *,
        token: Optional[str] = None,
        timeout: float = 30.0,
        verify_ssl: bool = True,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.url = url
        headers: Dict[str, str] = {}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = client or httpx.AsyncClient(timeout=timeout, verify=verify_ssl)
        self._headers = headers

    async def transcribe(self, chunk: AudioChunk) -> TranscriptionOutcome:
        payload = {
            "audio": base64.b64encode(chunk.data).decode("ascii"),
            "filename": chunk_filename(chunk),
        }
        logging.debug("Transcribing chunk %d: %d bytes, type %s", chunk.sequence, chunk.size, chunk.mime_type)
        try:
            response = await self._client.post(self.url, json=payload, headers=self._headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            detail = _error_detail(exc.response)
            logging.warning(
                "Transcription API error for chunk %d: %s %s",
                chunk.sequence,
                exc.response.status_code,
                detail,
            )
            return classify_failure(detail, exc.response.status_code)
        except httpx.HTTPError as exc:
            logging.warning("Transcription request for chunk %d failed: %s", chunk.sequence, exc)
            return TransientFailure(str(exc) or exc.__class__.__name__)

        try:
            body = TranscriptionResponse.model_validate(response.json())
        except ValueError as exc:
            logging.warning("Unreadable transcription response for chunk %d: %s", chunk.sequence, exc)
            return TransientFailure(f"Unreadable transcription response: {exc}")

        segments = [segment.model_dump() for segment in body.segments or []]
        return build_success(body.text, body.language, segments)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpTranscriptionClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()


class OpenAITranscriptionClient:
    """Sends chunks straight to the OpenAI audio transcription API."""

    def __init__(self, model: str, api_key: Optional[str], *, timeout: float = 30.0, client: Any = None) -> None:
        if api_key is None and client is None:
            raise ConfigError("An OpenAI API key is required for this backend.")
        try:
            import openai
        except Exception as exc:  # pragma: no cover - optional dependency
            raise ConfigError("The `openai` package is required for this backend.") from exc
        self._openai = openai
        self._client = client or openai.AsyncOpenAI(api_key=api_key, timeout=timeout)
        self._model = model

    async def transcribe(self, chunk: AudioChunk) -> TranscriptionOutcome:
        try:
            response = await self._client.audio.transcriptions.create(
                model=self._model,
                file=(chunk_filename(chunk), chunk.data, chunk.mime_type),
                response_format="verbose_json",
            )
        except self._openai.BadRequestError as exc:
            logging.warning("OpenAI rejected chunk %d: %s", chunk.sequence, exc)
            return classify_failure(str(exc), getattr(exc, "status_code", 400))
        except self._openai.APIError as exc:
            logging.warning("OpenAI transcription of chunk %d failed: %s", chunk.sequence, exc)
            return TransientFailure(str(exc))

        segments = []
        for segment in getattr(response, "segments", None) or []:
            segments.append(segment.model_dump() if hasattr(segment, "model_dump") else dict(segment))
        return build_success(response.text, getattr(response, "language", None), segments)

    async def aclose(self) -> None:
        await self._client.close()


def get_client(config: Config) -> TranscriptionClient:
    """Return the transcription client selected by the configuration."""

    backend = config.backend
    if backend in {"http", "auto"} and config.transcription_url:
        return HttpTranscriptionClient(
            config.transcription_url,
            token=config.api_token,
            timeout=config.request_timeout,
            verify_ssl=config.verify_ssl,
        )
    if backend == "http":
        raise ConfigError(
            "No transcription endpoint configured. Run `meetscribe config --transcription-url URL` first."
        )
    if backend in {"openai", "auto"} and config.openai_api_key:
        return OpenAITranscriptionClient(config.openai_model, config.openai_api_key, timeout=config.request_timeout)
    raise ConfigError(
        "No transcription backend available. Configure a transcription URL or an OpenAI API key."
    )
