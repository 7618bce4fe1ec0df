"""Speech-to-text integration over multipart HTTP."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import httpx

from app.config.settings import TranscriptionConfig
from app.errors import TranscriptionFailed

logger = logging.getLogger(__name__)

_SEGMENT_LIST_KEYS = ("output", "segments")


def normalize_transcript(payload: Any) -> str:
    """Collapse the provider's response into one transcript string.

    Accepts a plain string, a list of ``{"text": ...}`` segments, or an object
    holding such a list under ``output``/``segments`` or a string under
    ``text``. Segment texts are joined with a single space in their original
    order.
    """

    if isinstance(payload, str):
        return payload
    if isinstance(payload, list):
        return _join_segments(payload)
    if isinstance(payload, dict):
        for key in _SEGMENT_LIST_KEYS:
            segments = payload.get(key)
            if isinstance(segments, list):
                return _join_segments(segments)
        text = payload.get("text")
        if isinstance(text, str):
            return text
    raise TranscriptionFailed("Transcription failed: unrecognised provider response")


def _join_segments(segments: list[Any]) -> str:
    texts: list[str] = []
    for segment in segments:
        if not isinstance(segment, dict) or not isinstance(segment.get("text"), str):
            raise TranscriptionFailed("Transcription failed: segment without text")
        texts.append(segment["text"])
    return " ".join(texts)


class TranscriptionClient:
    """Post audio files to the recognition endpoint and return plain text."""

    def __init__(
        self,
        config: TranscriptionConfig,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._http_client = http_client

    def _headers(self) -> dict[str, str]:
        api_key = self._config.api_key
        if api_key is None:
            return {}
        value = f"{self._config.api_key_prefix}{api_key.get_secret_value()}"
        return {self._config.api_key_header: value}

    async def transcribe(self, audio_path: Path) -> str:
        """Send `audio_path` as multipart form data and return the transcript."""

        if self._http_client is not None:
            return await self._post(self._http_client, audio_path)

        async with httpx.AsyncClient(timeout=self._config.timeout_seconds) as client:
            return await self._post(client, audio_path)

    async def _post(self, client: httpx.AsyncClient, audio_path: Path) -> str:
        try:
            with audio_path.open("rb") as audio_fp:
                response = await client.post(
                    self._config.endpoint_url,
                    headers=self._headers(),
                    data=dict(self._config.extra_form),
                    files={self._config.file_field: (audio_path.name, audio_fp)},
                )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status_code = exc.response.status_code
            logger.error(
                "Transcription provider error %s: %s",
                status_code,
                exc.response.text[:500],
            )
            raise TranscriptionFailed(
                f"Transcription failed: {status_code} - {exc.response.reason_phrase}",
                status_code=status_code,
            ) from exc
        except (httpx.RequestError, OSError) as exc:
            raise TranscriptionFailed(f"Transcription failed: {exc}") from exc

        transcript = normalize_transcript(self._decode(response))
        logger.info("Transcription complete. Length: %s", len(transcript))
        return transcript

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        content_type = response.headers.get("content-type", "")
        if "json" not in content_type:
            return response.text.strip()
        try:
            return response.json()
        except json.JSONDecodeError as exc:
            raise TranscriptionFailed(
                f"Transcription failed: invalid JSON from provider ({exc})"
            ) from exc


__all__ = ["TranscriptionClient", "normalize_transcript"]
