"""Speech-to-text client over a mocked HTTP transport."""

from __future__ import annotations

import asyncio
from pathlib import Path

import httpx
import pytest
from pydantic import SecretStr

from app.config.settings import TranscriptionConfig
from app.errors import TranscriptionFailed
from app.services.transcribe import TranscriptionClient, normalize_transcript


@pytest.mark.parametrize(
    ("payload", "expected"),
    [
        ("plain text", "plain text"),
        ([{"text": "hello"}, {"text": "world"}], "hello world"),
        ({"output": [{"text": "a"}, {"text": "b"}, {"text": "c"}]}, "a b c"),
        ({"segments": [{"text": "only"}]}, "only"),
        ({"text": "whisper style"}, "whisper style"),
        ([], ""),
    ],
)
def test_normalize_transcript(payload, expected: str) -> None:
    assert normalize_transcript(payload) == expected


@pytest.mark.parametrize("payload", [{"status": "ok"}, 42, [{"start": 0.0}], None])
def test_normalize_transcript_rejects_unknown_shapes(payload) -> None:
    with pytest.raises(TranscriptionFailed):
        normalize_transcript(payload)


def _config() -> TranscriptionConfig:
    return TranscriptionConfig(
        endpoint_url="https://asr.example.com/v3",
        api_key=SecretStr("secret-key"),
        extra_form={"use_asr_pro": "0"},
    )


def _audio(tmp_path: Path) -> Path:
    audio = tmp_path / "clip-audio.mp3"
    audio.write_bytes(b"ID3-fake-mp3")
    return audio


def test_transcribe_posts_multipart_and_joins_segments(tmp_path: Path) -> None:
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["apikey"] = request.headers.get("apikey")
        captured["body"] = request.read()
        return httpx.Response(
            200,
            json={"output": [{"text": "hold the baby"}, {"text": "tummy to tummy"}]},
        )

    async def scenario() -> str:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            client = TranscriptionClient(_config(), http_client=http_client)
            return await client.transcribe(_audio(tmp_path))

    assert asyncio.run(scenario()) == "hold the baby tummy to tummy"
    assert captured["url"] == "https://asr.example.com/v3"
    assert captured["apikey"] == "secret-key"
    body = captured["body"]
    assert b'name="file"; filename="clip-audio.mp3"' in body
    assert b'name="use_asr_pro"' in body
    assert b"ID3-fake-mp3" in body


def test_transcribe_plain_text_response(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="  spoken answer \n", headers={"content-type": "text/plain"})

    async def scenario() -> str:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            return await TranscriptionClient(_config(), http_client=http_client).transcribe(
                _audio(tmp_path)
            )

    assert asyncio.run(scenario()) == "spoken answer"


def test_transcribe_provider_error(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"message": "boom"})

    async def scenario() -> str:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            return await TranscriptionClient(_config(), http_client=http_client).transcribe(
                _audio(tmp_path)
            )

    with pytest.raises(TranscriptionFailed) as excinfo:
        asyncio.run(scenario())
    assert excinfo.value.provider_status == 500
    assert excinfo.value.message == "Transcription failed: 500 - Internal Server Error"


def test_transcribe_network_error(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async def scenario() -> str:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            return await TranscriptionClient(_config(), http_client=http_client).transcribe(
                _audio(tmp_path)
            )

    with pytest.raises(TranscriptionFailed, match="connection refused"):
        asyncio.run(scenario())


def test_transcribe_missing_file(tmp_path: Path) -> None:
    client = TranscriptionClient(_config(), http_client=httpx.AsyncClient())
    with pytest.raises(TranscriptionFailed):
        asyncio.run(client.transcribe(tmp_path / "missing.mp3"))
