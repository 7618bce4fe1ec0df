"""Shared fixtures: isolated SQLite ledger and a pipeline wired with fakes."""

from __future__ import annotations

import asyncio
import json
import os
import sys
import tempfile
import textwrap
from pathlib import Path
from typing import Any, Callable

import pytest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

_TEST_ROOT = Path(tempfile.mkdtemp(prefix="skills-lab-tests-"))
os.environ.setdefault("DB_DSN", f"sqlite+aiosqlite:///{_TEST_ROOT / 'app.db'}")
os.environ.setdefault("DB_SERVERLESS", "true")
os.environ.setdefault("LOG_FILE", str(_TEST_ROOT / "logs" / "app.log"))
os.environ.setdefault("PIPELINE_LOG_FILE", str(_TEST_ROOT / "logs" / "pipeline.log"))
os.environ.setdefault("TRANSCRIPT_LOG_FILE", str(_TEST_ROOT / "logs" / "transcripts.log"))
os.environ.setdefault("LABS_SEED_FILE", "")
os.environ.setdefault("JWT_SECRET", "test-secret")

from sqlalchemy.ext.asyncio import async_sessionmaker  # noqa: E402

from app.database import create_engine_for, create_tables  # noqa: E402
from app.pipelines.submission import (  # noqa: E402
    ChunkStore,
    MediaTranscoder,
    RubricGrader,
    StageTimeouts,
    SubmissionLedger,
    SubmissionPipeline,
)
from app.services.lab_catalog import LabSeed, seed_labs  # noqa: E402

DEFAULT_LABS = (
    LabSeed(
        lab_number=1,
        subject="maternalandchild",
        display_name="Breastfeeding counselling",
        rubric_text="- Explains correct latch (50 points)\n- Explains feeding frequency (50 points)",
        pass_threshold=60.0,
        storage_prefix="lab1",
    ),
    LabSeed(
        lab_number=2,
        subject="maternalandchild",
        display_name="Perineal care",
        rubric_text="- Assesses REEDA (100 points)",
        pass_threshold=70.0,
        storage_prefix="lab2",
    ),
)


def grading_reply(score: float, pros: str = "Clear latch explanation", recs: str = "Mention feeding frequency") -> str:
    return json.dumps({"totalScore": score, "pros": pros, "recommendations": recs})


class FakeLlm:
    """Returns queued replies; the last reply repeats once the queue is drained."""

    def __init__(self, *replies: str) -> None:
        self.replies = list(replies) or [grading_reply(80)]
        self.calls: list[dict[str, str]] = []

    async def invoke(self, *, system_prompt: str, user_prompt: str) -> str:
        self.calls.append({"system_prompt": system_prompt, "user_prompt": user_prompt})
        if len(self.replies) > 1:
            return self.replies.pop(0)
        return self.replies[0]


class FakeTranscoder(MediaTranscoder):
    """Writes a stand-in audio file instead of invoking ffmpeg."""

    def __init__(self) -> None:
        super().__init__()
        self.extracted: list[Path] = []

    async def extract_audio(self, video_path: Path) -> Path:
        audio_path = self.audio_path_for(video_path)
        audio_path.write_bytes(b"fake-mp3")
        self.extracted.append(video_path)
        return audio_path


class FakeUploader:
    def __init__(self) -> None:
        self.uploads: list[tuple[Path, str]] = []

    async def upload(self, local_path: Path, remote_key: str) -> str:
        assert local_path.is_file()
        self.uploads.append((local_path, remote_key))
        return f"https://bucket.cdn.example.com/{remote_key}"


class FakeTranscriber:
    def __init__(self, transcript: str = "hold the baby close tummy to tummy") -> None:
        self.transcript = transcript
        self.calls: list[Path] = []

    async def transcribe(self, audio_path: Path) -> str:
        assert audio_path.is_file()
        self.calls.append(audio_path)
        return self.transcript


@pytest.fixture
def session_factory(tmp_path: Path):
    """Fresh SQLite database with the default labs seeded."""

    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}", pooled=False)
    factory = async_sessionmaker(engine, expire_on_commit=False)

    async def _prepare() -> None:
        await create_tables(engine)
        await seed_labs(factory, DEFAULT_LABS)

    asyncio.run(_prepare())
    yield factory
    asyncio.run(engine.dispose())


@pytest.fixture
def ledger(session_factory) -> SubmissionLedger:
    return SubmissionLedger(session_factory)


@pytest.fixture
def chunk_store(tmp_path: Path) -> ChunkStore:
    return ChunkStore(tmp_path / "scratch", tmp_path / "uploads")


@pytest.fixture
def make_pipeline(chunk_store: ChunkStore, ledger: SubmissionLedger) -> Callable[..., SubmissionPipeline]:
    """Build a pipeline around the real chunk store and ledger; override any collaborator."""

    def _build(**overrides: Any) -> SubmissionPipeline:
        options: dict[str, Any] = {
            "chunk_store": chunk_store,
            "transcoder": FakeTranscoder(),
            "uploader": FakeUploader(),
            "transcriber": FakeTranscriber(),
            "grader": RubricGrader(FakeLlm()),
            "ledger": ledger,
            "timeouts": StageTimeouts(),
            "clock": lambda: 1_700_000_000.5,
        }
        options.update(overrides)
        return SubmissionPipeline(**options)

    return _build


def store_chunks(store: ChunkStore, learner_id: Any, chunks: list[bytes], upload_id: str | None = None) -> None:
    async def _store() -> None:
        for index, data in enumerate(chunks):
            await store.receive_chunk(learner_id, index, data, upload_id)

    asyncio.run(_store())


@pytest.fixture
def put_chunks(chunk_store: ChunkStore) -> Callable[..., None]:
    def _put(learner_id: Any, chunks: list[bytes], upload_id: str | None = None) -> None:
        store_chunks(chunk_store, learner_id, chunks, upload_id)

    return _put


@pytest.fixture
def fake_llm_factory() -> Callable[..., FakeLlm]:
    return FakeLlm


@pytest.fixture
def reply() -> Callable[..., str]:
    return grading_reply


@pytest.fixture
def fake_uploader_cls():
    return FakeUploader


@pytest.fixture
def fake_transcriber_cls():
    return FakeTranscriber


@pytest.fixture
def fake_ffmpeg(tmp_path: Path) -> Callable[[str], Path]:
    """Write an executable ffmpeg stand-in; its body sees `output` (the last argument)."""

    def _write(body: str) -> Path:
        script = tmp_path / "fake-ffmpeg"
        script.write_text(
            f"#!{sys.executable}\n"
            "import sys, time\n"
            "from pathlib import Path\n"
            "output = Path(sys.argv[-1])\n" + textwrap.dedent(body),
            encoding="utf-8",
        )
        script.chmod(0o755)
        return script

    return _write
