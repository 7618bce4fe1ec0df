"""End-to-end pipeline runs with fake external collaborators."""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path

import pytest

from app.errors import ChunkMissing, PipelineFailed, StorageUploadFailed, TranscriptionFailed
from app.pipelines.submission import (
    ChunkStore,
    MediaKind,
    MediaTranscoder,
    PipelineStage,
    RubricGrader,
    StageTimeouts,
    SubmissionRequest,
)


def _request(file_name: str = "answer.mp3", total_chunks: int = 2, **kwargs) -> SubmissionRequest:
    options = {
        "learner_id": 1,
        "lab_number": 1,
        "subject": "maternalandchild",
        "file_name": file_name,
        "total_chunks": total_chunks,
    }
    options.update(kwargs)
    return SubmissionRequest(**options)


def _leftovers(chunk_store) -> list[Path]:
    found: list[Path] = []
    for directory in (chunk_store.scratch_dir, chunk_store.uploads_dir):
        if directory.exists():
            found.extend(directory.iterdir())
    return found


def test_two_submissions_produce_attempts_one_and_two(make_pipeline, put_chunks, chunk_store, ledger) -> None:
    pipeline = make_pipeline()

    put_chunks(1, [b"first-", b"take"])
    first = asyncio.run(pipeline.run(_request()))
    put_chunks(1, [b"second-", b"take"])
    second = asyncio.run(pipeline.run(_request()))

    assert first.attempt.attempt == 1
    assert second.attempt.attempt == 2
    assert first.file_type is MediaKind.AUDIO
    assert first.file_url == "https://bucket.cdn.example.com/lab1/1/1700000000500.mp3"
    assert first.grading.total_score == 80
    assert first.is_pass is True
    assert first.transcript == "hold the baby close tummy to tummy"
    history = asyncio.run(ledger.history(1, first.lab.id))
    assert [item.attempt for item in history] == [1, 2]
    assert _leftovers(chunk_store) == []


def test_video_is_transcribed_from_extracted_audio(make_pipeline, put_chunks, chunk_store) -> None:
    pipeline = make_pipeline()
    put_chunks(1, [b"video-bytes"])

    outcome = asyncio.run(pipeline.run(_request("clip.webm;codecs=vp8,opus", total_chunks=1)))

    assert outcome.file_type is MediaKind.VIDEO
    uploaded_path, remote_key = pipeline.uploader.uploads[0]
    assert uploaded_path.name.endswith("_clip.webm")
    assert remote_key == "lab1/1/1700000000500.webm"
    assert pipeline.transcriber.calls[0].name.endswith("_clip-audio.mp3")
    assert pipeline.transcoder.extracted == [uploaded_path]
    assert _leftovers(chunk_store) == []


@pytest.mark.parametrize(("score", "expected"), [(60, True), (59.99, False), (100, True), (0, False)])
def test_pass_threshold_boundary(make_pipeline, put_chunks, fake_llm_factory, reply, score, expected) -> None:
    pipeline = make_pipeline(grader=RubricGrader(fake_llm_factory(reply(score))))
    put_chunks(1, [b"audio"])

    outcome = asyncio.run(pipeline.run(_request(total_chunks=1)))

    assert outcome.is_pass is expected
    assert outcome.attempt.is_pass is expected
    assert outcome.attempt.score == score


def test_malformed_grading_records_nothing(make_pipeline, put_chunks, chunk_store, ledger, fake_llm_factory) -> None:
    pipeline = make_pipeline(grader=RubricGrader(fake_llm_factory("Great job, 85/100")))
    put_chunks(1, [b"audio"])

    with pytest.raises(PipelineFailed) as excinfo:
        asyncio.run(pipeline.run(_request(total_chunks=1)))

    assert excinfo.value.stage is PipelineStage.GRADING
    assert excinfo.value.kind == "grading_response_malformed"
    assert excinfo.value.status_code == 502
    lab = asyncio.run(ledger.find_lab(1, "maternalandchild"))
    assert asyncio.run(ledger.history(1, lab.id)) == []
    assert _leftovers(chunk_store) == []


def test_missing_chunk_stops_before_upload(make_pipeline, chunk_store) -> None:
    pipeline = make_pipeline()

    async def scenario():
        await chunk_store.receive_chunk(1, 0, b"a")
        await chunk_store.receive_chunk(1, 2, b"c")
        await pipeline.run(_request("clip.mp4", total_chunks=3))

    with pytest.raises(PipelineFailed) as excinfo:
        asyncio.run(scenario())

    assert excinfo.value.stage is PipelineStage.ASSEMBLING
    assert isinstance(excinfo.value.cause, ChunkMissing)
    assert excinfo.value.cause.index == 1
    assert excinfo.value.status_code == 400
    assert pipeline.uploader.uploads == []
    assert _leftovers(chunk_store) == []


def test_unknown_lab_discards_chunks(make_pipeline, put_chunks, chunk_store) -> None:
    pipeline = make_pipeline()
    put_chunks(1, [b"a", b"b"])

    with pytest.raises(PipelineFailed) as excinfo:
        asyncio.run(pipeline.run(_request(lab_number=9)))

    assert excinfo.value.stage is PipelineStage.RESOLVING_LAB
    assert excinfo.value.kind == "lab_not_found"
    assert excinfo.value.status_code == 404
    assert _leftovers(chunk_store) == []


def test_unsupported_media_is_cleaned_up(make_pipeline, put_chunks, chunk_store) -> None:
    pipeline = make_pipeline()
    put_chunks(1, [b"text"])

    with pytest.raises(PipelineFailed) as excinfo:
        asyncio.run(pipeline.run(_request("notes.txt", total_chunks=1)))

    assert excinfo.value.stage is PipelineStage.CLASSIFYING
    assert excinfo.value.kind == "unsupported_media_type"
    assert _leftovers(chunk_store) == []


def test_transcription_failure_cancels_upload(make_pipeline, put_chunks, chunk_store) -> None:
    state = {"upload_started": False, "upload_cancelled": False}

    class SlowUploader:
        async def upload(self, local_path: Path, remote_key: str) -> str:
            state["upload_started"] = True
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                state["upload_cancelled"] = True
                raise
            return "never"

    class FailingTranscriber:
        async def transcribe(self, audio_path: Path) -> str:
            await asyncio.sleep(0)
            raise TranscriptionFailed("Transcription failed: 503 - Service Unavailable", 503)

    pipeline = make_pipeline(uploader=SlowUploader(), transcriber=FailingTranscriber())
    put_chunks(1, [b"audio"])

    with pytest.raises(PipelineFailed) as excinfo:
        asyncio.run(pipeline.run(_request(total_chunks=1)))

    assert excinfo.value.stage is PipelineStage.TRANSCRIBING
    assert excinfo.value.kind == "transcription_failed"
    assert state == {"upload_started": True, "upload_cancelled": True}
    assert _leftovers(chunk_store) == []


def test_stage_timeout(make_pipeline, put_chunks, chunk_store) -> None:
    class SlowLlm:
        async def invoke(self, *, system_prompt: str, user_prompt: str) -> str:
            await asyncio.sleep(5)
            return ""

    pipeline = make_pipeline(
        grader=RubricGrader(SlowLlm()),
        timeouts=StageTimeouts(grading=0.05),
    )
    put_chunks(1, [b"audio"])

    with pytest.raises(PipelineFailed) as excinfo:
        asyncio.run(pipeline.run(_request(total_chunks=1)))

    assert excinfo.value.stage is PipelineStage.GRADING
    assert excinfo.value.kind == "stage_timeout"
    assert excinfo.value.status_code == 504
    assert _leftovers(chunk_store) == []


def test_external_stage_retry(make_pipeline, put_chunks, fake_transcriber_cls) -> None:
    class FlakyTranscriber(fake_transcriber_cls):
        async def transcribe(self, audio_path: Path) -> str:
            self.calls.append(audio_path)
            if len(self.calls) == 1:
                raise TranscriptionFailed("Transcription failed: 502 - Bad Gateway", 502)
            return "second try"

    transcriber = FlakyTranscriber()
    pipeline = make_pipeline(
        transcriber=transcriber,
        external_retries=1,
        retry_backoff_seconds=0,
    )
    put_chunks(1, [b"audio"])

    outcome = asyncio.run(pipeline.run(_request(total_chunks=1)))

    assert outcome.transcript == "second try"
    assert len(transcriber.calls) == 2


def test_input_errors_are_not_retried(make_pipeline, chunk_store) -> None:
    pipeline = make_pipeline(external_retries=3, retry_backoff_seconds=0)

    with pytest.raises(PipelineFailed) as excinfo:
        asyncio.run(pipeline.run(_request(total_chunks=1)))

    assert excinfo.value.stage is PipelineStage.ASSEMBLING
    assert excinfo.value.kind == "chunk_missing"


def test_upload_failure_cancels_transcription(make_pipeline, put_chunks, chunk_store, ledger) -> None:
    state = {"transcribe_started": False, "transcribe_cancelled": False}

    class FailingUploader:
        async def upload(self, local_path: Path, remote_key: str) -> str:
            await asyncio.sleep(0)
            raise StorageUploadFailed("Upload failed: AccessDenied")

    class SlowTranscriber:
        async def transcribe(self, audio_path: Path) -> str:
            state["transcribe_started"] = True
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                state["transcribe_cancelled"] = True
                raise
            return "never"

    pipeline = make_pipeline(uploader=FailingUploader(), transcriber=SlowTranscriber())
    put_chunks(1, [b"audio"])

    with pytest.raises(PipelineFailed) as excinfo:
        asyncio.run(pipeline.run(_request(total_chunks=1)))

    assert excinfo.value.stage is PipelineStage.UPLOADING
    assert excinfo.value.kind == "storage_upload_failed"
    assert excinfo.value.status_code == 502
    assert state == {"transcribe_started": True, "transcribe_cancelled": True}
    lab = asyncio.run(ledger.find_lab(1, "maternalandchild"))
    assert asyncio.run(ledger.history(1, lab.id)) == []
    assert _leftovers(chunk_store) == []


def test_cleanup_failure_keeps_the_result(make_pipeline, put_chunks, chunk_store, monkeypatch, caplog) -> None:
    pipeline = make_pipeline()
    put_chunks(1, [b"video-bytes"])
    original_unlink = Path.unlink

    def failing_unlink(self, missing_ok: bool = False) -> None:
        if self.parent == chunk_store.uploads_dir:
            raise OSError("device busy")
        original_unlink(self, missing_ok=missing_ok)

    monkeypatch.setattr(Path, "unlink", failing_unlink)
    with caplog.at_level(logging.ERROR, logger="app.services.submission_pipeline"):
        outcome = asyncio.run(pipeline.run(_request("clip.mp4", total_chunks=1)))
    monkeypatch.undo()

    assert outcome.attempt.attempt == 1
    assert outcome.grading.total_score == 80
    failures = [record for record in caplog.records if "Failed to delete file" in record.getMessage()]
    assert len(failures) == 2
    assert len(list(chunk_store.uploads_dir.iterdir())) == 2


def test_transcoding_timeout_kills_ffmpeg(make_pipeline, put_chunks, chunk_store, fake_ffmpeg) -> None:
    binary = fake_ffmpeg(
        """
        time.sleep(1)
        output.write_bytes(b"late audio")
        """
    )
    pipeline = make_pipeline(
        transcoder=MediaTranscoder(ffmpeg_binary=str(binary)),
        timeouts=StageTimeouts(transcode=0.2),
    )
    put_chunks(1, [b"video"])

    with pytest.raises(PipelineFailed) as excinfo:
        asyncio.run(pipeline.run(_request("clip.mp4", total_chunks=1)))

    assert excinfo.value.stage is PipelineStage.EXTRACTING_AUDIO
    assert excinfo.value.kind == "stage_timeout"
    time.sleep(1.2)
    assert _leftovers(chunk_store) == []


def test_assembly_timeout_leaves_no_files(make_pipeline, tmp_path: Path) -> None:
    class SlowChunkStore(ChunkStore):
        def _append_chunk(self, sink, chunk_path: Path) -> None:
            time.sleep(0.2)
            super()._append_chunk(sink, chunk_path)

    store = SlowChunkStore(tmp_path / "slow-scratch", tmp_path / "slow-uploads")
    pipeline = make_pipeline(chunk_store=store, timeouts=StageTimeouts(assemble=0.1))

    async def scenario() -> None:
        for index in range(4):
            await store.receive_chunk(1, index, b"part")
        await pipeline.run(_request("clip.mp4", total_chunks=4))

    with pytest.raises(PipelineFailed) as excinfo:
        asyncio.run(scenario())

    assert excinfo.value.stage is PipelineStage.ASSEMBLING
    assert excinfo.value.kind == "stage_timeout"
    assert _leftovers(store) == []


def test_transcription_failure_logs_possible_orphan_key(make_pipeline, put_chunks, caplog) -> None:
    class FailingTranscriber:
        async def transcribe(self, audio_path: Path) -> str:
            await asyncio.sleep(0)
            raise TranscriptionFailed("Transcription failed: 503 - Service Unavailable", 503)

    pipeline = make_pipeline(transcriber=FailingTranscriber())
    put_chunks(1, [b"audio"])

    with caplog.at_level(logging.WARNING, logger="app.services.submission_pipeline"):
        with pytest.raises(PipelineFailed):
            asyncio.run(pipeline.run(_request(total_chunks=1)))

    assert any(
        "Possible orphaned upload key=lab1/1/1700000000500.mp3" in record.getMessage()
        for record in caplog.records
    )
