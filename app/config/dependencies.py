"""Wiring of the submission pipeline collaborators from settings."""

from __future__ import annotations

from pathlib import Path

from app.pipelines.submission import (
    ChunkStore,
    MediaTranscoder,
    RubricGrader,
    StageTimeouts,
    SubmissionLedger,
    SubmissionPipeline,
)
from app.pipelines.submission.ledger import SessionFactory
from app.services.llm_client import BedrockLlmClient
from app.services.storage import ObjectUploader
from app.services.transcribe import TranscriptionClient

from .settings import Settings


def build_ledger(app_settings: Settings, session_factory: SessionFactory) -> SubmissionLedger:
    return SubmissionLedger(
        session_factory,
        conflict_retries=app_settings.pipeline.ledger_conflict_retries,
    )


def build_submission_pipeline(
    app_settings: Settings,
    session_factory: SessionFactory,
) -> SubmissionPipeline:
    """Create the production pipeline: boto3, httpx, Bedrock and ffmpeg backed."""

    pipeline_cfg = app_settings.pipeline
    return SubmissionPipeline(
        chunk_store=ChunkStore(Path(pipeline_cfg.scratch_dir), Path(pipeline_cfg.uploads_dir)),
        transcoder=MediaTranscoder(
            ffmpeg_binary=app_settings.media.ffmpeg_binary,
            audio_codec=app_settings.media.audio_codec,
            audio_extension=app_settings.media.audio_extension,
        ),
        uploader=ObjectUploader(app_settings.storage),
        transcriber=TranscriptionClient(app_settings.transcription),
        grader=RubricGrader(
            BedrockLlmClient(app_settings.bedrock),
            json_retries=pipeline_cfg.grading_json_retries,
        ),
        ledger=build_ledger(app_settings, session_factory),
        timeouts=StageTimeouts.from_config(pipeline_cfg),
        external_retries=pipeline_cfg.external_retries,
        retry_backoff_seconds=pipeline_cfg.retry_backoff_seconds,
    )


__all__ = ["build_ledger", "build_submission_pipeline"]
