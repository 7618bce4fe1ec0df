"""Orchestration of one submission: chunks in, graded attempt out.

Execution order for `SubmissionPipeline.run`:

1. ``resolving_lab`` – look up the LabDefinition (rubric, threshold, prefix).
2. ``assembling`` – concatenate the uploaded chunks into one local file.
3. ``classifying`` – video or audio, from the file name.
4. ``extracting_audio`` – ffmpeg audio track, video only.
5. ``uploading`` and ``transcribing`` – durable copy and speech-to-text, concurrently.
6. ``grading`` – rubric scoring by the language model.
7. ``recording`` – append the attempt to the ledger.
8. ``cleaning_up`` – delete local files, always.

Any failure stops the run with `PipelineFailed(stage, cause)` after cleanup.
A recording uploaded before a later failure stays in the bucket without an
attempt row; the orphan is logged with its URL, or with its object key when
the run failed while the upload was still in flight.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional, Protocol, TypeVar

from fastapi.concurrency import run_in_threadpool

from app.config.settings import PipelineConfig
from app.errors import PipelineFailed, StageTimeout, SubmissionError
from app.telemetry import observe_pipeline_run, observe_stage

from .chunks import ChunkStore
from .grading import RubricGrader
from .ledger import SubmissionLedger
from .media import MediaTranscoder, media_extension
from .types import (
    GradingResult,
    LabSpec,
    MediaKind,
    NewAttempt,
    PipelineStage,
    SubmissionOutcome,
    SubmissionRequest,
)

logger = logging.getLogger("app.services.submission_pipeline")
transcript_logger = logging.getLogger("app.logs.transcript")

T = TypeVar("T")


class Uploader(Protocol):
    async def upload(self, local_path: Path, remote_key: str) -> str: ...


class Transcriber(Protocol):
    async def transcribe(self, audio_path: Path) -> str: ...


@dataclass(frozen=True)
class StageTimeouts:
    assemble: float = 120.0
    transcode: float = 600.0
    upload: float = 600.0
    transcribe: float = 600.0
    grading: float = 180.0
    record: float = 30.0

    @classmethod
    def from_config(cls, config: PipelineConfig) -> "StageTimeouts":
        return cls(
            assemble=config.assemble_timeout_seconds,
            transcode=config.transcode_timeout_seconds,
            upload=config.upload_timeout_seconds,
            transcribe=config.transcribe_timeout_seconds,
            grading=config.grading_timeout_seconds,
            record=config.record_timeout_seconds,
        )


def _is_retryable(error: BaseException) -> bool:
    if isinstance(error, StageTimeout):
        return True
    return isinstance(error, SubmissionError) and error.retryable


def _upload_may_finish(failure: PipelineFailed) -> bool:
    """True when the upload task was cancelled or timed out rather than rejected."""

    if failure.stage is PipelineStage.UPLOADING:
        return isinstance(failure.cause, StageTimeout)
    return failure.stage is PipelineStage.TRANSCRIBING


class SubmissionPipeline:
    """Coordinates the submission stages for one learner upload at a time.

    Collaborators are injected so each can be swapped for a fake. The
    pipeline holds no per-run state; concurrent runs only share the scratch
    directories, whose file names are partitioned per learner and timestamp.
    """

    def __init__(
        self,
        *,
        chunk_store: ChunkStore,
        transcoder: MediaTranscoder,
        uploader: Uploader,
        transcriber: Transcriber,
        grader: RubricGrader,
        ledger: SubmissionLedger,
        timeouts: StageTimeouts | None = None,
        external_retries: int = 0,
        retry_backoff_seconds: float = 1.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.chunk_store = chunk_store
        self.transcoder = transcoder
        self.uploader = uploader
        self.transcriber = transcriber
        self.grader = grader
        self.ledger = ledger
        self._timeouts = timeouts or StageTimeouts()
        self._external_retries = external_retries
        self._retry_backoff_seconds = retry_backoff_seconds
        self._clock = clock

    def remote_key(self, lab: LabSpec, learner_id: object, file_name: str) -> str:
        """`{prefix}/{learner}/{timestamp_ms}{ext}`; the timestamp keeps keys unique."""

        stamp = int(self._clock() * 1000)
        return f"{lab.storage_prefix}/{learner_id}/{stamp}{media_extension(file_name)}"

    async def run(self, request: SubmissionRequest) -> SubmissionOutcome:
        """Execute every stage for one upload session and record the attempt."""

        scratch: list[Path] = []
        remote_key: Optional[str] = None
        file_url: Optional[str] = None
        logger.info(
            "Pipeline start learner=%s lab=%s/%s file=%s chunks=%s",
            request.learner_id,
            request.subject,
            request.lab_number,
            request.file_name,
            request.total_chunks,
        )
        try:
            try:
                lab = await self._run_stage(
                    PipelineStage.RESOLVING_LAB,
                    lambda: self.ledger.find_lab(request.lab_number, request.subject),
                    self._timeouts.record,
                )
            except PipelineFailed:
                await self._discard_chunks(request)
                raise

            media_path = self.chunk_store.output_path(request.learner_id, request.file_name)
            scratch.append(media_path)
            await self._run_stage(
                PipelineStage.ASSEMBLING,
                lambda: self.chunk_store.assemble(
                    request.learner_id,
                    request.total_chunks,
                    request.file_name,
                    request.upload_id,
                    output=media_path,
                ),
                self._timeouts.assemble,
            )

            kind = await self._run_stage(
                PipelineStage.CLASSIFYING,
                lambda: self._classify(request.file_name),
                self._timeouts.assemble,
            )

            audio_path = media_path
            if kind is MediaKind.VIDEO:
                audio_path = self.transcoder.audio_path_for(media_path)
                scratch.append(audio_path)
                await self._run_stage(
                    PipelineStage.EXTRACTING_AUDIO,
                    lambda: self.transcoder.extract_audio(media_path),
                    self._timeouts.transcode,
                )

            remote_key = self.remote_key(lab, request.learner_id, request.file_name)
            file_url, transcript = await self._upload_and_transcribe(
                media_path, audio_path, remote_key
            )
            transcript_logger.info(
                "learner=%s | lab=%s/%s | text=%s",
                request.learner_id,
                lab.subject,
                lab.lab_number,
                transcript,
            )

            grading: GradingResult = await self._run_stage(
                PipelineStage.GRADING,
                lambda: self.grader.grade(
                    transcript,
                    lab.rubric_text,
                    lab.rubric_instructions,
                    lab.feedback_language,
                ),
                self._timeouts.grading,
                retries=self._external_retries,
            )
            is_pass = lab.is_passing(grading.total_score)

            recorded = await self._run_stage(
                PipelineStage.RECORDING,
                lambda: self.ledger.record(
                    NewAttempt(
                        learner_id=request.learner_id,
                        lab_number=lab.lab_number,
                        subject=lab.subject,
                        file_url=file_url,
                        file_type=kind.value,
                        transcript=transcript,
                        score=grading.total_score,
                        is_pass=is_pass,
                        pros=grading.pros,
                        recommendations=grading.recommendations,
                        rubric_version=lab.rubric_version,
                    )
                ),
                self._timeouts.record,
            )
        except PipelineFailed as failure:
            observe_pipeline_run("failed")
            if file_url is not None:
                logger.warning(
                    "Orphaned upload %s: stage %s failed after the media was stored",
                    file_url,
                    failure.stage.value,
                )
            elif remote_key is not None and _upload_may_finish(failure):
                logger.warning(
                    "Possible orphaned upload key=%s: stage %s failed while the upload was in flight",
                    remote_key,
                    failure.stage.value,
                )
            raise
        finally:
            await self._cleanup(scratch)

        observe_pipeline_run("succeeded")
        logger.info(
            "Pipeline done learner=%s lab=%s/%s attempt=%s score=%.2f pass=%s",
            request.learner_id,
            lab.subject,
            lab.lab_number,
            recorded.attempt,
            grading.total_score,
            is_pass,
        )
        return SubmissionOutcome(
            transcript=transcript,
            grading=grading,
            is_pass=is_pass,
            file_url=file_url,
            file_type=kind,
            attempt=recorded,
            lab=lab,
        )

    async def _classify(self, file_name: str) -> MediaKind:
        return self.transcoder.classify(file_name)

    async def _upload_and_transcribe(
        self,
        media_path: Path,
        audio_path: Path,
        remote_key: str,
    ) -> tuple[str, str]:
        """Run the upload and the transcription side by side.

        If either fails the other task is cancelled before the failure
        propagates. The boto3 transfer runs in a worker thread that cancellation
        cannot stop, so the object may still land in the bucket; the caller
        logs the key as a possible orphan.
        """

        upload_task = asyncio.create_task(
            self._run_stage(
                PipelineStage.UPLOADING,
                lambda: self.uploader.upload(media_path, remote_key),
                self._timeouts.upload,
                retries=self._external_retries,
            )
        )
        transcribe_task = asyncio.create_task(
            self._run_stage(
                PipelineStage.TRANSCRIBING,
                lambda: self.transcriber.transcribe(audio_path),
                self._timeouts.transcribe,
                retries=self._external_retries,
            )
        )
        tasks = (upload_task, transcribe_task)
        try:
            file_url, transcript = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        return file_url, transcript

    async def _run_stage(
        self,
        stage: PipelineStage,
        operation: Callable[[], Awaitable[T]],
        timeout: float,
        *,
        retries: int = 0,
    ) -> T:
        """Run one stage under a timeout; wrap any failure as `PipelineFailed`."""

        attempt = 0
        while True:
            started = time.perf_counter()
            try:
                result = await asyncio.wait_for(operation(), timeout)
            except asyncio.TimeoutError:
                error: BaseException = StageTimeout(stage.value, timeout)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                error = exc
            else:
                observe_stage(stage.value, time.perf_counter() - started)
                return result

            kind = error.kind if isinstance(error, SubmissionError) else "internal_error"
            observe_stage(stage.value, time.perf_counter() - started, kind)

            if attempt < retries and _is_retryable(error):
                attempt += 1
                delay = self._retry_backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "Stage %s failed (%s), retry %s/%s in %.1fs",
                    stage.value,
                    error,
                    attempt,
                    retries,
                    delay,
                )
                await asyncio.sleep(delay)
                continue

            if isinstance(error, SubmissionError):
                logger.error("Stage %s failed: %s", stage.value, error)
            else:
                logger.exception("Stage %s crashed", stage.value, exc_info=error)
            raise PipelineFailed(stage, error) from error

    async def _discard_chunks(self, request: SubmissionRequest) -> None:
        try:
            await self.chunk_store.discard(
                request.learner_id, request.total_chunks, request.upload_id
            )
        except Exception:
            logger.exception("Failed to discard chunks for learner=%s", request.learner_id)

    async def _cleanup(self, paths: list[Path]) -> None:
        """Delete scratch files; errors are logged, never raised."""

        if not paths:
            return
        started = time.perf_counter()
        try:
            failed = await run_in_threadpool(_remove_files, list(paths))
        except Exception:
            logger.exception("Cleanup crashed for %s", [str(path) for path in paths])
            observe_stage(PipelineStage.CLEANING_UP.value, time.perf_counter() - started, "cleanup_failed")
            return
        observe_stage(
            PipelineStage.CLEANING_UP.value,
            time.perf_counter() - started,
            "cleanup_failed" if failed else None,
        )


def _remove_files(paths: list[Path]) -> list[Path]:
    failed: list[Path] = []
    for path in paths:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            failed.append(path)
            logger.error("Failed to delete file: %s (%s)", path, exc)
    return failed


__all__ = ["StageTimeouts", "SubmissionPipeline", "Transcriber", "Uploader"]
