"""Error taxonomy for the submission pipeline.

Every failure the pipeline can report is a ``SubmissionError`` carrying a
stable ``kind`` (exposed to API clients) and the HTTP status the controllers
map it to. ``PipelineFailed`` wraps one of them together with the stage in
which it happened.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar, Sequence

from fastapi import status

if TYPE_CHECKING:  # pragma: no cover
    from app.pipelines.submission.types import PipelineStage


class SubmissionError(RuntimeError):
    """Base class for every error the submission pipeline reports."""

    kind: ClassVar[str] = "submission_error"
    status_code: ClassVar[int] = status.HTTP_500_INTERNAL_SERVER_ERROR
    retryable: ClassVar[bool] = False


# Input errors -----------------------------------------------------------


class NoChunkProvided(SubmissionError):
    kind = "no_chunk_provided"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str = "No chunk uploaded") -> None:
        super().__init__(message)


class InvalidChunkIndex(SubmissionError):
    kind = "invalid_chunk_index"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, chunk_index: int) -> None:
        super().__init__(f"Chunk index must be >= 0, got {chunk_index}")
        self.chunk_index = chunk_index


class ChunkMissing(SubmissionError):
    kind = "chunk_missing"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, index: int, missing: Sequence[int] | None = None) -> None:
        self.index = index
        self.missing = tuple(missing) if missing else (index,)
        super().__init__(f"Chunk {index} is missing from the upload session")


class UnsupportedMediaType(SubmissionError):
    kind = "unsupported_media_type"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, filename: str) -> None:
        super().__init__(f"Unsupported file type: {filename}")
        self.filename = filename


class InvalidLearnerReference(SubmissionError):
    kind = "invalid_learner_reference"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, learner_id: object) -> None:
        super().__init__(f"Invalid studentId: {learner_id!r}")
        self.learner_id = learner_id


# Consistency errors -----------------------------------------------------


class LabNotFound(SubmissionError):
    kind = "lab_not_found"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, lab_number: int, subject: str) -> None:
        super().__init__(f"Lab information not found: lab {lab_number} ({subject})")
        self.lab_number = lab_number
        self.subject = subject


class LedgerConflict(SubmissionError):
    kind = "ledger_conflict"
    status_code = status.HTTP_409_CONFLICT


# External-dependency errors ---------------------------------------------


class TranscodeFailed(SubmissionError):
    kind = "transcode_failed"
    status_code = status.HTTP_502_BAD_GATEWAY


class StorageUploadFailed(SubmissionError):
    kind = "storage_upload_failed"
    status_code = status.HTTP_502_BAD_GATEWAY
    retryable = True


class TranscriptionFailed(SubmissionError):
    kind = "transcription_failed"
    status_code = status.HTTP_502_BAD_GATEWAY
    retryable = True

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.provider_status = status_code


class GradingFailed(SubmissionError):
    kind = "grading_failed"
    status_code = status.HTTP_502_BAD_GATEWAY
    retryable = True


class GradingResponseMalformed(SubmissionError):
    kind = "grading_response_malformed"
    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str, raw_response: str | None = None) -> None:
        super().__init__(message)
        self.raw_response = raw_response


class StageTimeout(SubmissionError):
    kind = "stage_timeout"
    status_code = status.HTTP_504_GATEWAY_TIMEOUT

    def __init__(self, stage: str, timeout_seconds: float) -> None:
        super().__init__(f"Stage '{stage}' timed out after {timeout_seconds:g}s")
        self.timeout_seconds = timeout_seconds


# Orchestrator wrapper ---------------------------------------------------


class PipelineFailed(RuntimeError):
    """Terminal pipeline state: which stage failed and why."""

    def __init__(self, stage: "PipelineStage", cause: BaseException) -> None:
        super().__init__(f"{stage.value}: {cause}")
        self.stage = stage
        self.cause = cause

    @property
    def kind(self) -> str:
        if isinstance(self.cause, SubmissionError):
            return self.cause.kind
        return "internal_error"

    @property
    def status_code(self) -> int:
        if isinstance(self.cause, SubmissionError):
            return self.cause.status_code
        return status.HTTP_500_INTERNAL_SERVER_ERROR


__all__ = [
    "SubmissionError",
    "NoChunkProvided",
    "InvalidChunkIndex",
    "ChunkMissing",
    "UnsupportedMediaType",
    "InvalidLearnerReference",
    "LabNotFound",
    "LedgerConflict",
    "TranscodeFailed",
    "StorageUploadFailed",
    "TranscriptionFailed",
    "GradingFailed",
    "GradingResponseMalformed",
    "StageTimeout",
    "PipelineFailed",
]
