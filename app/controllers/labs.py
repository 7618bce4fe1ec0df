"""Lab submission endpoints.

A recording reaches the grader in two steps:

1. `POST /lab/upload-chunk` once per chunk; chunks land in scratch space.
2. `POST /lab/upload-{labNumber}` (or `/lab/upload-test`) assembles the chunks
   and runs `app.pipelines.submission.flow.SubmissionPipeline`, which uploads,
   transcribes, grades and records the attempt.

Stage failures surface as `PipelineFailed` and are rendered by the handler
registered in `app.main`.
"""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, File, Form, Path, UploadFile

from app.config.settings import settings
from app.controllers.dependencies import (
    CurrentLearnerDep,
    GradingStaffDep,
    LedgerDep,
    PipelineDep,
)
from app.errors import NoChunkProvided
from app.pipelines.submission import NewAttempt, SubmissionPipeline, SubmissionRequest
from app.views import (
    ChunkUploadResponse,
    LabUploadRequest,
    LabUploadResponse,
    SubmitLabRequest,
    SubmitLabResponse,
)

router = APIRouter(prefix="/lab", tags=["lab"])

logger = logging.getLogger(__name__)

_CHUNK_FILE = File(None)
_CHUNK_INDEX_FORM = Form(..., alias="chunkIndex")
_TOTAL_CHUNKS_FORM = Form(None, alias="totalChunks")
_UPLOAD_ID_FORM = Form(None, alias="uploadId")


@router.post("/upload-chunk")
async def upload_chunk(
    learner_id: CurrentLearnerDep,
    pipeline: PipelineDep,
    chunk: Optional[UploadFile] = _CHUNK_FILE,
    chunk_index: int = _CHUNK_INDEX_FORM,
    total_chunks: Optional[int] = _TOTAL_CHUNKS_FORM,
    upload_id: Optional[str] = _UPLOAD_ID_FORM,
) -> ChunkUploadResponse:
    """Store one chunk of a learner's recording in scratch space."""

    if chunk is None:
        raise NoChunkProvided()

    data = await chunk.read()
    await pipeline.chunk_store.receive_chunk(learner_id, chunk_index, data, upload_id)
    logger.debug(
        "Chunk %s/%s received learner=%s upload=%s",
        chunk_index + 1,
        total_chunks if total_chunks is not None else "?",
        learner_id,
        upload_id,
    )
    return ChunkUploadResponse(
        message="Chunk uploaded successfully",
        chunk_index=chunk_index,
        upload_id=upload_id,
    )


@router.post("/upload-test")
async def upload_test(
    payload: LabUploadRequest,
    learner_id: CurrentLearnerDep,
    pipeline: PipelineDep,
) -> LabUploadResponse:
    """Grade an upload against the default lab."""

    return await _run_submission(
        pipeline,
        learner_id,
        settings.labs.default_lab_number,
        payload.subject or settings.labs.default_subject,
        payload,
    )


@router.post("/upload-{lab_number}")
async def upload_lab(
    lab_number: Annotated[int, Path(ge=1)],
    payload: LabUploadRequest,
    learner_id: CurrentLearnerDep,
    pipeline: PipelineDep,
) -> LabUploadResponse:
    """Assemble the learner's chunks and grade them against the lab rubric."""

    return await _run_submission(
        pipeline,
        learner_id,
        lab_number,
        payload.subject or settings.labs.default_subject,
        payload,
    )


@router.post("/submit-lab")
async def submit_lab(
    payload: SubmitLabRequest,
    staff: GradingStaffDep,
    ledger: LedgerDep,
) -> SubmitLabResponse:
    """Record an already graded attempt without running the pipeline.

    Only professor or admin tokens may call this; learners go through the
    upload endpoints, which grade their own recording.
    """

    recorded = await ledger.record(
        NewAttempt(
            learner_id=payload.student_id,
            lab_number=payload.lab_number,
            subject=payload.subject,
            file_url=payload.file_url,
            file_type=payload.file_type,
            transcript=payload.student_answer,
            score=payload.student_score,
            is_pass=payload.is_pass,
            pros=payload.pros,
            recommendations=payload.recommendations,
        )
    )
    logger.info(
        "Attempt recorded directly by=%s learner=%s lab=%s/%s attempt=%s",
        staff.learner_reference,
        recorded.learner_id,
        payload.subject,
        payload.lab_number,
        recorded.attempt,
    )
    return SubmitLabResponse(
        message="Lab information submitted successfully",
        attempt=recorded.attempt,
    )


async def _run_submission(
    pipeline: SubmissionPipeline,
    learner_id: int,
    lab_number: int,
    subject: str,
    payload: LabUploadRequest,
) -> LabUploadResponse:
    outcome = await pipeline.run(
        SubmissionRequest(
            learner_id=learner_id,
            lab_number=lab_number,
            subject=subject,
            file_name=payload.file_name,
            total_chunks=payload.total_chunks,
            upload_id=payload.upload_id,
        )
    )
    return LabUploadResponse.from_outcome(outcome)
