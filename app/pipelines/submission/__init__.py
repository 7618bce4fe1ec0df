"""Submission grading pipeline package.

Modules are organised by the order in which a lab submission executes:

1. `chunks` – receive chunked uploads and assemble them into one file.
2. `media` – classify video/audio and extract the audio track.
3. `prompts` – embed transcript and answer key into the grading prompt.
4. `grading` – call the language model and validate its JSON reply.
5. `ledger` – lab lookups and append-only attempt records.
6. `flow` – the orchestrator that runs the stages end to end.

The FastAPI controllers import from here so contributors can jump straight
to the relevant stage without wading through a single monolithic file.
"""

from .chunks import ChunkStore, clean_filename
from .flow import StageTimeouts, SubmissionPipeline
from .grading import LlmClient, RubricGrader
from .ledger import SubmissionLedger, parse_learner_id
from .media import MediaTranscoder, classify, media_extension
from .prompts import build_grading_prompt
from .types import (
    GradingResult,
    LabSpec,
    LabStatus,
    MediaKind,
    NewAttempt,
    PipelineStage,
    RecordedAttempt,
    SubmissionOutcome,
    SubmissionRequest,
)

__all__ = [
    "ChunkStore",
    "GradingResult",
    "LabSpec",
    "LabStatus",
    "LlmClient",
    "MediaKind",
    "MediaTranscoder",
    "NewAttempt",
    "PipelineStage",
    "RecordedAttempt",
    "RubricGrader",
    "StageTimeouts",
    "SubmissionLedger",
    "SubmissionOutcome",
    "SubmissionPipeline",
    "SubmissionRequest",
    "build_grading_prompt",
    "classify",
    "clean_filename",
    "media_extension",
    "parse_learner_id",
]
