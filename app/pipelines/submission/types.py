"""Typed containers shared across the submission pipeline.

These live in their own module so the stage modules (`chunks`, `media`,
`grading`, `ledger`, `flow`) can import them without circular imports.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class MediaKind(str, Enum):
    VIDEO = "video"
    AUDIO = "audio"


class PipelineStage(str, Enum):
    """States of one pipeline run, in execution order."""

    RESOLVING_LAB = "resolving_lab"
    ASSEMBLING = "assembling"
    CLASSIFYING = "classifying"
    EXTRACTING_AUDIO = "extracting_audio"
    UPLOADING = "uploading"
    TRANSCRIBING = "transcribing"
    GRADING = "grading"
    RECORDING = "recording"
    CLEANING_UP = "cleaning_up"
    DONE = "done"


@dataclass(frozen=True)
class GradingResult:
    """Validated grader output."""

    total_score: float
    pros: str
    recommendations: str


@dataclass(frozen=True)
class LabSpec:
    """Read-only snapshot of a LabDefinition row handed to the stages."""

    id: int
    lab_number: int
    subject: str
    display_name: str
    rubric_text: str
    rubric_instructions: str
    rubric_version: str
    pass_threshold: float
    storage_prefix: str
    feedback_language: Optional[str] = None

    def is_passing(self, score: float) -> bool:
        return float(score) >= float(self.pass_threshold)


@dataclass(frozen=True)
class SubmissionRequest:
    """Everything the orchestrator needs to grade one assembled upload."""

    learner_id: int
    lab_number: int
    subject: str
    file_name: str
    total_chunks: int
    upload_id: Optional[str] = None


@dataclass(frozen=True)
class NewAttempt:
    """Payload for SubmissionLedger.record; the ledger assigns the ordinal."""

    learner_id: object
    lab_number: int
    subject: str
    file_url: Optional[str]
    file_type: Optional[str]
    transcript: str
    score: float
    is_pass: bool
    pros: str
    recommendations: str
    rubric_version: Optional[str] = None


@dataclass(frozen=True)
class RecordedAttempt:
    """Detached view of a persisted SubmissionAttempt row."""

    id: int
    learner_id: int
    lab_definition_id: int
    file_url: Optional[str]
    file_type: Optional[str]
    transcript: str
    score: float
    is_pass: bool
    pros: str
    recommendations: str
    attempt: int
    rubric_version: Optional[str]
    created_at: datetime


@dataclass(frozen=True)
class LabStatus:
    """Derived per-lab status for one learner."""

    lab: LabSpec
    attempts: int
    ever_passed: bool
    latest: Optional[RecordedAttempt]


@dataclass(frozen=True)
class SubmissionOutcome:
    """Successful pipeline result returned to the controller."""

    transcript: str
    grading: GradingResult
    is_pass: bool
    file_url: str
    file_type: MediaKind
    attempt: RecordedAttempt
    lab: LabSpec


__all__ = [
    "MediaKind",
    "PipelineStage",
    "GradingResult",
    "LabSpec",
    "SubmissionRequest",
    "NewAttempt",
    "RecordedAttempt",
    "LabStatus",
    "SubmissionOutcome",
]
