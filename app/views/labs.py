"""Pydantic schemas for lab submission and learner status endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import Field, field_validator

from app.pipelines.submission import LabSpec, LabStatus, RecordedAttempt, SubmissionOutcome
from app.views.common import CamelModel


class ChunkUploadResponse(CamelModel):
    message: str
    chunk_index: int
    upload_id: Optional[str] = None


class LabUploadRequest(CamelModel):
    """Finish an upload session and grade the assembled recording."""

    file_name: str = Field(min_length=1, max_length=255)
    total_chunks: int = Field(ge=1)
    subject: Optional[str] = Field(default=None, max_length=64)
    upload_id: Optional[str] = Field(default=None, max_length=128)

    @field_validator("subject")
    @classmethod
    def _strip_subject(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None


class GradingFeedback(CamelModel):
    total_score: float
    pros: str
    recommendations: str


class LabUploadResponse(CamelModel):
    feedback: GradingFeedback
    transcription: str
    pass_fail_status: str
    score: float
    pros: str
    recommendations: str
    file_url: str
    file_type: str
    attempt: int

    @classmethod
    def from_outcome(cls, outcome: SubmissionOutcome) -> "LabUploadResponse":
        grading = outcome.grading
        return cls(
            feedback=GradingFeedback(
                total_score=grading.total_score,
                pros=grading.pros,
                recommendations=grading.recommendations,
            ),
            transcription=outcome.transcript,
            pass_fail_status="Pass" if outcome.is_pass else "Fail",
            score=grading.total_score,
            pros=grading.pros,
            recommendations=grading.recommendations,
            file_url=outcome.file_url,
            file_type=outcome.file_type.value,
            attempt=outcome.attempt.attempt,
        )


class SubmitLabRequest(CamelModel):
    """Direct attempt insert used by admin tooling and the legacy client."""

    student_id: Any
    lab_number: int = Field(ge=1)
    subject: str = Field(min_length=1, max_length=64)
    file_url: Optional[str] = None
    file_type: Optional[str] = None
    student_answer: str = ""
    student_score: float = Field(ge=0.0, le=100.0)
    is_pass: bool
    pros: str = ""
    recommendations: str = ""


class SubmitLabResponse(CamelModel):
    message: str
    attempt: int


class LabInfo(CamelModel):
    id: int
    lab_number: int
    subject: str
    display_name: str
    pass_threshold: float
    rubric_version: str

    @classmethod
    def from_spec(cls, lab: LabSpec) -> "LabInfo":
        return cls(
            id=lab.id,
            lab_number=lab.lab_number,
            subject=lab.subject,
            display_name=lab.display_name,
            pass_threshold=lab.pass_threshold,
            rubric_version=lab.rubric_version,
        )


class AttemptRecord(CamelModel):
    attempt: int
    score: float
    is_pass: bool
    file_url: Optional[str] = None
    file_type: Optional[str] = None
    student_answer: str
    pros: str
    recommendations: str
    rubric_version: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_recorded(cls, record: RecordedAttempt) -> "AttemptRecord":
        return cls(
            attempt=record.attempt,
            score=record.score,
            is_pass=record.is_pass,
            file_url=record.file_url,
            file_type=record.file_type,
            student_answer=record.transcript,
            pros=record.pros,
            recommendations=record.recommendations,
            rubric_version=record.rubric_version,
            created_at=record.created_at,
        )


class LabStatusItem(CamelModel):
    lab_info: LabInfo
    attempts: int
    ever_passed: bool
    latest_attempt: Optional[int] = None
    latest_score: Optional[float] = None
    is_pass: Optional[bool] = None

    @classmethod
    def from_status(cls, status: LabStatus) -> "LabStatusItem":
        latest = status.latest
        return cls(
            lab_info=LabInfo.from_spec(status.lab),
            attempts=status.attempts,
            ever_passed=status.ever_passed,
            latest_attempt=latest.attempt if latest else None,
            latest_score=latest.score if latest else None,
            is_pass=latest.is_pass if latest else None,
        )


class LabStatusResponse(CamelModel):
    labs: list[LabStatusItem]


class LabHistoryResponse(CamelModel):
    lab_info: LabInfo
    lab_submissions: list[AttemptRecord]
