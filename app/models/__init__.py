"""SQLAlchemy models for the lab catalog and the attempt ledger."""

from .base import Base
from .lab_definition import LabDefinition  # noqa: F401
from .submission_attempt import SubmissionAttempt  # noqa: F401

__all__ = [
    "Base",
    "LabDefinition",
    "SubmissionAttempt",
]
