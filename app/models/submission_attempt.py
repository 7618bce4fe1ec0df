"""SQLAlchemy model for graded lab attempts (append-only)."""

from __future__ import annotations

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from app.models.base import Base, utcnow

class SubmissionAttempt(Base):
    __tablename__ = "submission_attempts"
    __table_args__ = (
        # Two concurrent submissions cannot both claim the same ordinal.
        UniqueConstraint(
            "learner_id",
            "lab_definition_id",
            "attempt",
            name="uq_submission_attempts_learner_lab_attempt",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    learner_id = Column(BigInteger, nullable=False, index=True)
    lab_definition_id = Column(
        ForeignKey("lab_definitions.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    file_url = Column(String(2048), nullable=True)
    file_type = Column(String(16), nullable=True)
    transcript = Column(Text, nullable=False, default="")
    score = Column(Float, nullable=False)
    is_pass = Column(Boolean, nullable=False)
    pros = Column(Text, nullable=False, default="")
    recommendations = Column(Text, nullable=False, default="")
    attempt = Column(Integer, nullable=False)
    rubric_version = Column(String(32), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


__all__ = ["SubmissionAttempt"]
