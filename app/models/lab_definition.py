"""SQLAlchemy model for gradable lab exercises."""

from __future__ import annotations

from sqlalchemy import Column, DateTime, Float, Integer, String, Text, UniqueConstraint

from app.models.base import Base, utcnow


class LabDefinition(Base):
    """One gradable exercise, identified by (lab_number, subject).

    Rows are written by seed/admin tooling only; the submission pipeline reads
    them to pick the rubric, pass threshold and storage prefix.
    """

    __tablename__ = "lab_definitions"
    __table_args__ = (
        UniqueConstraint("lab_number", "subject", name="uq_lab_definitions_number_subject"),
    )

    id = Column(Integer, primary_key=True, index=True)
    lab_number = Column(Integer, nullable=False, index=True)
    subject = Column(String(64), nullable=False, index=True)
    display_name = Column(String(255), nullable=False)
    rubric_text = Column(Text, nullable=False)
    rubric_instructions = Column(Text, nullable=False, default="")
    rubric_version = Column(String(32), nullable=False, default="1")
    pass_threshold = Column(Float, nullable=False, default=60.0)
    storage_prefix = Column(String(64), nullable=False)
    feedback_language = Column(String(32), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


__all__ = ["LabDefinition"]
