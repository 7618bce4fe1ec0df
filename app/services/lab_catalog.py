"""Seed helpers for the lab catalog (LabDefinition rows)."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from sqlalchemy import select

from app.models import LabDefinition
from app.pipelines.submission.ledger import SessionFactory

logger = logging.getLogger(__name__)


class LabCatalogError(RuntimeError):
    """Raised when the seed file cannot be read or validated."""


class LabSeed(BaseModel):
    """One lab entry in the seed file."""

    lab_number: int = Field(alias="labNumber", ge=1)
    subject: str = Field(min_length=1, max_length=64)
    display_name: Optional[str] = Field(default=None, alias="displayName")
    rubric_text: str = Field(alias="rubric", min_length=1)
    rubric_instructions: str = Field(default="", alias="instructions")
    rubric_version: str = Field(default="1", alias="rubricVersion")
    pass_threshold: float = Field(default=60.0, alias="passThreshold", ge=0.0, le=100.0)
    storage_prefix: Optional[str] = Field(default=None, alias="storagePrefix")
    feedback_language: Optional[str] = Field(default=None, alias="feedbackLanguage")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("subject")
    @classmethod
    def _normalise_subject(cls, value: str) -> str:
        return value.strip()

    def to_model(self) -> LabDefinition:
        return LabDefinition(
            lab_number=self.lab_number,
            subject=self.subject,
            display_name=self.display_name or f"Lab {self.lab_number}",
            rubric_text=self.rubric_text,
            rubric_instructions=self.rubric_instructions,
            rubric_version=self.rubric_version,
            pass_threshold=self.pass_threshold,
            storage_prefix=self.storage_prefix or f"lab{self.lab_number}",
            feedback_language=self.feedback_language,
        )


def load_seed_file(path: str | Path) -> list[LabSeed]:
    """Parse a JSON array of lab entries."""

    seed_path = Path(path)
    try:
        raw = json.loads(seed_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise LabCatalogError(f"Cannot read lab seed file {seed_path}: {exc}") from exc

    if not isinstance(raw, list):
        raise LabCatalogError(f"Lab seed file {seed_path} must contain a JSON array")

    try:
        return [LabSeed.model_validate(entry) for entry in raw]
    except ValidationError as exc:
        raise LabCatalogError(f"Invalid lab entry in {seed_path}: {exc}") from exc


async def seed_labs(session_factory: SessionFactory, seeds: Iterable[LabSeed]) -> int:
    """Insert labs that do not exist yet; existing rows are left untouched.

    Returns the number of inserted rows.
    """

    inserted = 0
    async with session_factory() as session:
        result = await session.execute(
            select(LabDefinition.lab_number, LabDefinition.subject)
        )
        existing = {(row.lab_number, row.subject) for row in result.all()}

        for seed in seeds:
            key = (seed.lab_number, seed.subject)
            if key in existing:
                logger.debug("Lab %s/%s already present; skipping", seed.subject, seed.lab_number)
                continue
            session.add(seed.to_model())
            existing.add(key)
            inserted += 1

        if inserted:
            await session.commit()

    logger.info("Lab catalog seeded: %s new lab(s)", inserted)
    return inserted


async def seed_labs_from_file(session_factory: SessionFactory, path: str | Path) -> int:
    return await seed_labs(session_factory, load_seed_file(path))


__all__ = [
    "LabCatalogError",
    "LabSeed",
    "load_seed_file",
    "seed_labs",
    "seed_labs_from_file",
]
