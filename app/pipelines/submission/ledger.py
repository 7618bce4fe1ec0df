"""Attempt ledger: lab lookup, attempt numbering and append-only history."""

from __future__ import annotations

import logging
from collections import defaultdict
from contextlib import AbstractAsyncContextManager
from typing import Callable, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import InvalidLearnerReference, LabNotFound, LedgerConflict
from app.models import LabDefinition, SubmissionAttempt

from .types import LabSpec, LabStatus, NewAttempt, RecordedAttempt

logger = logging.getLogger("app.services.submission_pipeline")

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

MAX_LEARNER_ID = 2**63 - 1


def parse_learner_id(value: object) -> int:
    """Learner ids are positive 64-bit integers, given as int or a string of digits."""

    if isinstance(value, bool):
        raise InvalidLearnerReference(value)
    if isinstance(value, int):
        learner_id = value
    elif isinstance(value, str) and value.strip().isdigit():
        learner_id = int(value.strip())
    else:
        raise InvalidLearnerReference(value)
    if learner_id <= 0 or learner_id > MAX_LEARNER_ID:
        raise InvalidLearnerReference(value)
    return learner_id


def to_lab_spec(row: LabDefinition) -> LabSpec:
    return LabSpec(
        id=row.id,
        lab_number=row.lab_number,
        subject=row.subject,
        display_name=row.display_name,
        rubric_text=row.rubric_text,
        rubric_instructions=row.rubric_instructions or "",
        rubric_version=row.rubric_version,
        pass_threshold=float(row.pass_threshold),
        storage_prefix=row.storage_prefix,
        feedback_language=row.feedback_language,
    )


def to_recorded(row: SubmissionAttempt) -> RecordedAttempt:
    return RecordedAttempt(
        id=row.id,
        learner_id=row.learner_id,
        lab_definition_id=row.lab_definition_id,
        file_url=row.file_url,
        file_type=row.file_type,
        transcript=row.transcript,
        score=float(row.score),
        is_pass=bool(row.is_pass),
        pros=row.pros,
        recommendations=row.recommendations,
        attempt=row.attempt,
        rubric_version=row.rubric_version,
        created_at=row.created_at,
    )


class SubmissionLedger:
    """Data access for LabDefinition lookups and SubmissionAttempt rows.

    Rows are only ever inserted. The attempt ordinal is computed and inserted
    in one transaction; the unique (learner, lab, attempt) constraint rejects a
    concurrent duplicate, in which case the insert is retried with a fresh count.
    """

    def __init__(self, session_factory: SessionFactory, conflict_retries: int = 3) -> None:
        self._session_factory = session_factory
        self._conflict_retries = conflict_retries

    async def find_lab(self, lab_number: int, subject: str) -> LabSpec:
        async with self._session_factory() as session:
            return to_lab_spec(await self._lab_row(session, lab_number, subject))

    async def list_labs(self) -> list[LabSpec]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(LabDefinition).order_by(LabDefinition.subject, LabDefinition.lab_number)
            )
            return [to_lab_spec(row) for row in result.scalars().all()]

    async def next_attempt_number(self, learner_id: object, lab_id: int) -> int:
        learner = parse_learner_id(learner_id)
        async with self._session_factory() as session:
            return await self._count_attempts(session, learner, lab_id) + 1

    async def record(self, attempt: NewAttempt) -> RecordedAttempt:
        """Insert one attempt and return it with its assigned ordinal."""

        learner = parse_learner_id(attempt.learner_id)

        for retry in range(self._conflict_retries + 1):
            async with self._session_factory() as session:
                lab = await self._lab_row(session, attempt.lab_number, attempt.subject)
                lab_id = lab.id
                rubric_version = attempt.rubric_version or lab.rubric_version
                ordinal = await self._count_attempts(session, learner, lab_id) + 1
                row = SubmissionAttempt(
                    learner_id=learner,
                    lab_definition_id=lab_id,
                    file_url=attempt.file_url,
                    file_type=attempt.file_type,
                    transcript=attempt.transcript,
                    score=float(attempt.score),
                    is_pass=bool(attempt.is_pass),
                    pros=attempt.pros,
                    recommendations=attempt.recommendations,
                    attempt=ordinal,
                    rubric_version=rubric_version,
                )
                session.add(row)
                try:
                    await session.flush()
                    recorded = to_recorded(row)
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    logger.warning(
                        "Attempt number collision learner=%s lab=%s attempt=%s retry=%s",
                        learner,
                        lab_id,
                        ordinal,
                        retry + 1,
                    )
                    continue

            logger.info(
                "Recorded attempt learner=%s lab=%s/%s attempt=%s score=%.2f pass=%s",
                learner,
                attempt.subject,
                attempt.lab_number,
                recorded.attempt,
                recorded.score,
                recorded.is_pass,
            )
            return recorded

        raise LedgerConflict(
            f"Could not assign an attempt number for learner {learner} after "
            f"{self._conflict_retries + 1} tries"
        )

    async def history(self, learner_id: object, lab_id: int) -> list[RecordedAttempt]:
        """All attempts of one learner at one lab, ordered by attempt ascending."""

        learner = parse_learner_id(learner_id)
        async with self._session_factory() as session:
            result = await session.execute(
                select(SubmissionAttempt)
                .where(SubmissionAttempt.learner_id == learner)
                .where(SubmissionAttempt.lab_definition_id == lab_id)
                .order_by(SubmissionAttempt.attempt)
            )
            return [to_recorded(row) for row in result.scalars().all()]

    async def lab_statuses(self, learner_id: object) -> list[LabStatus]:
        """Every lab with the learner's derived status (attempts, ever passed, latest)."""

        learner = parse_learner_id(learner_id)
        labs = await self.list_labs()
        async with self._session_factory() as session:
            result = await session.execute(
                select(SubmissionAttempt)
                .where(SubmissionAttempt.learner_id == learner)
                .order_by(SubmissionAttempt.lab_definition_id, SubmissionAttempt.attempt)
            )
            rows = result.scalars().all()

        by_lab: dict[int, list[RecordedAttempt]] = defaultdict(list)
        for row in rows:
            by_lab[row.lab_definition_id].append(to_recorded(row))

        return [self._status(lab, by_lab.get(lab.id, [])) for lab in labs]

    @staticmethod
    def _status(lab: LabSpec, attempts: Sequence[RecordedAttempt]) -> LabStatus:
        return LabStatus(
            lab=lab,
            attempts=len(attempts),
            ever_passed=any(item.is_pass for item in attempts),
            latest=max(attempts, key=lambda item: item.attempt) if attempts else None,
        )

    @staticmethod
    async def _lab_row(session: AsyncSession, lab_number: int, subject: str) -> LabDefinition:
        result = await session.execute(
            select(LabDefinition)
            .where(LabDefinition.lab_number == lab_number)
            .where(LabDefinition.subject == subject)
        )
        lab = result.scalar_one_or_none()
        if lab is None:
            raise LabNotFound(lab_number, subject)
        return lab

    @staticmethod
    async def _count_attempts(session: AsyncSession, learner_id: int, lab_id: int) -> int:
        result = await session.execute(
            select(func.count(SubmissionAttempt.id))
            .where(SubmissionAttempt.learner_id == learner_id)
            .where(SubmissionAttempt.lab_definition_id == lab_id)
        )
        return int(result.scalar_one())


__all__ = ["SessionFactory", "SubmissionLedger", "parse_learner_id", "to_lab_spec"]
