"""Learner-facing read endpoints: lab statuses and attempt history."""

import logging
from typing import Annotated

from fastapi import APIRouter, Path

from app.controllers.dependencies import CurrentLearnerDep, LedgerDep
from app.views import AttemptRecord, LabHistoryResponse, LabInfo, LabStatusItem, LabStatusResponse

router = APIRouter(prefix="/student", tags=["student"])

logger = logging.getLogger(__name__)


@router.get("/labs")
async def list_lab_statuses(
    learner_id: CurrentLearnerDep,
    ledger: LedgerDep,
) -> LabStatusResponse:
    """Every lab with the learner's attempt count, pass state and latest score."""

    statuses = await ledger.lab_statuses(learner_id)
    return LabStatusResponse(labs=[LabStatusItem.from_status(item) for item in statuses])


@router.get("/{subject}/{lab_number}/history")
async def get_lab_history(
    subject: str,
    lab_number: Annotated[int, Path(ge=1)],
    learner_id: CurrentLearnerDep,
    ledger: LedgerDep,
) -> LabHistoryResponse:
    """Attempts of the current learner at one lab, oldest first."""

    lab = await ledger.find_lab(lab_number, subject)
    attempts = await ledger.history(learner_id, lab.id)
    logger.debug(
        "History learner=%s lab=%s/%s attempts=%s",
        learner_id,
        subject,
        lab_number,
        len(attempts),
    )
    return LabHistoryResponse(
        lab_info=LabInfo.from_spec(lab),
        lab_submissions=[AttemptRecord.from_recorded(item) for item in attempts],
    )
