"""Common FastAPI dependencies reused across controllers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from app.errors import InvalidLearnerReference
from app.pipelines.submission import SubmissionLedger, SubmissionPipeline, parse_learner_id
from app.utils import AuthenticationError, TokenPayload, decode_access_token

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_learner(
    request: Request,
    token: Annotated[str, Depends(oauth2_scheme)],
) -> int:
    """Resolve the learner id carried by the bearer token."""

    try:
        payload = decode_access_token(token)
        learner_id = parse_learner_id(payload.learner_reference)
    except (AuthenticationError, InvalidLearnerReference):
        raise _unauthorized() from None

    request.state.learner_id = learner_id
    return learner_id


async def get_grading_staff(
    token: Annotated[str, Depends(oauth2_scheme)],
) -> TokenPayload:
    """Allow professors, admins and service tokens that record graded attempts."""

    try:
        payload = decode_access_token(token)
    except AuthenticationError:
        raise _unauthorized() from None

    if not (payload.is_professor or payload.is_admin):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Recording attempts requires a professor or admin token",
        )
    return payload


def get_pipeline(request: Request) -> SubmissionPipeline:
    return request.app.state.pipeline


PipelineDep = Annotated[SubmissionPipeline, Depends(get_pipeline)]


def get_ledger(pipeline: PipelineDep) -> SubmissionLedger:
    return pipeline.ledger


CurrentLearnerDep = Annotated[int, Depends(get_current_learner)]
GradingStaffDep = Annotated[TokenPayload, Depends(get_grading_staff)]
LedgerDep = Annotated[SubmissionLedger, Depends(get_ledger)]


__all__ = [
    "CurrentLearnerDep",
    "GradingStaffDep",
    "LedgerDep",
    "PipelineDep",
    "get_current_learner",
    "get_grading_staff",
    "get_ledger",
    "get_pipeline",
    "oauth2_scheme",
]
