"""Rubric grading stage of the submission pipeline."""

from __future__ import annotations

import logging
from typing import Protocol

from app.errors import GradingFailed, GradingResponseMalformed
from app.services.llm_client import LlmInvocationError
from app.services.response_contract import GradingResponse

from .prompts import build_grading_prompt
from .types import GradingResult

logger = logging.getLogger("app.services.submission_pipeline")


class LlmClient(Protocol):
    async def invoke(self, *, system_prompt: str, user_prompt: str) -> str: ...


def _truncate(value: str, max_length: int = 500) -> str:
    if len(value) <= max_length:
        return value
    return value[: max_length - 3] + "..."


class RubricGrader:
    """Ask the language model to score a transcript against an answer key.

    The score itself is the model's judgement and varies between calls; this
    class only guarantees the request shape and that the reply parses into a
    `GradingResult`. A reply that does not parse raises
    `GradingResponseMalformed` once `json_retries` extra calls are used up.
    """

    def __init__(self, llm: LlmClient, json_retries: int = 0) -> None:
        self._llm = llm
        self._json_retries = json_retries

    async def grade(
        self,
        transcript: str,
        rubric_text: str,
        rubric_instructions: str = "",
        language: str | None = None,
    ) -> GradingResult:
        prompt = build_grading_prompt(transcript, rubric_text, rubric_instructions, language)

        for attempt in range(self._json_retries + 1):
            try:
                raw_response = await self._llm.invoke(
                    system_prompt=prompt.system_prompt,
                    user_prompt=prompt.user_prompt,
                )
            except LlmInvocationError as exc:
                raise GradingFailed(f"Grading request failed: {exc}") from exc

            logger.info(
                "Grader raw response attempt=%s: %s",
                attempt + 1,
                _truncate(raw_response or ""),
            )

            try:
                parsed = GradingResponse.from_json(raw_response or "")
            except GradingResponseMalformed as exc:
                logger.warning("Grader produced malformed JSON attempt=%s: %s", attempt + 1, exc)
                if attempt < self._json_retries:
                    continue
                raise

            return GradingResult(
                total_score=parsed.total_score,
                pros=parsed.pros,
                recommendations=parsed.recommendations,
            )

        # Unreachable: the loop either returns or raises.
        raise GradingResponseMalformed("No grading response could be parsed.")


__all__ = ["LlmClient", "RubricGrader"]
