"""Prompt construction for the rubric grading stage.

The wording is deliberately plain: the model compares the learner's
transcript against the answer key item by item and replies with one JSON
object. Only the JSON shape is a contract; the phrasing can change freely.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

logger = logging.getLogger("app.services.submission_pipeline")

RESPONSE_SHAPE = (
    "{\n"
    '  "totalScore": <number between 0 and 100>,\n'
    '  "pros": "<what the learner did well>",\n'
    '  "recommendations": "<what is missing or should improve, with the points for each item>"\n'
    "}"
)

_SYSTEM_PROMPT = (
    "You are a clinical skills instructor grading a recorded demonstration. "
    "You receive the learner's spoken answer as a speech-to-text transcript and "
    "an answer key made of itemized points.\n"
    "Rules:\n"
    "1. Judge each rubric item by meaning, not by exact wording. Transcription "
    "errors and synonyms must not cost points.\n"
    "2. Award full, partial, or zero credit for every item, never more than the "
    "item is worth.\n"
    "3. totalScore is the sum of the item points.\n"
    "4. Do not penalise grammar, filler words, or content unrelated to the rubric.\n"
    "5. Put strengths in pros and gaps in recommendations.\n"
    "6. Reply with exactly one JSON object of this shape and nothing else:\n"
    f"{RESPONSE_SHAPE}"
)


@dataclass(frozen=True)
class GradingPrompt:
    system_prompt: str
    user_prompt: str


def _truncate(value: str, max_length: int = 240) -> str:
    if len(value) <= max_length:
        return value
    return value[: max_length - 3] + "..."


def build_grading_prompt(
    transcript: str,
    rubric_text: str,
    rubric_instructions: str = "",
    language: str | None = None,
) -> GradingPrompt:
    """Embed transcript and answer key into the system/user prompt pair."""

    system_prompt = _SYSTEM_PROMPT
    if language:
        system_prompt += f"\nWrite pros and recommendations in {language}."

    sections = [
        f'Learner answer (transcript):\n"""\n{transcript}\n"""',
        f'Answer key:\n"""\n{rubric_text.strip()}\n"""',
    ]
    if rubric_instructions and rubric_instructions.strip():
        sections.append(f"Additional grading instructions:\n{rubric_instructions.strip()}")
    sections.append("Grade the answer now and reply with the JSON object only.")
    user_prompt = "\n\n".join(sections)

    logger.debug(
        "Grading prompt built\nSYSTEM> %s\nUSER> %s",
        _truncate(system_prompt, 500),
        _truncate(user_prompt, 500),
    )
    return GradingPrompt(system_prompt=system_prompt, user_prompt=user_prompt)


__all__ = ["GradingPrompt", "RESPONSE_SHAPE", "build_grading_prompt"]
