"""Pydantic model for validating the grader's JSON reply.

The grader must answer with exactly one JSON object of the shape
``{"totalScore": <number>, "pros": "...", "recommendations": "..."}``.
Anything else is rejected; nothing is defaulted or coerced, so the score
must be a JSON number (not a string or a boolean).
"""

from __future__ import annotations

import json

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from app.errors import GradingResponseMalformed


class GradingResponse(BaseModel):
    total_score: float = Field(alias="totalScore", ge=0.0, le=100.0, allow_inf_nan=False, strict=True)
    pros: str
    recommendations: str

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @classmethod
    def from_json(cls, payload: str) -> "GradingResponse":
        cleaned = _clean_json_payload(payload)
        if not cleaned:
            raise GradingResponseMalformed("Grader returned an empty response.", payload)
        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError as exc:
            raise GradingResponseMalformed(
                f"Grader response is not valid JSON: {exc}", payload
            ) from exc
        if not isinstance(data, dict):
            raise GradingResponseMalformed("Grader response is not a JSON object.", payload)
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise GradingResponseMalformed(
                f"Grader response does not match the expected shape: {exc}", payload
            ) from exc


def _clean_json_payload(payload: str) -> str:
    """Strip Markdown code blocks and find the first/last brace to extract JSON."""
    if not payload:
        return ""

    # Remove markdown code blocks if present
    cleaned = payload.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]

    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]

    cleaned = cleaned.strip()

    # Find the first '{' and last '}'
    start = cleaned.find("{")
    end = cleaned.rfind("}")

    if start != -1 and end != -1 and end > start:
        cleaned = cleaned[start : end + 1]

    return cleaned


__all__ = ["GradingResponse"]
