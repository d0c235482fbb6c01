"""Schemas for router and judge model output."""

from __future__ import annotations

import json
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, conint, confloat

from ..exceptions import ModelOutputError

Severity = Literal["low", "medium", "high", "critical"]


class RouterCandidate(BaseModel):
    article_id: conint(ge=1, le=25)
    confidence: confloat(ge=0, le=1)


class RouterOutput(BaseModel):
    """Router response: candidate articles with confidences."""

    candidate_articles: List[RouterCandidate] = Field(default_factory=list)
    notes: Optional[str] = None

    def article_ids(self) -> List[int]:
        return [c.article_id for c in self.candidate_articles]


class FindingLocation(BaseModel):
    """Chunk-local span reported by the judge."""

    start_offset: int
    end_offset: int
    start_line: int
    end_line: int


class JudgeFinding(BaseModel):
    model_config = ConfigDict(extra="ignore")

    article_id: conint(ge=1, le=25)
    atom_id: Optional[str] = None
    title: str
    description: str
    severity: Severity
    confidence: confloat(ge=0, le=1)
    is_interpretive: bool = False
    evidence_snippet: str
    location: FindingLocation


class JudgeOutput(BaseModel):
    findings: List[JudgeFinding]


def extract_json_from_text(raw: str) -> str:
    """Slice from the first ``{`` to the last ``}``; return raw when absent."""
    first = raw.find("{")
    last = raw.rfind("}")
    if first == -1 or last == -1 or last <= first:
        return raw
    return raw[first : last + 1]


def _load(raw: str) -> Any:
    try:
        return json.loads(extract_json_from_text(raw))
    except json.JSONDecodeError as e:
        raise ModelOutputError(f"Model returned invalid JSON: {e}") from e


def parse_router_output(raw: str) -> RouterOutput:
    try:
        return RouterOutput.model_validate(_load(raw))
    except ValidationError as e:
        raise ModelOutputError(f"Router output failed validation: {e}") from e


def parse_judge_output(raw: str) -> JudgeOutput:
    try:
        return JudgeOutput.model_validate(_load(raw))
    except ValidationError as e:
        raise ModelOutputError(f"Judge output failed validation: {e}") from e
