"""Pydantic schemas for model output and job configuration."""

from .job_config import JobConfig
from .model_output import (
    FindingLocation,
    JudgeFinding,
    JudgeOutput,
    RouterCandidate,
    RouterOutput,
    extract_json_from_text,
    parse_judge_output,
    parse_router_output,
)

__all__ = [
    "JobConfig",
    "FindingLocation",
    "JudgeFinding",
    "JudgeOutput",
    "RouterCandidate",
    "RouterOutput",
    "extract_json_from_text",
    "parse_judge_output",
    "parse_router_output",
]
