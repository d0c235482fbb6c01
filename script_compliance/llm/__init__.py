"""Classification model gateway and prompts."""

from .gateway import JudgeOutcome, LLMGateway
from .prompts import (
    DEFAULT_DETERMINISTIC_CONFIG,
    JUDGE_PROMPT_HASH,
    PROMPT_VERSIONS,
    ROUTER_PROMPT_HASH,
)

__all__ = [
    "LLMGateway",
    "JudgeOutcome",
    "DEFAULT_DETERMINISTIC_CONFIG",
    "PROMPT_VERSIONS",
    "ROUTER_PROMPT_HASH",
    "JUDGE_PROMPT_HASH",
]
