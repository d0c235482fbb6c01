"""Typed, per-job model configuration."""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..config import Settings
from ..exceptions import ConfigurationError
from ..llm.prompts import (
    DEFAULT_DETERMINISTIC_CONFIG,
    JUDGE_PROMPT_HASH,
    PROMPT_VERSIONS,
    ROUTER_PROMPT_HASH,
)

NON_DETERMINISTIC_TEMPERATURE = 0.4


class JobConfig(BaseModel):
    """Model configuration a job's chunks are judged with.

    Built once per chunk from the job's stored snapshot and carried
    unchanged through the pipeline.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    router_model: str = Field(min_length=1)
    judge_model: str = Field(min_length=1)
    temperature: float = Field(ge=0, le=2)
    seed: Optional[int] = None
    max_router_candidates: int = Field(default=8, ge=1, le=25)
    router_prompt_hash: Optional[str] = None
    judge_prompt_hash: Optional[str] = None
    prompt_versions: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def resolve(
        cls,
        snapshot: Optional[Mapping[str, Any]],
        settings: Settings,
        deterministic: Optional[bool] = None,
    ) -> "JobConfig":
        """Validate a job's config snapshot, filling gaps from settings.

        Values present in the snapshot always win. Missing temperature/seed
        fall back to 0/12345 in deterministic mode and 0.4/unset otherwise.
        Missing prompt hashes fall back to the hashes of the prompts this
        worker sends.

        Raises:
            ConfigurationError: if the snapshot holds invalid values
        """
        snap = dict(snapshot or {})
        if deterministic is None:
            deterministic = settings.deterministic_mode

        temperature = snap.get("temperature")
        if temperature is None:
            temperature = (
                DEFAULT_DETERMINISTIC_CONFIG["temperature"]
                if deterministic
                else NON_DETERMINISTIC_TEMPERATURE
            )
        seed = snap.get("seed")
        if seed is None and deterministic:
            seed = DEFAULT_DETERMINISTIC_CONFIG["seed"]

        try:
            return cls(
                router_model=snap.get("router_model") or settings.openai_router_model,
                judge_model=snap.get("judge_model") or settings.openai_judge_model,
                temperature=temperature,
                seed=seed,
                max_router_candidates=snap.get("max_router_candidates")
                or DEFAULT_DETERMINISTIC_CONFIG["max_router_candidates"],
                router_prompt_hash=snap.get("router_prompt_hash") or ROUTER_PROMPT_HASH,
                judge_prompt_hash=snap.get("judge_prompt_hash") or JUDGE_PROMPT_HASH,
                prompt_versions=snap.get("prompt_versions") or dict(PROMPT_VERSIONS),
            )
        except ValidationError as e:
            raise ConfigurationError(f"Invalid job configuration: {e}") from e
