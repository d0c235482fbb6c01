"""
Gateway to the classification models.

Three roles share one OpenAI chat-completions client:

- router: narrows the article list for a chunk
- judge: returns findings against a selected article set
- repair: fixes malformed judge JSON

Router failures raise; the pipeline falls back to a fixed article set. Judge
calls never raise: they return a ``JudgeOutcome`` describing whether the
output validated, exhausted its repair attempt, or failed in transport.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Literal, Optional, Sequence

import openai
import structlog
from openai import OpenAI

from ..config import Settings, get_settings
from ..exceptions import ConfigurationError, GatewayError, ModelOutputError
from ..policy import Article
from ..schemas.model_output import (
    JudgeFinding,
    RouterOutput,
    parse_judge_output,
    parse_router_output,
)
from . import prompts

if TYPE_CHECKING:
    from ..schemas.job_config import JobConfig

logger = structlog.get_logger()

# One parse of the original output plus one after a repair round-trip
MAX_PARSE_ATTEMPTS = 2

JudgeStatus = Literal["validated", "exhausted", "failed"]


@dataclass(frozen=True)
class JudgeOutcome:
    """Result of one judge call."""

    status: JudgeStatus
    findings: List[JudgeFinding] = field(default_factory=list)
    attempts: int = 0
    error: Optional[str] = None

    @property
    def degraded(self) -> bool:
        """True when the call contributed nothing because it did not validate."""
        return self.status != "validated"


class LLMGateway:
    """Router, judge and repair calls against the chat-completions API."""

    def __init__(self, client: Optional[OpenAI] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._client = client

    def ensure_configured(self) -> None:
        """Raise ConfigurationError when no client can be built."""
        if self._client is None and not self.settings.openai_api_key:
            raise ConfigurationError("OPENAI_API_KEY is not configured")

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self.ensure_configured()
            self._client = OpenAI(api_key=self.settings.openai_api_key)
        return self._client

    def _complete(
        self,
        role: str,
        model: str,
        system: str,
        user: str,
        timeout: float,
        temperature: Optional[float] = None,
        seed: Optional[int] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        kwargs: Dict[str, Any] = {
            "model": model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "response_format": {"type": "json_object"},
            "timeout": timeout,
        }
        if temperature is not None:
            kwargs["temperature"] = temperature
        if seed is not None:
            kwargs["seed"] = seed
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens

        try:
            response = self.client.chat.completions.create(**kwargs)
        except openai.APITimeoutError as e:
            raise GatewayError(role, f"timed out after {timeout}s", e) from e
        except openai.OpenAIError as e:
            raise GatewayError(role, str(e), e) from e

        if not response.choices:
            raise GatewayError(role, "empty response")
        content = response.choices[0].message.content
        if not content:
            raise GatewayError(role, "response has no content")
        return content

    def route(
        self, text: str, articles: Sequence[Article], config: "JobConfig"
    ) -> RouterOutput:
        """Rank candidate articles for a chunk.

        Candidates are sorted by confidence desc then article id asc and
        truncated to ``config.max_router_candidates``.

        Raises:
            GatewayError: transport failure or timeout
            ModelOutputError: output is not valid router JSON
        """
        raw = self._complete(
            "router",
            model=config.router_model,
            system=prompts.ROUTER_SYSTEM_MSG,
            user=prompts.router_user_message(
                prompts.router_articles_payload(articles),
                text[: self.settings.router_text_limit],
            ),
            timeout=self.settings.router_timeout_seconds,
            temperature=config.temperature,
            seed=config.seed,
        )
        parsed = parse_router_output(raw)
        ranked = sorted(
            parsed.candidate_articles, key=lambda c: (-c.confidence, c.article_id)
        )
        return RouterOutput(
            candidate_articles=ranked[: config.max_router_candidates],
            notes=parsed.notes,
        )

    def judge(
        self,
        text: str,
        articles: Sequence[Article],
        global_start: int,
        global_end: int,
        config: "JobConfig",
    ) -> JudgeOutcome:
        """Ask the judge for findings in ``text`` against ``articles``."""
        try:
            raw = self._complete(
                "judge",
                model=config.judge_model,
                system=prompts.JUDGE_SYSTEM_MSG,
                user=prompts.judge_user_message(
                    prompts.judge_articles_payload(articles),
                    text[: self.settings.judge_text_limit],
                    global_start,
                    global_end,
                ),
                timeout=self.settings.judge_timeout_seconds,
                temperature=config.temperature,
                seed=config.seed,
                max_tokens=self.settings.judge_max_tokens,
            )
        except GatewayError as e:
            logger.warning("judge_call_failed", error=str(e), global_start=global_start)
            return JudgeOutcome(status="failed", error=str(e))
        return self.validate_with_repair(raw, config)

    def validate_with_repair(self, raw: str, config: "JobConfig") -> JudgeOutcome:
        """Validate judge output, allowing a single repair round-trip."""
        content = raw
        last_error = None
        for attempt in range(1, MAX_PARSE_ATTEMPTS + 1):
            try:
                output = parse_judge_output(content)
            except ModelOutputError as e:
                last_error = str(e)
                if attempt == MAX_PARSE_ATTEMPTS:
                    break
                logger.warning("judge_output_invalid", attempt=attempt, error=last_error)
                try:
                    content = self.repair(content, config, context="Judge findings JSON")
                except GatewayError as ge:
                    logger.warning("judge_repair_failed", error=str(ge))
                    return JudgeOutcome(status="failed", attempts=attempt, error=str(ge))
                continue
            return JudgeOutcome(status="validated", findings=output.findings, attempts=attempt)

        logger.warning("judge_repair_exhausted", attempts=MAX_PARSE_ATTEMPTS, error=last_error)
        return JudgeOutcome(status="exhausted", attempts=MAX_PARSE_ATTEMPTS, error=last_error)

    def repair(self, broken: str, config: "JobConfig", context: str) -> str:
        """Send malformed output back with a fix-only instruction."""
        return self._complete(
            "repair",
            model=config.judge_model,
            system=prompts.REPAIR_SYSTEM_MSG,
            user=prompts.repair_user_message(
                context, broken[: self.settings.repair_text_limit]
            ),
            timeout=self.settings.judge_timeout_seconds,
            temperature=config.temperature,
            seed=config.seed,
        )
