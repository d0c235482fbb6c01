"""Content-addressed hashes for finding identity and run-cache keys."""

from __future__ import annotations

import hashlib
from typing import Optional


def sha256_text(text: str) -> str:
    """Return hex sha256 of a UTF-8 string."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def evidence_hash(
    article_id: int,
    atom_id: Optional[str],
    start_global: int,
    end_global: int,
    evidence_snippet: str,
) -> str:
    """Identity of an AI finding: article|atom|start|end|snippet."""
    return sha256_text(
        f"{article_id}|{atom_id or ''}|{start_global}|{end_global}|{evidence_snippet}"
    )


def lexicon_evidence_hash(job_id: str, article_id: int, term: str, line: int) -> str:
    """Identity of a mandatory lexicon finding, one per term per line."""
    return sha256_text(f"{job_id}:lexicon:{article_id}:{term}:{line}")


def chunk_run_key(
    chunk_text: str,
    router_model: str,
    judge_model: str,
    temperature: float,
    seed: Optional[int],
    router_prompt_hash: Optional[str] = None,
    judge_prompt_hash: Optional[str] = None,
    logic_version: str = "v1",
) -> str:
    """Idempotency key for one (chunk text, model configuration) pair.

    Two runs with the same key are expected to produce the same AI findings,
    so a stored run under this key is reused instead of calling the models.
    """
    data = "|".join(
        [
            chunk_text,
            router_model,
            judge_model,
            _number(temperature),
            str(seed if seed is not None else 0),
            router_prompt_hash or "",
            judge_prompt_hash or "",
            logic_version,
        ]
    )
    return sha256_text(data)


def _number(value: float) -> str:
    # 0.0 and 0 must produce the same key
    return str(int(value)) if float(value).is_integer() else repr(float(value))


__all__ = [
    "chunk_run_key",
    "evidence_hash",
    "lexicon_evidence_hash",
    "sha256_text",
]
