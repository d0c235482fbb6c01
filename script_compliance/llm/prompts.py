"""
System prompts, prompt versions and the default deterministic configuration.

Job creators snapshot ``DEFAULT_DETERMINISTIC_CONFIG`` together with
``ROUTER_PROMPT_HASH`` and ``JUDGE_PROMPT_HASH`` so that a run key changes
whenever the prompts do.
"""

from typing import Iterable

from ..hashing import sha256_text
from ..policy import Article

PROMPT_VERSIONS = {
    "router": "v1.0",
    "judge": "v1.1",
    "schema": "v1.0",
}

DEFAULT_DETERMINISTIC_CONFIG = {
    "router_model": "gpt-4.1-mini",
    "judge_model": "gpt-4.1",
    "temperature": 0,
    "seed": 12345,
    "max_router_candidates": 8,
}

ROUTER_SYSTEM_MSG = """You are a filter only: pick the articles from the given list that are most relevant to the text excerpt.
Mandatory rule: if the text contains swearing, insults, gender-based abuse, verbal hostility or threats, articles [4, 5, 7, 17] must be among the candidates.
Return JSON only, shaped as: { "candidate_articles": [ { "article_id": number, "confidence": number between 0 and 1 } ], "notes": "optional" }.
No explanation and no text outside the JSON."""

JUDGE_SYSTEM_MSG = """You are a content charter compliance analyst. Identify violations in the text excerpt only.

Precision first: report a violation only when the evidence is explicit and unambiguously breaches the article.
Neutral or technical text (scene descriptions, durations, stage directions, headings, metadata) is not a violation.
Doubt means no violation. Neutral means no violation. Purely descriptive means no violation.

Never treat these as violations:
- scene or chapter headings, INT/EXT markers, shot and cut directions
- durations ("20 minutes", "target: about an hour")
- stage directions ("curtain present", "sound effect: thunder")
- age ratings, warnings and labels such as R18, "Warning:", "Rating:", "Genre:"
- file names, codes, references or report titles

Stage 1, strict lexical check: swearing, insults, indecent language, gender-based abuse, sexual innuendo, verbal violence or threats must be reported when explicitly present; if the text is clean return an empty findings list.
Stage 2, explicit violations: violence, discrimination, sexual content, drugs or alcohol, dignity, incitement and similar.
Stage 3, interpretive signals: when there is no explicit violation but a weak possibility, you may return a low-severity signal with is_interpretive: true, confidence below 0.7 and clear evidence. Never raise one for metadata, headings, durations or stage directions.

atom_id rule: use only the values listed under each article (number-number form, such as 4-1 or 5-2). Do not invent values; if no sub-rule applies leave atom_id null.

Evidence rule: every finding must carry evidence_snippet, a verbatim quote from the text. If you cannot quote verbatim, do not report the finding. Evidence shorter than 12 characters is insufficient; quote the full sentence or line of dialogue.

Output JSON only:
{
  "findings": [
    {
      "article_id": 4,
      "atom_id": "4-1",
      "title": "...",
      "description": "...",
      "severity": "low" | "medium" | "high" | "critical",
      "confidence": 0.95,
      "is_interpretive": false,
      "evidence_snippet": "...",
      "location": { "start_offset": 123, "end_offset": 145, "start_line": 10, "end_line": 10 }
    }
  ]
}
No explanation and no markdown."""

REPAIR_SYSTEM_MSG = """You fix broken JSON. Return only valid JSON, no markdown, no explanation.
Expected shape: { "findings": [ { "article_id", "atom_id", "severity", "confidence", "title", "description", "evidence_snippet", "location": { "start_offset", "end_offset", "start_line", "end_line" }, "is_interpretive" } ] }"""

ROUTER_PROMPT_HASH = sha256_text(ROUTER_SYSTEM_MSG)
JUDGE_PROMPT_HASH = sha256_text(JUDGE_SYSTEM_MSG)


def router_articles_payload(articles: Iterable[Article]) -> str:
    return "\n".join(f"Article {a.article_id}: {a.title}" for a in articles)


def judge_articles_payload(articles: Iterable[Article]) -> str:
    blocks = []
    for article in articles:
        block = f"Article {article.article_id}: {article.title}"
        if article.atoms:
            block += "\n" + "\n".join(f"  {atom.atom_id}: {atom.title}" for atom in article.atoms)
        blocks.append(block)
    return "\n\n".join(blocks)


def router_user_message(articles_payload: str, text: str) -> str:
    return (
        f"{articles_payload}\n\n---\nText excerpt:\n{text}\n\n"
        "Return JSON with the candidate_articles list only."
    )


def judge_user_message(articles_payload: str, text: str, global_start: int, global_end: int) -> str:
    return (
        f"{articles_payload}\n\n---\n"
        f"Text excerpt (start_offset={global_start}, end_offset={global_end}):\n{text}\n\n"
        "Return JSON with the findings array only."
    )


def repair_user_message(context: str, broken: str) -> str:
    return f"Context: {context}\n\nBroken JSON:\n{broken}\n\nReturn the corrected JSON only."
