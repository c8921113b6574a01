"""
Vote response parsing and scoring.

Models are asked for a JSON judgment but often wrap it in prose or a code
fence. Parsing tries a fixed list of strategies and takes the first object
that decodes; everything else falls back to a length heuristic.
"""

from __future__ import annotations

import json
import logging
import math
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_SCORE = 50
HEURISTIC_MIN = 30
HEURISTIC_MAX = 90
HEURISTIC_DEFAULT_NOTE = "heuristic default score"

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)


def _decode_object(text: str) -> Optional[dict[str, Any]]:
    try:
        value = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None
    return value if isinstance(value, dict) else None


def parse_direct(raw: str) -> Optional[dict[str, Any]]:
    return _decode_object(raw.strip())


def parse_fenced(raw: str) -> Optional[dict[str, Any]]:
    match = _FENCE_RE.search(raw)
    if not match:
        return None
    return _decode_object(match.group(1).strip())


def parse_braced(raw: str) -> Optional[dict[str, Any]]:
    start = raw.find("{")
    end = raw.rfind("}")
    if start == -1 or end <= start:
        return None
    return _decode_object(raw[start : end + 1])


PARSE_STRATEGIES: tuple[Callable[[str], Optional[dict[str, Any]]], ...] = (
    parse_direct,
    parse_fenced,
    parse_braced,
)


def parse_vote_response(raw: str | None) -> Optional[dict[str, Any]]:
    """Return the first JSON object any strategy extracts, or None."""
    if not raw:
        return None
    for strategy in PARSE_STRATEGIES:
        parsed = strategy(raw)
        if parsed is not None:
            return parsed
    return None


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def normalize_score(value: Any) -> Optional[int]:
    """Clamp a numeric (or numeric string) score to an integer in [0, 100]."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(number):
        return None
    return max(0, min(100, round_half_up(number)))


def heuristic_score(content: str) -> int:
    return max(HEURISTIC_MIN, min(HEURISTIC_MAX, round_half_up(math.sqrt(len(content)))))


def is_heuristic_rationale(rationale: str | None) -> bool:
    return bool(rationale) and "heuristic" in rationale.lower()


@dataclass
class VoteJudgment:
    score: int
    rationale: str
    fallback: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"score": self.score, "rationale": self.rationale, "fallback": self.fallback}


def judge_vote(agent_name: str, raw: str | None, proposal_content: str) -> VoteJudgment:
    """Turn a model reply into a vote, never failing."""
    parsed = parse_vote_response(raw)
    if parsed is None:
        logger.info("[%s] vote reply unparsable, using heuristic score", agent_name)
        return VoteJudgment(
            score=heuristic_score(proposal_content),
            rationale=f"{agent_name} heuristic score",
            fallback=True,
        )

    reason = parsed.get("reason")
    rationale = reason.strip() if isinstance(reason, str) else ""
    score = normalize_score(parsed.get("score"))
    if score is None:
        rationale = f"{rationale} ({HEURISTIC_DEFAULT_NOTE})" if rationale else HEURISTIC_DEFAULT_NOTE
        return VoteJudgment(score=DEFAULT_SCORE, rationale=rationale, fallback=True)
    return VoteJudgment(score=score, rationale=rationale)


def fallback_judgment(agent_name: str, proposal_content: str) -> VoteJudgment:
    """Vote used when the provider call itself failed."""
    return VoteJudgment(
        score=heuristic_score(proposal_content),
        rationale=f"{agent_name} heuristic score (fallback)",
        fallback=True,
    )
