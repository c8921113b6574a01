"""
Diagnostics: a per-step report cross-referencing agents, messages and votes.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from .models import Agent, Message, MessageRole, Vote
from .voting import is_heuristic_rationale

PREVIEW_LENGTH = 120

_WS_RE = re.compile(r"\s+")


def preview(text: str | None, limit: int = PREVIEW_LENGTH) -> str:
    normalized = _WS_RE.sub(" ", text or "").strip()
    if len(normalized) <= limit:
        return normalized
    return normalized[: limit - 1] + "…"


@dataclass
class ProposalEntry:
    message_id: int
    preview: str
    fallback: bool
    provider: Optional[str] = None
    model: Optional[str] = None


@dataclass
class CritiqueEntry:
    message_id: int
    target_message_id: Optional[int]
    preview: str
    fallback: bool


@dataclass
class VoteEntry:
    vote_id: int
    target_message_id: int
    score: int
    rationale: Optional[str]
    fallback: bool


@dataclass
class AgentDiagnostics:
    agent_id: str
    slug: str
    name: str
    provider: str
    model: Optional[str]
    proposals: list[ProposalEntry] = field(default_factory=list)
    critiques_authored: list[CritiqueEntry] = field(default_factory=list)
    critiques_received: list[CritiqueEntry] = field(default_factory=list)
    votes_cast: list[VoteEntry] = field(default_factory=list)

    @property
    def fallback_count(self) -> int:
        return (
            sum(p.fallback for p in self.proposals)
            + sum(c.fallback for c in self.critiques_authored)
            + sum(v.fallback for v in self.votes_cast)
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["fallback_count"] = self.fallback_count
        return data


@dataclass
class Totals:
    proposals: int = 0
    critiques: int = 0
    votes: int = 0
    consensus: int = 0


@dataclass
class Diagnostics:
    step: str
    totals: Totals
    agents: list[AgentDiagnostics]
    events: list[str]
    winning_proposal_id: Optional[int] = None
    winning_score: Optional[int] = None
    consensus_message_id: Optional[int] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "step": self.step,
            "timestamp": self.timestamp.isoformat(),
            "totals": asdict(self.totals),
            "agents": [a.to_dict() for a in self.agents],
            "events": list(self.events),
            "winning_proposal_id": self.winning_proposal_id,
            "winning_score": self.winning_score,
            "consensus_message_id": self.consensus_message_id,
        }


def _meta_int(meta: dict[str, Any] | None, key: str) -> Optional[int]:
    value = (meta or {}).get(key)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def _is_fallback(meta: dict[str, Any] | None) -> bool:
    return bool((meta or {}).get("fallback"))


def build_diagnostics(
    step: str,
    agents: Sequence[Agent],
    messages: Sequence[Message],
    votes: Sequence[Vote],
    events: Sequence[str] = (),
) -> Diagnostics:
    """Pure aggregation over already-persisted state."""
    by_agent: dict[str, AgentDiagnostics] = {
        agent.id: AgentDiagnostics(
            agent_id=agent.id,
            slug=agent.slug,
            name=agent.name,
            provider=agent.provider,
            model=agent.model,
        )
        for agent in agents
    }
    proposal_owner: dict[int, str] = {}
    totals = Totals()
    critiques: list[CritiqueEntry] = []
    consensus_message: Message | None = None

    for message in messages:
        meta = message.meta or {}
        if message.role == MessageRole.AGENT_PROPOSAL.value:
            totals.proposals += 1
            if message.agent_id:
                proposal_owner[message.id] = message.agent_id
            entry = by_agent.get(message.agent_id or "")
            if entry is not None:
                entry.proposals.append(
                    ProposalEntry(
                        message_id=message.id,
                        preview=preview(message.content),
                        fallback=_is_fallback(meta),
                        provider=meta.get("actual_provider") or meta.get("provider"),
                        model=message.model,
                    )
                )
        elif message.role == MessageRole.AGENT_CRITIQUE.value:
            totals.critiques += 1
            critique = CritiqueEntry(
                message_id=message.id,
                target_message_id=_meta_int(meta, "target_message_id"),
                preview=preview(message.content),
                fallback=_is_fallback(meta),
            )
            critiques.append(critique)
            entry = by_agent.get(message.agent_id or "")
            if entry is not None:
                entry.critiques_authored.append(critique)
        elif message.role == MessageRole.CONSENSUS.value:
            totals.consensus += 1
            consensus_message = message

    for critique in critiques:
        owner = proposal_owner.get(critique.target_message_id or -1)
        if owner and owner in by_agent:
            by_agent[owner].critiques_received.append(critique)

    for vote in votes:
        totals.votes += 1
        entry = by_agent.get(vote.agent_id)
        if entry is not None:
            entry.votes_cast.append(
                VoteEntry(
                    vote_id=vote.id,
                    target_message_id=vote.target_message_id,
                    score=vote.score,
                    rationale=vote.rationale,
                    fallback=is_heuristic_rationale(vote.rationale),
                )
            )

    diagnostics = Diagnostics(
        step=step,
        totals=totals,
        agents=list(by_agent.values()),
        events=list(events),
    )
    if consensus_message is not None:
        diagnostics.consensus_message_id = consensus_message.id
        diagnostics.winning_proposal_id = _meta_int(consensus_message.meta, "from_message_id")
        diagnostics.winning_score = _meta_int(consensus_message.meta, "total_score")
    return diagnostics
