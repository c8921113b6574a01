"""
Deliberation workflow steps: propose, vote, consensus.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any

from ..config import settings
from ..context import ContextAssembler, ContextBundle
from ..errors import ProposalStepError, SessionNotFoundError
from ..events import EventType
from ..models import Agent, Message, MessageRole, SessionStatus
from ..providers import ChatMessage, InvokeOptions, ProviderResult
from ..repository import SessionSnapshot
from ..voting import VoteJudgment, fallback_judgment, judge_vote
from .base import StepName, WorkflowContext, WorkflowResult, WorkflowStep

logger = logging.getLogger(__name__)

NO_PROPOSALS_ERROR = "No proposals available for consensus"

VOTE_SYSTEM_PROMPT = (
    "You are {name}. Evaluate the quality, clarity, and factuality of the proposal. "
    'Reply ONLY with a JSON object: {{"score": 0-100, "reason": "short rationale"}}.'
)


def build_proposal_conversation(
    agent: Agent, question: str, bundle: ContextBundle, *, tool_enabled: bool = True
) -> list[ChatMessage]:
    sections = [
        f"You are {agent.name}, one of three MAGI auditors reviewing a web application. "
        "Answer the user's question with concrete, evidence-based findings, citing the files "
        "and URLs you relied on. Flag anything you could not verify. Keep it under 300 words."
    ]
    if bundle.artifact_text:
        sections.append(f"Repository context:\n{bundle.artifact_text}")
    if bundle.live_text:
        sections.append(f"Live site context:\n{bundle.live_text}")
    if tool_enabled:
        sections.append(
            "You may call the http_request tool (at most "
            f"{settings.max_tool_calls} times) to probe the live site. Only request URLs "
            "relevant to the question and summarize what each response showed."
        )
    return [
        {"role": "system", "content": "\n\n".join(sections)},
        {"role": "user", "content": question},
    ]


def build_vote_conversation(agent: Agent, proposal: Message) -> list[ChatMessage]:
    return [
        {"role": "system", "content": VOTE_SYSTEM_PROMPT.format(name=agent.name)},
        {"role": "user", "content": f"Proposal:\n\n{proposal.content}\n\nScore it."},
    ]


class ProposeStep(WorkflowStep):
    """Every agent answers the question; any failure aborts the step."""

    name = StepName.PROPOSE
    description = "Collect one proposal per agent"

    def __init__(self, assembler: ContextAssembler) -> None:
        self.assembler = assembler

    async def execute(self, ctx: WorkflowContext) -> WorkflowResult:
        session = ctx.snapshot.session
        if session is None:
            raise SessionNotFoundError(ctx.session_id)
        question = ctx.snapshot.question

        bundle = await self.assembler.assemble(
            artifact_id=session.artifact_id,
            live_url=session.live_url,
            question=question,
        )
        if bundle.text:
            await ctx.events.record(
                EventType.CONTEXT_ASSEMBLED,
                f"Context assembled: {len(bundle.text)} chars, {bundle.chunk_count} chunks "
                f"from {bundle.file_count} files",
                **bundle.to_meta(),
            )

        options = InvokeOptions(enable_http_tool=True)
        results = await asyncio.gather(
            *[
                ctx.providers.invoke(
                    agent,
                    ctx.credentials,
                    build_proposal_conversation(agent, question, bundle),
                    options,
                )
                for agent in ctx.agents
            ],
            return_exceptions=True,
        )

        failures: list[ProposalStepError] = []
        produced: list[tuple[Agent, ProviderResult]] = []
        for agent, result in zip(ctx.agents, results):
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result
            if isinstance(result, Exception):
                failures.append(ProposalStepError(agent.name, str(result) or type(result).__name__))
            elif not result.content.strip():
                failures.append(ProposalStepError(agent.name, "empty response"))
            else:
                produced.append((agent, result))

        if failures:
            for failure in failures:
                await ctx.events.record(
                    EventType.PROPOSAL_FAILED, failure.message, agent=failure.agent_name
                )
            error = failures[0].message
            await ctx.repository.set_session_status(ctx.session_id, SessionStatus.ERROR.value, error)
            return WorkflowResult.failed(error, status_code=failures[0].status_code)

        stored: list[Message] = []
        for agent, result in produced:
            message = await ctx.repository.add_message(
                ctx.session_id,
                MessageRole.AGENT_PROPOSAL,
                result.content,
                agent_id=agent.id,
                model=result.model,
                tokens=result.total_tokens,
                meta={
                    "provider": agent.provider,
                    "stage": "proposal",
                    "fallback": False,
                    "actual_provider": result.provider_used,
                    "http_request_count": result.http_request_count,
                    "model": result.model,
                    "context": bundle.to_meta(),
                },
            )
            stored.append(message)
            suffix = (
                f" after {result.http_request_count} HTTP requests"
                if result.http_request_count
                else ""
            )
            await ctx.events.record(
                EventType.PROPOSAL_STORED,
                f"[{agent.name}] proposal stored as #{message.id} via {result.provider_used}{suffix}",
                agent=agent.name,
                message_id=message.id,
            )
        return WorkflowResult.success(output=[m.id for m in stored])

    def payload(self, snapshot: SessionSnapshot, result: WorkflowResult) -> dict[str, Any]:
        body: dict[str, Any] = {"proposals": [m.to_dict() for m in snapshot.proposals]}
        if result.ok:
            body["next"] = StepName.VOTE.value
        return body


class VoteStep(WorkflowStep):
    """Every agent scores every other agent's proposal; never aborts on provider trouble."""

    name = StepName.VOTE
    description = "Cross-score proposals"

    async def _judge(self, ctx: WorkflowContext, agent: Agent, proposal: Message) -> tuple[VoteJudgment, str | None]:
        try:
            result = await ctx.providers.invoke(
                agent, ctx.credentials, build_vote_conversation(agent, proposal), InvokeOptions()
            )
        except Exception as exc:
            reason = str(exc) or type(exc).__name__
            logger.info("[%s] vote on #%s fell back to heuristic: %s", agent.name, proposal.id, reason)
            return fallback_judgment(agent.name, proposal.content), reason
        return judge_vote(agent.name, result.content, proposal.content), None

    async def execute(self, ctx: WorkflowContext) -> WorkflowResult:
        proposals = ctx.snapshot.proposals
        pairs: list[tuple[Agent, Message]] = []
        for agent in ctx.agents:
            targets = [p for p in proposals if p.agent_id != agent.id]
            if not targets:
                await ctx.events.record(
                    EventType.VOTE_SKIPPED,
                    f"[{agent.name}] no eligible proposals to vote on",
                    agent=agent.name,
                )
                continue
            pairs.extend((agent, p) for p in targets)

        judgments = await asyncio.gather(*[self._judge(ctx, agent, p) for agent, p in pairs])

        vote_ids: list[int] = []
        for (agent, proposal), (judgment, failure) in zip(pairs, judgments):
            vote = await ctx.repository.add_vote(
                ctx.session_id, agent.id, proposal.id, judgment.score, judgment.rationale
            )
            vote_ids.append(vote.id)
            if failure is not None:
                await ctx.events.record(
                    EventType.VOTE_FALLBACK,
                    f"[{agent.name}] heuristic vote {judgment.score} on #{proposal.id} ({failure})",
                    agent=agent.name,
                    vote_id=vote.id,
                )
            elif judgment.fallback:
                await ctx.events.record(
                    EventType.VOTE_FALLBACK,
                    f"[{agent.name}] heuristic vote {judgment.score} on #{proposal.id} (unparsable reply)",
                    agent=agent.name,
                    vote_id=vote.id,
                )
            else:
                await ctx.events.record(
                    EventType.VOTE_STORED,
                    f"[{agent.name}] voted {judgment.score} on #{proposal.id}",
                    agent=agent.name,
                    vote_id=vote.id,
                )
        return WorkflowResult.success(output=vote_ids)

    def payload(self, snapshot: SessionSnapshot, result: WorkflowResult) -> dict[str, Any]:
        return {"next": StepName.CONSENSUS.value, "votes": [v.to_dict() for v in snapshot.votes]}


def tally_scores(proposals: list[Message], votes: list[Any]) -> tuple[Message | None, int]:
    """Pick the proposal with the strictly greatest vote total; the first one holds on ties."""
    totals: dict[int, int] = defaultdict(int)
    for vote in votes:
        totals[vote.target_message_id] += vote.score
    best: Message | None = None
    best_score = 0
    for proposal in proposals:
        score = totals.get(proposal.id, 0)
        if best is None or score > best_score:
            best, best_score = proposal, score
    return best, best_score


class ConsensusStep(WorkflowStep):
    """Echo the best-scored proposal as the session's consensus."""

    name = StepName.CONSENSUS
    description = "Select the winning proposal"

    async def execute(self, ctx: WorkflowContext) -> WorkflowResult:
        proposals = ctx.snapshot.proposals
        best, best_score = tally_scores(proposals, ctx.snapshot.votes)
        if best is None:
            await ctx.repository.set_session_status(
                ctx.session_id, SessionStatus.ERROR.value, NO_PROPOSALS_ERROR
            )
            await ctx.events.record(EventType.CONSENSUS_FAILED, NO_PROPOSALS_ERROR)
            return WorkflowResult.failed(NO_PROPOSALS_ERROR, status_code=409)

        author = next((a for a in ctx.agents if a.id == best.agent_id), None)
        author_name = author.name if author else "unknown agent"
        message = await ctx.repository.add_message(
            ctx.session_id,
            MessageRole.CONSENSUS,
            best.content,
            meta={"stage": "consensus", "from_message_id": best.id, "total_score": best_score},
        )
        summary = f"{author_name} proposal #{best.id} selected with {best_score} points"
        await ctx.repository.upsert_consensus(ctx.session_id, message.id, summary)
        await ctx.repository.set_session_status(ctx.session_id, SessionStatus.CONSENSUS.value)
        await ctx.events.record(
            EventType.CONSENSUS_REACHED,
            f"Consensus: {summary} (message #{message.id})",
            agent=author.name if author else None,
            final_message_id=message.id,
        )
        return WorkflowResult.success(
            output={
                "final_message_id": message.id,
                "winning_proposal_id": best.id,
                "winning_score": best_score,
            }
        )

    def payload(self, snapshot: SessionSnapshot, result: WorkflowResult) -> dict[str, Any]:
        final_id = result.output.get("final_message_id") if isinstance(result.output, dict) else None
        final_message = next((m for m in snapshot.messages if m.id == final_id), None)
        return {
            "final_message_id": final_id,
            "final_message": final_message.to_dict() if final_message else None,
        }
