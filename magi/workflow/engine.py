"""
Runs one deliberation step against a session and reports on it.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from ..context import ContextAssembler
from ..diagnostics import Diagnostics, build_diagnostics
from ..errors import MagiError, SessionNotFoundError
from ..events import EventEmitter, EventLog
from ..providers import Credentials
from ..repository import ChunkStore, SessionRepository, SessionSnapshot
from .base import ProviderInvoker, StepName, WorkflowContext, WorkflowResult, WorkflowStep
from .steps import ConsensusStep, ProposeStep, VoteStep

logger = logging.getLogger(__name__)


@dataclass
class StepOutcome:
    step: StepName
    result: WorkflowResult
    snapshot: SessionSnapshot
    diagnostics: Diagnostics
    payload: dict[str, Any]

    @property
    def ok(self) -> bool:
        return self.result.ok

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"ok": self.ok, "step": self.step.value, **self.payload}
        if not self.ok:
            body["error"] = self.result.error
        body["diagnostics"] = self.diagnostics.to_dict()
        return body


class DeliberationEngine:
    """Step state machine over a session: propose, vote, consensus.

    Each call reads the session fresh, runs exactly one step, and builds
    diagnostics from a second fresh read. Steps are not idempotent:
    running one twice duplicates its messages or votes.
    """

    def __init__(
        self,
        repository: SessionRepository,
        providers: ProviderInvoker,
        *,
        chunk_store: ChunkStore | None = None,
        assembler: ContextAssembler | None = None,
        emitter: EventEmitter | None = None,
    ) -> None:
        self.repository = repository
        self.providers = providers
        self.assembler = assembler or ContextAssembler(chunk_store)
        self.emitter = emitter
        self.steps: dict[StepName, WorkflowStep] = {
            StepName.PROPOSE: ProposeStep(self.assembler),
            StepName.VOTE: VoteStep(),
            StepName.CONSENSUS: ConsensusStep(),
        }

    async def run_step(
        self,
        session_id: str,
        step: str | StepName,
        credentials: Credentials | Mapping[str, Any] | None = None,
    ) -> StepOutcome:
        step_name = StepName.parse(step)
        if not isinstance(credentials, Credentials):
            credentials = Credentials.from_mapping(credentials)

        snapshot = await self.repository.get_session_full(session_id)
        if snapshot.session is None:
            raise SessionNotFoundError(session_id)
        agents = await self.repository.list_agents()

        events = EventLog(session_id, step_name.value, emitter=self.emitter)
        ctx = WorkflowContext(
            repository=self.repository,
            providers=self.providers,
            credentials=credentials,
            snapshot=snapshot,
            agents=agents,
            events=events,
        )
        workflow_step = self.steps[step_name]

        await workflow_step.on_start(ctx)
        try:
            result = await workflow_step.execute(ctx)
        except MagiError as exc:
            logger.warning("%s step failed for session %s: %s", step_name.value, session_id, exc.message)
            await workflow_step.on_error(ctx, exc)
            result = WorkflowResult.failed(exc.message, status_code=exc.status_code)
        else:
            await workflow_step.on_complete(ctx, result)

        refreshed = await self.repository.get_session_full(session_id)
        diagnostics = build_diagnostics(
            step_name.value,
            refreshed.agents or agents,
            refreshed.messages,
            refreshed.votes,
            events.messages,
        )
        return StepOutcome(
            step=step_name,
            result=result,
            snapshot=refreshed,
            diagnostics=diagnostics,
            payload=workflow_step.payload(refreshed, result),
        )
