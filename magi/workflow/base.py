"""
Base workflow abstractions for deliberation steps.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Optional, Protocol

from ..errors import InvalidStepError
from ..events import EventLog, EventType
from ..models import Agent
from ..providers import ChatMessage, Credentials, InvokeOptions, ProviderResult
from ..repository import SessionRepository, SessionSnapshot


class StepName(StrEnum):
    PROPOSE = "propose"
    VOTE = "vote"
    CONSENSUS = "consensus"

    @classmethod
    def parse(cls, value: object) -> "StepName":
        try:
            return cls(value)
        except ValueError as exc:
            raise InvalidStepError(value) from exc


class WorkflowStatus(StrEnum):
    COMPLETED = "completed"
    FAILED = "failed"


class ProviderInvoker(Protocol):
    async def invoke(
        self,
        agent: Agent,
        credentials: Credentials,
        conversation: Sequence[ChatMessage],
        options: InvokeOptions | None = None,
    ) -> ProviderResult: ...


@dataclass
class WorkflowContext:
    """Context passed through a step execution."""

    repository: SessionRepository
    providers: ProviderInvoker
    credentials: Credentials
    snapshot: SessionSnapshot
    agents: list[Agent]
    events: EventLog

    @property
    def session_id(self) -> str:
        return self.events.session_id


@dataclass
class WorkflowResult:
    """Result of a workflow step."""

    status: WorkflowStatus
    output: Any = None
    error: Optional[str] = None
    status_code: int = 200

    @property
    def ok(self) -> bool:
        return self.status == WorkflowStatus.COMPLETED

    @classmethod
    def success(cls, output: Any = None) -> "WorkflowResult":
        return cls(status=WorkflowStatus.COMPLETED, output=output)

    @classmethod
    def failed(cls, error: str, *, status_code: int = 500, output: Any = None) -> "WorkflowResult":
        return cls(status=WorkflowStatus.FAILED, output=output, error=error, status_code=status_code)


class WorkflowStep(ABC):
    """Base class for a workflow step."""

    name: StepName
    description: str = ""

    @abstractmethod
    async def execute(self, ctx: WorkflowContext) -> WorkflowResult:
        pass

    def payload(self, snapshot: SessionSnapshot, result: WorkflowResult) -> dict[str, Any]:
        """Step-specific response body built from refreshed state."""
        del snapshot
        del result
        return {}

    async def on_start(self, ctx: WorkflowContext) -> None:
        await ctx.events.record(EventType.STEP_STARTED, f"{self.name.value} step started")

    async def on_complete(self, ctx: WorkflowContext, result: WorkflowResult) -> None:
        if result.ok:
            await ctx.events.record(EventType.STEP_COMPLETED, f"{self.name.value} step completed")
        else:
            await ctx.events.record(
                EventType.STEP_FAILED, f"{self.name.value} step failed: {result.error}"
            )

    async def on_error(self, ctx: WorkflowContext, error: Exception) -> None:
        await ctx.events.record(EventType.STEP_FAILED, f"{self.name.value} step aborted: {error}")
