"""Contracts for the storage collaborators the engine consumes."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from .models import Agent, CodeArtifact, CodeChunk, Consensus, MagiSession, Message, MessageRole, Vote


@dataclass
class SessionSnapshot:
    """Fully materialized view of one session as the repository sees it."""

    session: MagiSession | None
    messages: list[Message] = field(default_factory=list)
    votes: list[Vote] = field(default_factory=list)
    consensus: Consensus | None = None
    agents: list[Agent] = field(default_factory=list)

    def messages_by_role(self, role: MessageRole) -> list[Message]:
        return [m for m in self.messages if m.role == role.value]

    @property
    def proposals(self) -> list[Message]:
        return self.messages_by_role(MessageRole.AGENT_PROPOSAL)

    @property
    def question(self) -> str:
        if self.session is not None and self.session.question:
            return self.session.question
        user_messages = self.messages_by_role(MessageRole.USER)
        return user_messages[0].content if user_messages else ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "session": self.session.to_dict() if self.session else None,
            "messages": [m.to_dict() for m in self.messages],
            "votes": [v.to_dict() for v in self.votes],
            "consensus": self.consensus.to_dict() if self.consensus else None,
            "agents": [a.to_dict() for a in self.agents],
        }


class SessionRepository(Protocol):
    """CRUD for sessions, messages, votes and consensus records."""

    async def create_session(
        self,
        user_id: str,
        question: str,
        *,
        artifact_id: str | None = None,
        live_url: str | None = None,
    ) -> MagiSession: ...

    async def add_message(
        self,
        session_id: str,
        role: MessageRole,
        content: str,
        *,
        agent_id: str | None = None,
        model: str | None = None,
        tokens: int | None = None,
        meta: dict[str, Any] | None = None,
    ) -> Message: ...

    async def add_vote(
        self,
        session_id: str,
        agent_id: str,
        target_message_id: int,
        score: int,
        rationale: str | None = None,
    ) -> Vote: ...

    async def set_session_status(
        self, session_id: str, status: str, error: str | None = None
    ) -> None: ...

    async def upsert_consensus(
        self, session_id: str, final_message_id: int | None, summary: str | None = None
    ) -> Consensus: ...

    async def get_session_full(self, session_id: str) -> SessionSnapshot: ...

    async def list_agents(self) -> list[Agent]: ...

    async def list_sessions(self, user_id: str) -> list[dict[str, Any]]: ...


class ChunkStore(Protocol):
    """Read access to pre-extracted chunks of uploaded code artifacts."""

    async def list_artifact_chunks(
        self,
        artifact_id: str,
        limit: int = 40,
        languages: Sequence[str] | None = None,
    ) -> list[CodeChunk]: ...

    async def get_artifact_by_id(self, artifact_id: str) -> CodeArtifact | None: ...
