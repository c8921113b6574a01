"""Shared test fixtures and configuration for pytest."""

import itertools
from collections.abc import Callable, Sequence
from typing import Any
from uuid import uuid4

import pytest

from magi.models import (
    Agent,
    CodeArtifact,
    CodeChunk,
    Consensus,
    MagiSession,
    Message,
    MessageRole,
    Vote,
)
from magi.providers import ChatMessage, Credentials, InvokeOptions, ProviderResult
from magi.repository import SessionSnapshot


def make_agent(slug: str, name: str, provider: str) -> Agent:
    return Agent(id=str(uuid4()), slug=slug, name=name, provider=provider, model=None, color=None)


class InMemoryRepository:
    """Session repository keeping everything in lists; ids are monotonic."""

    def __init__(self, agents: Sequence[Agent]) -> None:
        self.agents = list(agents)
        self.sessions: dict[str, MagiSession] = {}
        self.messages: list[Message] = []
        self.votes: list[Vote] = []
        self.consensus: dict[str, Consensus] = {}
        self.status_history: list[tuple[str, str | None]] = []
        self._message_ids = itertools.count(1)
        self._vote_ids = itertools.count(1)

    async def create_session(
        self,
        user_id: str,
        question: str,
        *,
        artifact_id: str | None = None,
        live_url: str | None = None,
    ) -> MagiSession:
        session = MagiSession(
            id=str(uuid4()),
            user_id=user_id,
            question=question,
            artifact_id=artifact_id,
            live_url=live_url,
            status="pending",
            error=None,
        )
        self.sessions[session.id] = session
        return session

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
    ) -> Message:
        message = Message(
            id=next(self._message_ids),
            session_id=session_id,
            agent_id=agent_id,
            role=role.value,
            content=content,
            model=model,
            tokens=tokens,
            meta=dict(meta or {}),
        )
        self.messages.append(message)
        return message

    async def add_vote(
        self,
        session_id: str,
        agent_id: str,
        target_message_id: int,
        score: int,
        rationale: str | None = None,
    ) -> Vote:
        vote = Vote(
            id=next(self._vote_ids),
            session_id=session_id,
            agent_id=agent_id,
            target_message_id=target_message_id,
            score=score,
            rationale=rationale,
        )
        self.votes.append(vote)
        return vote

    async def set_session_status(self, session_id: str, status: str, error: str | None = None) -> None:
        session = self.sessions[session_id]
        session.status = status
        session.error = error
        self.status_history.append((status, error))

    async def upsert_consensus(
        self, session_id: str, final_message_id: int | None, summary: str | None = None
    ) -> Consensus:
        record = Consensus(session_id=session_id, final_message_id=final_message_id, summary=summary)
        self.consensus[session_id] = record
        return record

    async def get_session_full(self, session_id: str) -> SessionSnapshot:
        return SessionSnapshot(
            session=self.sessions.get(session_id),
            messages=[m for m in self.messages if m.session_id == session_id],
            votes=[v for v in self.votes if v.session_id == session_id],
            consensus=self.consensus.get(session_id),
            agents=list(self.agents),
        )

    async def list_agents(self) -> list[Agent]:
        return list(self.agents)

    async def list_sessions(self, user_id: str) -> list[dict[str, Any]]:
        rows = []
        for session in self.sessions.values():
            if session.user_id != user_id:
                continue
            row = session.to_dict()
            consensus = self.consensus.get(session.id)
            row["final_message_id"] = consensus.final_message_id if consensus else None
            row["consensus_summary"] = consensus.summary if consensus else None
            rows.append(row)
        return rows


class FakeChunkStore:
    """Chunk store over in-memory artifacts and chunks."""

    def __init__(self) -> None:
        self.artifacts: dict[str, CodeArtifact] = {}
        self.chunks: dict[str, list[CodeChunk]] = {}
        self.calls: list[tuple[str, int, tuple[str, ...] | None]] = []

    def add_artifact(
        self,
        *,
        user_id: str = "user-1",
        status: str = "ready",
        manifest: dict[str, Any] | None = None,
        chunks: Sequence[tuple[str, int, str | None, str]] = (),
        filename: str = "site.zip",
    ) -> CodeArtifact:
        artifact = CodeArtifact(
            id=str(uuid4()),
            user_id=user_id,
            storage_path=f"uploads/{filename}",
            original_filename=filename,
            status=status,
            manifest=manifest,
        )
        self.artifacts[artifact.id] = artifact
        self.chunks[artifact.id] = [
            CodeChunk(
                id=index + 1,
                artifact_id=artifact.id,
                file_path=path,
                chunk_index=chunk_index,
                language=language,
                content=content,
                token_estimate=None,
            )
            for index, (path, chunk_index, language, content) in enumerate(chunks)
        ]
        return artifact

    async def list_artifact_chunks(
        self,
        artifact_id: str,
        limit: int = 40,
        languages: Sequence[str] | None = None,
    ) -> list[CodeChunk]:
        self.calls.append((artifact_id, limit, tuple(languages) if languages else None))
        chunks = self.chunks.get(artifact_id, [])
        if languages:
            chunks = [c for c in chunks if c.language in languages]
        return sorted(chunks, key=lambda c: (c.chunk_index, c.id))[:limit]

    async def get_artifact_by_id(self, artifact_id: str) -> CodeArtifact | None:
        return self.artifacts.get(artifact_id)


Responder = Callable[[Agent, Sequence[ChatMessage], InvokeOptions | None], Any]


class FakeInvoker:
    """Provider invoker whose answers come from a responder callable.

    The responder may return a string, a ProviderResult, or an exception to raise.
    """

    def __init__(self, responder: Responder) -> None:
        self.responder = responder
        self.calls: list[tuple[str, list[ChatMessage], InvokeOptions | None]] = []

    async def invoke(
        self,
        agent: Agent,
        credentials: Credentials,
        conversation: Sequence[ChatMessage],
        options: InvokeOptions | None = None,
    ) -> ProviderResult:
        self.calls.append((agent.slug, list(conversation), options))
        outcome = self.responder(agent, conversation, options)
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, ProviderResult):
            return outcome
        return ProviderResult(content=outcome, provider_used=agent.provider, model=f"{agent.provider}-model")


@pytest.fixture
def agents() -> list[Agent]:
    return [
        make_agent("balthasar", "BALTHASAR", "anthropic"),
        make_agent("casper", "CASPER", "openai"),
        make_agent("melchior", "MELCHIOR", "grok"),
    ]


@pytest.fixture
def repository(agents: list[Agent]) -> InMemoryRepository:
    return InMemoryRepository(agents)


@pytest.fixture
def chunk_store() -> FakeChunkStore:
    return FakeChunkStore()


@pytest.fixture
def credentials() -> dict[str, str]:
    return {"openai": "sk-openai", "anthropic": "sk-ant", "grok": "xai-key"}
