"""Async database connection and operations for the deliberation engine."""

from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from .config import settings
from .errors import (
    SchemaNotInitializedError,
    StorageError,
    is_schema_missing_error,
    schema_not_initialized_message,
)
from .model_config import DEFAULT_MODELS
from .models import (
    Agent,
    AgentSlug,
    Base,
    CodeArtifact,
    CodeChunk,
    Consensus,
    MagiSession,
    Message,
    MessageRole,
    Provider,
    SessionStatus,
    Vote,
)
from .repository import SessionSnapshot

# Create async engine and session factory
engine = create_async_engine(settings.async_database_url, echo=False, pool_pre_ping=True)
async_session_factory = async_sessionmaker(engine, expire_on_commit=False)

DEFAULT_AGENTS: list[dict[str, str]] = [
    {
        "slug": AgentSlug.CASPER.value,
        "name": "CASPER",
        "provider": Provider.OPENAI.value,
        "model": DEFAULT_MODELS[Provider.OPENAI],
        "color": "#38bdf8",
    },
    {
        "slug": AgentSlug.BALTHASAR.value,
        "name": "BALTHASAR",
        "provider": Provider.ANTHROPIC.value,
        "model": DEFAULT_MODELS[Provider.ANTHROPIC],
        "color": "#f472b6",
    },
    {
        "slug": AgentSlug.MELCHIOR.value,
        "name": "MELCHIOR",
        "provider": Provider.GROK.value,
        "model": DEFAULT_MODELS[Provider.GROK],
        "color": "#facc15",
    },
]


async def init_db() -> None:
    """Create all tables (for development/testing)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession]:
    """Async context manager for database sessions."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception as exc:
            await session.rollback()
            if isinstance(exc, SQLAlchemyError):
                if is_schema_missing_error(exc):
                    raise SchemaNotInitializedError(schema_not_initialized_message(exc)) from exc
                raise StorageError(f"Storage error: {exc}") from exc
            raise


# =============================================================================
# Agent Operations
# =============================================================================


async def list_agents(session: AsyncSession) -> list[Agent]:
    """Return all agents ordered by slug, seeding the defaults when missing."""
    result = await session.execute(select(Agent).order_by(Agent.slug))
    agents = list(result.scalars().all())
    present = {a.slug for a in agents}
    missing = [row for row in DEFAULT_AGENTS if row["slug"] not in present]
    if not missing:
        return agents

    await session.execute(
        pg_insert(Agent).values(missing).on_conflict_do_nothing(index_elements=["slug"])
    )
    await session.flush()
    result = await session.execute(select(Agent).order_by(Agent.slug))
    return list(result.scalars().all())


# =============================================================================
# Session Operations
# =============================================================================


async def create_session(
    session: AsyncSession,
    user_id: str,
    question: str,
    *,
    artifact_id: str | None = None,
    live_url: str | None = None,
) -> MagiSession:
    magi_session = MagiSession(
        user_id=user_id,
        question=question,
        artifact_id=artifact_id,
        live_url=live_url,
        status=SessionStatus.PENDING.value,
    )
    session.add(magi_session)
    await session.flush()
    await session.refresh(magi_session)
    return magi_session


async def get_magi_session(session: AsyncSession, session_id: str) -> MagiSession | None:
    result = await session.execute(select(MagiSession).where(MagiSession.id == session_id))
    return result.scalar_one_or_none()


async def set_session_status(
    session: AsyncSession, session_id: str, status: str, error: str | None = None
) -> None:
    await session.execute(
        update(MagiSession)
        .where(MagiSession.id == session_id)
        .values(status=status, error=error)
    )


async def list_sessions(session: AsyncSession, user_id: str) -> list[dict[str, Any]]:
    """List a user's sessions, newest first, with their consensus pointer."""
    result = await session.execute(
        select(MagiSession, Consensus)
        .outerjoin(Consensus, Consensus.session_id == MagiSession.id)
        .where(MagiSession.user_id == user_id)
        .order_by(MagiSession.created_at.desc())
    )
    rows: list[dict[str, Any]] = []
    for magi_session, consensus in result.all():
        row = magi_session.to_dict()
        row["final_message_id"] = consensus.final_message_id if consensus else None
        row["consensus_summary"] = consensus.summary if consensus else None
        rows.append(row)
    return rows


# =============================================================================
# Message / Vote / Consensus Operations
# =============================================================================


async def add_message(
    session: AsyncSession,
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
        session_id=session_id,
        role=role.value,
        content=content,
        agent_id=agent_id,
        model=model,
        tokens=tokens,
        meta=meta or {},
    )
    session.add(message)
    await session.flush()
    await session.refresh(message)
    return message


async def add_vote(
    session: AsyncSession,
    session_id: str,
    agent_id: str,
    target_message_id: int,
    score: int,
    rationale: str | None = None,
) -> Vote:
    vote = Vote(
        session_id=session_id,
        agent_id=agent_id,
        target_message_id=target_message_id,
        score=score,
        rationale=rationale,
    )
    session.add(vote)
    await session.flush()
    await session.refresh(vote)
    return vote


async def upsert_consensus(
    session: AsyncSession,
    session_id: str,
    final_message_id: int | None,
    summary: str | None = None,
) -> Consensus:
    stmt = pg_insert(Consensus).values(
        session_id=session_id, final_message_id=final_message_id, summary=summary
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["session_id"],
        set_={"final_message_id": final_message_id, "summary": summary},
    )
    await session.execute(stmt)
    result = await session.execute(select(Consensus).where(Consensus.session_id == session_id))
    return result.scalar_one()


async def get_session_full(session: AsyncSession, session_id: str) -> SessionSnapshot:
    magi_session = await get_magi_session(session, session_id)
    messages = await session.execute(
        select(Message).where(Message.session_id == session_id).order_by(Message.id)
    )
    votes = await session.execute(
        select(Vote).where(Vote.session_id == session_id).order_by(Vote.id)
    )
    consensus = await session.execute(select(Consensus).where(Consensus.session_id == session_id))
    return SessionSnapshot(
        session=magi_session,
        messages=list(messages.scalars().all()),
        votes=list(votes.scalars().all()),
        consensus=consensus.scalar_one_or_none(),
        agents=await list_agents(session),
    )


# =============================================================================
# Artifact Operations
# =============================================================================


async def get_artifact_by_id(session: AsyncSession, artifact_id: str) -> CodeArtifact | None:
    result = await session.execute(select(CodeArtifact).where(CodeArtifact.id == artifact_id))
    return result.scalar_one_or_none()


async def list_artifact_chunks(
    session: AsyncSession,
    artifact_id: str,
    limit: int = 40,
    languages: Sequence[str] | None = None,
) -> list[CodeChunk]:
    query = select(CodeChunk).where(CodeChunk.artifact_id == artifact_id)
    if languages:
        query = query.where(CodeChunk.language.in_(list(languages)))
    query = query.order_by(CodeChunk.chunk_index, CodeChunk.id).limit(limit)
    result = await session.execute(query)
    return list(result.scalars().all())


# =============================================================================
# Collaborator implementations
# =============================================================================


class SqlSessionRepository:
    """Session repository backed by PostgreSQL; one transaction per call."""

    async def create_session(
        self,
        user_id: str,
        question: str,
        *,
        artifact_id: str | None = None,
        live_url: str | None = None,
    ) -> MagiSession:
        async with get_session() as session:
            return await create_session(
                session, user_id, question, artifact_id=artifact_id, live_url=live_url
            )

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
        async with get_session() as session:
            return await add_message(
                session,
                session_id,
                role,
                content,
                agent_id=agent_id,
                model=model,
                tokens=tokens,
                meta=meta,
            )

    async def add_vote(
        self,
        session_id: str,
        agent_id: str,
        target_message_id: int,
        score: int,
        rationale: str | None = None,
    ) -> Vote:
        async with get_session() as session:
            return await add_vote(session, session_id, agent_id, target_message_id, score, rationale)

    async def set_session_status(
        self, session_id: str, status: str, error: str | None = None
    ) -> None:
        async with get_session() as session:
            await set_session_status(session, session_id, status, error)

    async def upsert_consensus(
        self, session_id: str, final_message_id: int | None, summary: str | None = None
    ) -> Consensus:
        async with get_session() as session:
            return await upsert_consensus(session, session_id, final_message_id, summary)

    async def get_session_full(self, session_id: str) -> SessionSnapshot:
        async with get_session() as session:
            return await get_session_full(session, session_id)

    async def list_agents(self) -> list[Agent]:
        async with get_session() as session:
            return await list_agents(session)

    async def list_sessions(self, user_id: str) -> list[dict[str, Any]]:
        async with get_session() as session:
            return await list_sessions(session, user_id)


class SqlChunkStore:
    """Chunk store reading the tables filled by the upload pipeline."""

    async def list_artifact_chunks(
        self,
        artifact_id: str,
        limit: int = 40,
        languages: Sequence[str] | None = None,
    ) -> list[CodeChunk]:
        async with get_session() as session:
            return await list_artifact_chunks(session, artifact_id, limit, languages)

    async def get_artifact_by_id(self, artifact_id: str) -> CodeArtifact | None:
        async with get_session() as session:
            return await get_artifact_by_id(session, artifact_id)
