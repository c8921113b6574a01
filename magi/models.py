"""SQLAlchemy models for the MAGI deliberation database."""

from datetime import datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


class Provider(StrEnum):
    """Closed set of model providers; each has exactly one invocation strategy."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GROK = "grok"


class AgentSlug(StrEnum):
    CASPER = "casper"
    BALTHASAR = "balthasar"
    MELCHIOR = "melchior"


class SessionStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    CONSENSUS = "consensus"
    COMPLETE = "complete"
    ERROR = "error"


class MessageRole(StrEnum):
    USER = "user"
    AGENT_PROPOSAL = "agent_proposal"
    # Kept for stored data; no step produces critiques.
    AGENT_CRITIQUE = "agent_critique"
    CONSENSUS = "consensus"


class ArtifactStatus(StrEnum):
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class Base(DeclarativeBase):
    """Base class for all models."""

    type_annotation_map = {
        dict[str, Any]: JSONB,
    }


class Agent(Base):
    """One of the three fixed deliberating agents."""

    __tablename__ = "magi_agents"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid4())
    )
    slug: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    provider: Mapped[str] = mapped_column(String, nullable=False)
    model: Mapped[str | None] = mapped_column(String, nullable=True)
    color: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "slug": self.slug,
            "name": self.name,
            "provider": self.provider,
            "model": self.model,
            "color": self.color,
            "created_at": _iso(self.created_at),
        }


class CodeArtifact(Base):
    """Uploaded code bundle; its chunks are produced outside this package."""

    __tablename__ = "magi_code_artifacts"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid4())
    )
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    storage_path: Mapped[str] = mapped_column(String, nullable=False)
    original_filename: Mapped[str] = mapped_column(String, nullable=False)
    byte_length: Mapped[int] = mapped_column(BigInteger, default=0)
    sha256: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, default=ArtifactStatus.UPLOADED.value)
    ready_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    manifest: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class CodeChunk(Base):
    """Pre-extracted slice of one file from an uploaded artifact."""

    __tablename__ = "magi_code_chunks"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    artifact_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("magi_code_artifacts.id", ondelete="CASCADE")
    )
    file_path: Mapped[str] = mapped_column(Text, nullable=False)
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    language: Mapped[str | None] = mapped_column(String, nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    token_estimate: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class MagiSession(Base):
    """One question put to the three agents."""

    __tablename__ = "magi_sessions"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid4())
    )
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    question: Mapped[str] = mapped_column(Text, nullable=False)
    artifact_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("magi_code_artifacts.id", ondelete="SET NULL"),
        nullable=True,
    )
    live_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String, default=SessionStatus.PENDING.value)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "question": self.question,
            "artifact_id": self.artifact_id,
            "live_url": self.live_url,
            "status": self.status,
            "error": self.error,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Message(Base):
    """Append-only transcript entry; ids increase monotonically."""

    __tablename__ = "magi_messages"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("magi_sessions.id", ondelete="CASCADE")
    )
    agent_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False), ForeignKey("magi_agents.id", ondelete="SET NULL"), nullable=True
    )
    role: Mapped[str] = mapped_column(String, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    model: Mapped[str | None] = mapped_column(String, nullable=True)
    tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    meta: Mapped[dict[str, Any]] = mapped_column(JSONB, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "agent_id": self.agent_id,
            "role": self.role,
            "content": self.content,
            "model": self.model,
            "tokens": self.tokens,
            "meta": dict(self.meta or {}),
            "created_at": _iso(self.created_at),
        }


class Vote(Base):
    """Score one agent gave another agent's proposal."""

    __tablename__ = "magi_votes"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("magi_sessions.id", ondelete="CASCADE")
    )
    agent_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("magi_agents.id", ondelete="CASCADE")
    )
    target_message_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("magi_messages.id", ondelete="CASCADE")
    )
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    rationale: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "agent_id": self.agent_id,
            "target_message_id": self.target_message_id,
            "score": self.score,
            "rationale": self.rationale,
            "created_at": _iso(self.created_at),
        }


class Consensus(Base):
    """Final selection for a session (at most one row per session)."""

    __tablename__ = "magi_consensus"

    session_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("magi_sessions.id", ondelete="CASCADE"), primary_key=True
    )
    final_message_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("magi_messages.id", ondelete="SET NULL"), nullable=True
    )
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "final_message_id": self.final_message_id,
            "summary": self.summary,
            "created_at": _iso(self.created_at),
        }
