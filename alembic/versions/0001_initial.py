"""Initial schema - all tables for magi deliberation.

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-16

"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # Agents table
    op.create_table(
        "magi_agents",
        sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("slug", sa.String(), nullable=False, unique=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("provider", sa.String(), nullable=False),
        sa.Column("model", sa.String(), nullable=True),
        sa.Column("color", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Code artifacts table (filled by the upload pipeline)
    op.create_table(
        "magi_code_artifacts",
        sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("storage_path", sa.String(), nullable=False),
        sa.Column("original_filename", sa.String(), nullable=False),
        sa.Column("byte_length", sa.BigInteger(), server_default="0"),
        sa.Column("sha256", sa.String(), nullable=True),
        sa.Column("status", sa.String(), server_default="uploaded"),
        sa.Column("ready_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("manifest", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_magi_code_artifacts_user", "magi_code_artifacts", ["user_id"])

    # Code chunks table
    op.create_table(
        "magi_code_chunks",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "artifact_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("magi_code_artifacts.id", ondelete="CASCADE"),
        ),
        sa.Column("file_path", sa.Text(), nullable=False),
        sa.Column("chunk_index", sa.Integer(), nullable=False),
        sa.Column("language", sa.String(), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("token_estimate", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_magi_code_chunks_artifact", "magi_code_chunks", ["artifact_id", "chunk_index"])
    op.create_index("idx_magi_code_chunks_language", "magi_code_chunks", ["artifact_id", "language"])

    # Sessions table
    op.create_table(
        "magi_sessions",
        sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("question", sa.Text(), nullable=False),
        sa.Column(
            "artifact_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("magi_code_artifacts.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("live_url", sa.Text(), nullable=True),
        sa.Column("status", sa.String(), server_default="pending"),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_magi_sessions_user", "magi_sessions", ["user_id"])
    op.create_index("magi_sessions_live_url_idx", "magi_sessions", ["live_url"])

    # Messages table
    op.create_table(
        "magi_messages",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "session_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("magi_sessions.id", ondelete="CASCADE"),
        ),
        sa.Column(
            "agent_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("magi_agents.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("model", sa.String(), nullable=True),
        sa.Column("tokens", sa.Integer(), nullable=True),
        sa.Column("meta", postgresql.JSONB(), server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_magi_messages_session", "magi_messages", ["session_id", "id"])

    # Votes table
    op.create_table(
        "magi_votes",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "session_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("magi_sessions.id", ondelete="CASCADE"),
        ),
        sa.Column(
            "agent_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("magi_agents.id", ondelete="CASCADE"),
        ),
        sa.Column(
            "target_message_id",
            sa.BigInteger(),
            sa.ForeignKey("magi_messages.id", ondelete="CASCADE"),
        ),
        sa.Column("score", sa.Integer(), nullable=False),
        sa.Column("rationale", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("score >= 0 AND score <= 100", name="ck_magi_votes_score_range"),
    )
    op.create_index("idx_magi_votes_session", "magi_votes", ["session_id"])

    # Consensus table
    op.create_table(
        "magi_consensus",
        sa.Column(
            "session_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("magi_sessions.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "final_message_id",
            sa.BigInteger(),
            sa.ForeignKey("magi_messages.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("magi_consensus")
    op.drop_table("magi_votes")
    op.drop_table("magi_messages")
    op.drop_table("magi_sessions")
    op.drop_table("magi_code_chunks")
    op.drop_table("magi_code_artifacts")
    op.drop_table("magi_agents")
