"""initial recommendation schema

Revision ID: 0001_initial_recommendation_schema
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001_initial_recommendation_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "physical_media_collections",
        sa.Column("id", sa.String(36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("imdb_id", sa.String(), nullable=True),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=True),
        sa.Column("genre", sa.String(), nullable=True),
        sa.Column("director", sa.String(), nullable=True),
        sa.Column("format", sa.String(), nullable=False, server_default="Blu-ray"),
        sa.Column("personal_rating", sa.Float(), nullable=True),
        sa.Column("collection_type", sa.String(), nullable=False, server_default="owned"),
        sa.Column("poster_url", sa.String(), nullable=True),
        sa.Column("condition", sa.String(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=True),
    )
    op.create_index("ix_physical_media_collections_user_id", "physical_media_collections", ["user_id"])
    op.create_index("ix_physical_media_collections_imdb_id", "physical_media_collections", ["imdb_id"])

    op.create_table(
        "recommendation_actions",
        sa.Column("id", sa.String(36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("imdb_id", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("recommendation_type", sa.String(), nullable=False),
        sa.Column("recommendation_score", sa.Float(), nullable=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("reasoning", sa.Text(), nullable=True),
        sa.Column("suggested_format", sa.String(), nullable=True),
        sa.Column("session_id", sa.String(), nullable=True),
        sa.Column("feedback_reason", sa.String(), nullable=True),
        sa.Column("feedback_comment", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint(
            "user_id", "imdb_id", "recommendation_type", "action",
            name="uq_recommendation_actions_user_title_type_action",
        ),
    )
    op.create_index("ix_recommendation_actions_user_id", "recommendation_actions", ["user_id"])
    op.create_index("ix_recommendation_actions_imdb_id", "recommendation_actions", ["imdb_id"])
    op.create_index("ix_recommendation_actions_action", "recommendation_actions", ["action"])
    op.create_index("ix_recommendation_actions_created_at", "recommendation_actions", ["created_at"])
    op.create_index(
        "idx_recommendation_actions_user_title",
        "recommendation_actions",
        ["user_id", "imdb_id", "recommendation_type"],
    )

    op.create_table(
        "recommendation_sessions",
        sa.Column("id", sa.String(36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("session_id", sa.String(), nullable=False),
        sa.Column("recommendation_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("filters_applied", sa.JSON(), nullable=True),
        sa.Column("generation_time_ms", sa.Integer(), nullable=True),
        sa.Column("cache_hit", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "session_id", name="uq_recommendation_sessions_user_session"),
    )
    op.create_index("ix_recommendation_sessions_user_id", "recommendation_sessions", ["user_id"])
    op.create_index("ix_recommendation_sessions_session_id", "recommendation_sessions", ["session_id"])
    op.create_index("ix_recommendation_sessions_expires_at", "recommendation_sessions", ["expires_at"])

    op.create_table(
        "cache_entries",
        sa.Column("key", sa.String(), primary_key=True, nullable=False),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("cache_entries")
    op.drop_index("ix_recommendation_sessions_expires_at", table_name="recommendation_sessions")
    op.drop_index("ix_recommendation_sessions_session_id", table_name="recommendation_sessions")
    op.drop_index("ix_recommendation_sessions_user_id", table_name="recommendation_sessions")
    op.drop_table("recommendation_sessions")
    op.drop_index("idx_recommendation_actions_user_title", table_name="recommendation_actions")
    op.drop_index("ix_recommendation_actions_created_at", table_name="recommendation_actions")
    op.drop_index("ix_recommendation_actions_action", table_name="recommendation_actions")
    op.drop_index("ix_recommendation_actions_imdb_id", table_name="recommendation_actions")
    op.drop_index("ix_recommendation_actions_user_id", table_name="recommendation_actions")
    op.drop_table("recommendation_actions")
    op.drop_index("ix_physical_media_collections_imdb_id", table_name="physical_media_collections")
    op.drop_index("ix_physical_media_collections_user_id", table_name="physical_media_collections")
    op.drop_table("physical_media_collections")
