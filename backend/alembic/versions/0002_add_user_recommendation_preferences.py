"""add user_recommendation_preferences table

Revision ID: 0002_add_user_recommendation_preferences
Revises: 0001_initial_recommendation_schema
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0002_add_user_recommendation_preferences"
down_revision: Union[str, None] = "0001_initial_recommendation_schema"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "user_recommendation_preferences",
        sa.Column("id", sa.String(36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("preferred_genres", sa.JSON(), nullable=True),
        sa.Column("avoided_genres", sa.JSON(), nullable=True),
        sa.Column("preferred_directors", sa.JSON(), nullable=True),
        sa.Column("avoided_directors", sa.JSON(), nullable=True),
        sa.Column("preferred_formats", sa.JSON(), nullable=True),
        sa.Column("min_rating", sa.Float(), nullable=True),
        sa.Column("max_price", sa.Float(), nullable=True),
        sa.Column("collection_gap_weight", sa.Float(), nullable=False, server_default="0.3"),
        sa.Column("format_upgrade_weight", sa.Float(), nullable=False, server_default="0.3"),
        sa.Column("similar_title_weight", sa.Float(), nullable=False, server_default="0.4"),
        sa.Column("dismissal_patterns", sa.JSON(), nullable=True),
        sa.Column("conversion_patterns", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(
        "ix_user_recommendation_preferences_user_id",
        "user_recommendation_preferences",
        ["user_id"],
        unique=True,
    )


def downgrade() -> None:
    op.drop_index("ix_user_recommendation_preferences_user_id", table_name="user_recommendation_preferences")
    op.drop_table("user_recommendation_preferences")
