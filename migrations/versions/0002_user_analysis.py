"""user analysis profile

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-19 00:00:00.000000

Latest model reading of each user plus a per-user privacy flag.
Existing users start public with no profile.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0002"
down_revision: Union[str, None] = "0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column("users", sa.Column("is_public", sa.Boolean(), nullable=False,
                                     server_default=sa.true(),
                                     comment="Profile visible on the dashboard"))
    op.add_column("users", sa.Column("user_type", sa.String(32), nullable=True))
    op.add_column("users", sa.Column("engagement_level", sa.String(16), nullable=True))
    op.add_column("users", sa.Column("risk_level", sa.String(16), nullable=True))
    op.add_column("users", sa.Column("recommended_role", sa.String(32), nullable=True))
    op.add_column("users", sa.Column("influence_score", sa.Float(), nullable=True))
    op.add_column("users", sa.Column("overall_score", sa.Float(), nullable=True))
    op.add_column("users", sa.Column("specialties", sa.Text(), nullable=True, comment="JSON array"))
    op.add_column("users", sa.Column("behavior_tags", sa.Text(), nullable=True, comment="JSON array"))
    op.add_column("users", sa.Column("last_analyzed", sa.DateTime(timezone=True), nullable=True))
    op.create_index("ix_users_overall_score", "users", ["overall_score"])


def downgrade() -> None:
    op.drop_index("ix_users_overall_score", table_name="users")
    for column in (
        "last_analyzed", "behavior_tags", "specialties", "overall_score", "influence_score",
        "recommended_role", "risk_level", "engagement_level", "user_type", "is_public",
    ):
        op.drop_column("users", column)
