"""Initial migration: profiles, synced data, consumption streaks

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

revision: str = "001_initial"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "profiles",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("username", sa.String(length=30), nullable=True),
        sa.Column("display_name", sa.String(length=100), nullable=True),
        sa.Column("avatar_url", sa.String(length=500), nullable=True),
        sa.Column("public_profile", sa.Boolean(), nullable=False),
        sa.Column("public_habits", sa.Boolean(), nullable=False),
        sa.Column("public_cigarette_streak", sa.Boolean(), nullable=False),
        sa.Column("public_joint_streak", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_profiles_id"), "profiles", ["id"], unique=False)
    op.create_index(op.f("ix_profiles_username"), "profiles", ["username"], unique=True)

    op.create_table(
        "synced_data",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("device_id", sa.String(length=128), nullable=False),
        sa.Column("last_modified", sa.BigInteger(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_synced_data_id"), "synced_data", ["id"], unique=False)
    op.create_index(op.f("ix_synced_data_user_id"), "synced_data", ["user_id"], unique=False)
    op.create_index(
        op.f("ix_synced_data_last_modified"), "synced_data", ["last_modified"], unique=False
    )

    op.create_table(
        "consumption_streaks",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("streak_type", sa.String(length=16), nullable=False),
        sa.Column("current_streak", sa.Integer(), nullable=False),
        sa.Column("public", sa.Boolean(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "streak_type", name="uq_streak_user_type"),
    )
    op.create_index(
        op.f("ix_consumption_streaks_user_id"), "consumption_streaks", ["user_id"], unique=False
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index(op.f("ix_consumption_streaks_user_id"), table_name="consumption_streaks")
    op.drop_table("consumption_streaks")
    op.drop_index(op.f("ix_synced_data_last_modified"), table_name="synced_data")
    op.drop_index(op.f("ix_synced_data_user_id"), table_name="synced_data")
    op.drop_index(op.f("ix_synced_data_id"), table_name="synced_data")
    op.drop_table("synced_data")
    op.drop_index(op.f("ix_profiles_username"), table_name="profiles")
    op.drop_index(op.f("ix_profiles_id"), table_name="profiles")
    op.drop_table("profiles")
