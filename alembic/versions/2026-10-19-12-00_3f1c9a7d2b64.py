"""Initial key-value and watch history tables

Revision ID: 3f1c9a7d2b64
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "3f1c9a7d2b64"
down_revision = None
branch_labels = None
depends_on = None

MEDIA_TYPES = ("ANIME", "MANGA", "NOVEL", "MOVIE", "TV_SHOW")


def upgrade() -> None:
    op.create_table(
        "key_value",
        sa.Column("namespace", sa.String(), nullable=False),
        sa.Column("key", sa.String(), nullable=False),
        sa.Column("value", sa.String(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("namespace", "key"),
    )

    op.create_table(
        "watch_history",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("media_id", sa.String(), nullable=False),
        sa.Column("normalized_id", sa.String(), nullable=True),
        sa.Column(
            "media_type", sa.Enum(*MEDIA_TYPES, name="mediatype"), nullable=False
        ),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("cover_image", sa.String(), nullable=True),
        sa.Column("source_id", sa.String(), nullable=False),
        sa.Column("source_name", sa.String(), nullable=False),
        sa.Column("release_year", sa.Integer(), nullable=True),
        sa.Column("episode_number", sa.Integer(), nullable=True),
        sa.Column("chapter_number", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_played_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("watch_history", schema=None) as batch_op:
        batch_op.create_index(
            batch_op.f("ix_watch_history_media_id"), ["media_id"], unique=False
        )
        batch_op.create_index(
            batch_op.f("ix_watch_history_normalized_id"),
            ["normalized_id"],
            unique=False,
        )
        batch_op.create_index(
            batch_op.f("ix_watch_history_media_type"), ["media_type"], unique=False
        )
        batch_op.create_index(
            batch_op.f("ix_watch_history_last_played_at"),
            ["last_played_at"],
            unique=False,
        )


def downgrade() -> None:
    with op.batch_alter_table("watch_history", schema=None) as batch_op:
        batch_op.drop_index(batch_op.f("ix_watch_history_last_played_at"))
        batch_op.drop_index(batch_op.f("ix_watch_history_media_type"))
        batch_op.drop_index(batch_op.f("ix_watch_history_normalized_id"))
        batch_op.drop_index(batch_op.f("ix_watch_history_media_id"))

    op.drop_table("watch_history")
    op.drop_table("key_value")
