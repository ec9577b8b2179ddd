"""create album_group_mappings and track_file_mappings

Revision ID: a1c4e7f20b31
Revises:
Create Date: 2026-01-14 09:30:00.000000

Hey future me - these two tables ARE the mapping store.

album_group_mappings: one bulk job (torrent) per album. album_id is UNIQUE so two tracks of
the same album racing on the insert can't create two groups.

track_file_mappings: one row per track. direct_link NULL means "file picked, backend still
downloading". track_id is UNIQUE because put() is an INSERT .. ON CONFLICT(track_id) upsert.
Deleting a group cascades to its tracks.
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "a1c4e7f20b31"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create mapping tables (idempotent - skips tables that exist)."""
    conn = op.get_bind()
    existing = set(sa.inspect(conn).get_table_names())

    if "album_group_mappings" not in existing:
        op.create_table(
            "album_group_mappings",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column("album_id", sa.String(255), nullable=False, unique=True),
            sa.Column("album_title", sa.String(512), nullable=False),
            sa.Column("artist_name", sa.String(512), nullable=False),
            sa.Column("job_id", sa.String(255), nullable=False),
            sa.Column("job_title", sa.String(1024), nullable=False),
            sa.Column("source_name", sa.String(32), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        )

    if "track_file_mappings" not in existing:
        op.create_table(
            "track_file_mappings",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column("track_id", sa.String(255), nullable=False, unique=True),
            sa.Column(
                "group_mapping_id",
                sa.String(36),
                sa.ForeignKey("album_group_mappings.id", ondelete="CASCADE"),
                nullable=True,
            ),
            sa.Column("track_title", sa.String(512), nullable=False, server_default=""),
            sa.Column("file_id", sa.Integer(), nullable=True),
            sa.Column("file_path", sa.Text(), nullable=False, server_default=""),
            sa.Column("file_name", sa.String(1024), nullable=False, server_default=""),
            sa.Column("direct_link", sa.Text(), nullable=True),
            sa.Column("source_name", sa.String(32), nullable=False, server_default=""),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        )
        op.create_index(
            "ix_track_file_mappings_group", "track_file_mappings", ["group_mapping_id"]
        )


def downgrade() -> None:
    """Drop mapping tables."""
    op.drop_index("ix_track_file_mappings_group", table_name="track_file_mappings")
    op.drop_table("track_file_mappings")
    op.drop_table("album_group_mappings")
