"""001 initial asset and workflow tables

Revision ID: 001_initial_asset_tables
Revises:
Create Date: 2026-10-19

Creates the assets table (provider-driven encoding state plus generated
metadata) and the workflow tables backing the durable step log.

Indexes:
    - uq_assets_upload_token: every webhook correlates on the upload token
    - ix_assets_external_asset_ref: track-ready lookups
    - ix_assets_owner_updated_at_id: keyset listing
      (WHERE owner_id = ? ORDER BY updated_at DESC, id DESC)
    - uq_workflow_steps_run_step_key: one recorded result per step per run
"""

from typing import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial_asset_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

encoding_status = postgresql.ENUM(
    "waiting", "preparing", "ready", "errored", name="encodingstatus", create_type=False
)
workflow_kind = postgresql.ENUM(
    "title", "description", "thumbnail", name="workflowkind", create_type=False
)
run_status = postgresql.ENUM(
    "pending", "running", "completed", "failed", name="runstatus", create_type=False
)


def upgrade() -> None:
    """Create assets, workflow_runs and workflow_steps."""
    bind = op.get_bind()
    encoding_status.create(bind, checkfirst=True)
    workflow_kind.create(bind, checkfirst=True)
    run_status.create(bind, checkfirst=True)

    op.create_table(
        "assets",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("owner_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("upload_token", sa.String(255), nullable=False),
        sa.Column("external_asset_ref", sa.String(255), nullable=True),
        sa.Column("encoding_status", encoding_status, nullable=False),
        sa.Column("playback_ref", sa.String(255), nullable=True),
        sa.Column("track_ref", sa.String(255), nullable=True),
        sa.Column("track_status", sa.String(50), nullable=True),
        sa.Column("thumbnail_ref", sa.String(255), nullable=True),
        sa.Column("thumbnail_locator", sa.String(500), nullable=True),
        sa.Column("preview_locator", sa.String(500), nullable=True),
        sa.Column("duration", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("title", sa.String(255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("upload_token", name="uq_assets_upload_token"),
    )
    op.create_index("ix_assets_external_asset_ref", "assets", ["external_asset_ref"])
    op.create_index(
        "ix_assets_owner_updated_at_id",
        "assets",
        ["owner_id", "updated_at", "id"],
    )

    op.create_table(
        "workflow_runs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("kind", workflow_kind, nullable=False),
        sa.Column("owner_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("asset_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("input", sa.JSON(), nullable=False),
        sa.Column("status", run_status, nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_workflow_runs_asset_id", "workflow_runs", ["asset_id"])
    op.create_index("ix_workflow_runs_status", "workflow_runs", ["status"])

    op.create_table(
        "workflow_steps",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("run_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("step_name", sa.String(100), nullable=False),
        sa.Column("step_key", sa.String(64), nullable=False),
        sa.Column("result", sa.JSON(), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("duration_seconds", sa.Float(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["run_id"], ["workflow_runs.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("run_id", "step_key", name="uq_workflow_steps_run_step_key"),
    )
    op.create_index("ix_workflow_steps_run_id", "workflow_steps", ["run_id"])


def downgrade() -> None:
    """Drop workflow and asset tables and their enum types."""
    op.drop_index("ix_workflow_steps_run_id", table_name="workflow_steps")
    op.drop_table("workflow_steps")
    op.drop_index("ix_workflow_runs_status", table_name="workflow_runs")
    op.drop_index("ix_workflow_runs_asset_id", table_name="workflow_runs")
    op.drop_table("workflow_runs")
    op.drop_index("ix_assets_owner_updated_at_id", table_name="assets")
    op.drop_index("ix_assets_external_asset_ref", table_name="assets")
    op.drop_table("assets")

    bind = op.get_bind()
    run_status.drop(bind, checkfirst=True)
    workflow_kind.drop(bind, checkfirst=True)
    encoding_status.drop(bind, checkfirst=True)
