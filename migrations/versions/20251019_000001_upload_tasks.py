from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "20251019_000001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    task_state_enum = sa.Enum("pending", "running", "succeeded", "failed", name="taskstate")

    op.create_table(
        "upload_tasks",
        sa.Column("task_id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=1024), nullable=False),
        sa.Column("dst_dir", sa.String(length=4096), nullable=False),
        sa.Column("staged_path", sa.String(length=4096), nullable=False),
        sa.Column("mimetype", sa.String(length=255), nullable=False),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("modified_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("base_path", sa.String(length=4096), nullable=False, server_default="/"),
        sa.Column("state", task_state_enum, nullable=False, server_default="pending"),
        sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_upload_tasks_user_id", "upload_tasks", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_upload_tasks_user_id", table_name="upload_tasks")
    op.drop_table("upload_tasks")

    sa.Enum(name="taskstate").drop(op.get_bind(), checkfirst=True)
