"""create article queue tables

Revision ID: 7c41e0a9d2b5
Revises:
Create Date: 2026-10-18 09:12:44.318204

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "7c41e0a9d2b5"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
  """Upgrade schema."""
  op.create_table(
    "article_queues",
    sa.Column("job_id", sa.String(), nullable=False),
    sa.Column("owner_id", sa.String(), nullable=False),
    sa.Column("batch_name", sa.String(), nullable=True),
    sa.Column("parent_job_id", sa.String(), nullable=True),
    sa.Column("status", sa.String(), nullable=False),
    sa.Column("total_items", sa.Integer(), nullable=False),
    sa.Column("completed_items", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("failed_items", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("cancel_requested", sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column("error", sa.Text(), nullable=True),
    sa.Column("created_at", sa.String(), nullable=False),
    sa.Column("updated_at", sa.String(), nullable=False),
    sa.Column("completed_at", sa.String(), nullable=True),
    sa.PrimaryKeyConstraint("job_id"),
  )
  op.create_index("ix_article_queues_owner_created", "article_queues", ["owner_id", "created_at"])
  op.create_index("ix_article_queues_status_created", "article_queues", ["status", "created_at"])
  op.create_index(op.f("ix_article_queues_parent_job_id"), "article_queues", ["parent_job_id"])

  op.create_table(
    "article_queue_items",
    sa.Column("item_id", sa.String(), nullable=False),
    sa.Column("job_id", sa.String(), nullable=False),
    sa.Column("sequence", sa.Integer(), nullable=False),
    sa.Column("input_json", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column("status", sa.String(), nullable=False),
    sa.Column("error", sa.Text(), nullable=True),
    sa.Column("result_ref", sa.String(), nullable=True),
    sa.Column("created_at", sa.String(), nullable=False),
    sa.Column("updated_at", sa.String(), nullable=False),
    sa.Column("started_at", sa.String(), nullable=True),
    sa.Column("finished_at", sa.String(), nullable=True),
    sa.ForeignKeyConstraint(["job_id"], ["article_queues.job_id"], ondelete="CASCADE"),
    sa.PrimaryKeyConstraint("item_id"),
    sa.UniqueConstraint("job_id", "sequence", name="ux_article_queue_items_job_sequence"),
  )
  op.create_index(op.f("ix_article_queue_items_job_id"), "article_queue_items", ["job_id"])
  op.create_index(op.f("ix_article_queue_items_status"), "article_queue_items", ["status"])

  op.create_table(
    "article_queue_events",
    sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
    sa.Column("job_id", sa.String(), nullable=False),
    sa.Column("event_type", sa.String(), nullable=False),
    sa.Column("message", sa.Text(), nullable=False),
    sa.Column("payload_json", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column("created_at", sa.String(), nullable=False),
    sa.ForeignKeyConstraint(["job_id"], ["article_queues.job_id"], ondelete="CASCADE"),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_index(op.f("ix_article_queue_events_job_id"), "article_queue_events", ["job_id"])
  op.create_index(op.f("ix_article_queue_events_event_type"), "article_queue_events", ["event_type"])


def downgrade() -> None:
  """Downgrade schema."""
  op.drop_index(op.f("ix_article_queue_events_event_type"), table_name="article_queue_events")
  op.drop_index(op.f("ix_article_queue_events_job_id"), table_name="article_queue_events")
  op.drop_table("article_queue_events")
  op.drop_index(op.f("ix_article_queue_items_status"), table_name="article_queue_items")
  op.drop_index(op.f("ix_article_queue_items_job_id"), table_name="article_queue_items")
  op.drop_table("article_queue_items")
  op.drop_index(op.f("ix_article_queues_parent_job_id"), table_name="article_queues")
  op.drop_index("ix_article_queues_status_created", table_name="article_queues")
  op.drop_index("ix_article_queues_owner_created", table_name="article_queues")
  op.drop_table("article_queues")
