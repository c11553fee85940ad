from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, Boolean, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from articlequeue.core.database import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


class ArticleQueue(Base):
  __tablename__ = "article_queues"
  __table_args__ = (
    Index("ix_article_queues_owner_created", "owner_id", "created_at"),
    Index("ix_article_queues_status_created", "status", "created_at"),
  )

  job_id: Mapped[str] = mapped_column(String, primary_key=True)
  owner_id: Mapped[str] = mapped_column(String, nullable=False)
  batch_name: Mapped[str | None] = mapped_column(String, nullable=True)
  parent_job_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
  status: Mapped[str] = mapped_column(String, nullable=False, default="pending")
  total_items: Mapped[int] = mapped_column(Integer, nullable=False)
  completed_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  failed_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  cancel_requested: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  error: Mapped[str | None] = mapped_column(Text, nullable=True)
  created_at: Mapped[str] = mapped_column(String, nullable=False)
  updated_at: Mapped[str] = mapped_column(String, nullable=False)
  completed_at: Mapped[str | None] = mapped_column(String, nullable=True)


class ArticleQueueItem(Base):
  __tablename__ = "article_queue_items"
  __table_args__ = (UniqueConstraint("job_id", "sequence", name="ux_article_queue_items_job_sequence"),)

  item_id: Mapped[str] = mapped_column(String, primary_key=True)
  job_id: Mapped[str] = mapped_column(ForeignKey("article_queues.job_id", ondelete="CASCADE"), nullable=False, index=True)
  sequence: Mapped[int] = mapped_column(Integer, nullable=False)
  input_json: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
  status: Mapped[str] = mapped_column(String, nullable=False, default="pending", index=True)
  error: Mapped[str | None] = mapped_column(Text, nullable=True)
  result_ref: Mapped[str | None] = mapped_column(String, nullable=True)
  created_at: Mapped[str] = mapped_column(String, nullable=False)
  updated_at: Mapped[str] = mapped_column(String, nullable=False)
  started_at: Mapped[str | None] = mapped_column(String, nullable=True)
  finished_at: Mapped[str | None] = mapped_column(String, nullable=True)


class ArticleQueueEvent(Base):
  __tablename__ = "article_queue_events"

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  job_id: Mapped[str] = mapped_column(ForeignKey("article_queues.job_id", ondelete="CASCADE"), nullable=False, index=True)
  event_type: Mapped[str] = mapped_column(String, nullable=False, index=True)
  message: Mapped[str] = mapped_column(Text, nullable=False)
  payload_json: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
  created_at: Mapped[str] = mapped_column(String, nullable=False)
