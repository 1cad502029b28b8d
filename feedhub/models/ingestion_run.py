from datetime import datetime

from sqlalchemy import Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from feedhub.models.base import Base, gen_id


RUN_STATUSES = ("running", "completed", "failed", "cancelled")


class IngestionRun(Base):
    """
    One row per ingestion attempt for a supplier feed.

    Created when the run starts and finalized exactly once (completed, failed
    or cancelled). Counters are refreshed after every flushed batch so status
    readers can follow progress.
    """
    __tablename__ = "feed_ingestions"
    __table_args__ = (
        # stale run reaper
        Index("ix_feed_ingestions_running", "status", "started_at"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("run"))

    workspace_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    supplier_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="running")
    feed_format: Mapped[str | None] = mapped_column(String(10), nullable=True)
    source_file: Mapped[str | None] = mapped_column(Text, nullable=True)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    items_total: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    items_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    items_success: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    items_errors: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
