from datetime import datetime

from sqlalchemy import ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from feedhub.models.base import Base, gen_id


class FeedError(Base):
    __tablename__ = "feed_errors"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("fer"))

    ingestion_id: Mapped[str] = mapped_column(String, ForeignKey("feed_ingestions.id", ondelete="CASCADE"), nullable=False, index=True)
    workspace_id: Mapped[str] = mapped_column(String(64), nullable=False)
    supplier_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # 1-based position of the item in the feed
    item_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)

    # truncated JSON snapshot of the source record
    raw: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
