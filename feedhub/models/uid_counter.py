from datetime import datetime

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from feedhub.models.base import Base


class WorkspaceUidCounter(Base):
    """
    One row per workspace holding the last product uid handed out.

    last_uid only ever moves forward; the allocator increments it with a single
    INSERT .. ON CONFLICT DO UPDATE .. RETURNING statement.
    """
    __tablename__ = "workspace_uid_counters"

    workspace_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    last_uid: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
