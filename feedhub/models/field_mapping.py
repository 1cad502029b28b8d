from datetime import datetime

from sqlalchemy import Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from feedhub.models.base import Base, JSONPayload, gen_id


TRANSFORM_TYPES = (
    "direct", "trim", "lowercase", "uppercase",
    "concat", "replace", "extract_number", "extract_currency",
)


class FieldMapping(Base):
    """
    Supplier source key -> workspace custom field key.

    The whole set for a (workspace, supplier) is replaced at once, never patched.
    """
    __tablename__ = "field_mappings"
    __table_args__ = (
        Index("ix_field_mappings_workspace_supplier", "workspace_id", "supplier_id"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("fmp"))

    workspace_id: Mapped[str] = mapped_column(String(64), nullable=False)
    supplier_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # matched case-insensitively against source records
    source_key: Mapped[str] = mapped_column(String(255), nullable=False)
    field_key: Mapped[str] = mapped_column(String(100), nullable=False)

    transform_type: Mapped[str] = mapped_column(String(50), nullable=False, default="direct")
    transform_config: Mapped[dict] = mapped_column(JSONPayload, nullable=False, default=dict)

    # rules apply in this order; a later rule for the same field wins
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
