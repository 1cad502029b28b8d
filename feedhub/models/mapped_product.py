from sqlalchemy import Boolean, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from feedhub.models.base import Base, JSONPayload, TimestampMixin, gen_id


class MappedProduct(TimestampMixin, Base):
    __tablename__ = "products_mapped"
    __table_args__ = (
        # upsert conflict target: re-ingesting the same uid overwrites fields
        UniqueConstraint("workspace_id", "supplier_id", "uid", name="uq_products_mapped_identity"),
        Index("ix_products_mapped_created_at", "workspace_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("mpd"))

    workspace_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    supplier_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # supplier's own stable id, or an allocated workspace uid
    uid: Mapped[str] = mapped_column(String(255), nullable=False)

    # custom field key -> coerced value
    fields: Mapped[dict] = mapped_column(JSONPayload, nullable=False, default=dict)

    # last run that wrote this row
    ingestion_id: Mapped[str | None] = mapped_column(String, nullable=True)
    source_file: Mapped[str | None] = mapped_column(Text, nullable=True)

    # soft delete; the uid is never handed out again
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
