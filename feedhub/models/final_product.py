from datetime import datetime

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from feedhub.models.base import Base, JSONPayload, gen_id


class FinalProduct(Base):
    """
    Deduplicated product: one winner per match value in a workspace.

    The table is rebuilt for the workspace on every deduplication run.
    """
    __tablename__ = "products_final"
    __table_args__ = (
        UniqueConstraint("workspace_id", "match_value", name="uq_products_final_match"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("fpd"))

    workspace_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    match_value: Mapped[str] = mapped_column(String(500), nullable=False)

    winning_supplier_id: Mapped[str] = mapped_column(String(64), nullable=False)
    winning_uid: Mapped[str] = mapped_column(String(255), nullable=False)
    winning_reason: Mapped[str] = mapped_column(String(100), nullable=False)

    # snapshot of the winner's mapped fields
    fields: Mapped[dict] = mapped_column(JSONPayload, nullable=False, default=dict)

    # [{supplier_id, uid}] of the records that lost
    other_suppliers: Mapped[list] = mapped_column(JSONPayload, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
