from sqlalchemy import Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from feedhub.models.base import Base, JSONPayload, TimestampMixin, gen_id


MATCH_KEYS = ("ean", "sku", "title")
SELECTION_POLICIES = ("lowest_price", "preferred_supplier", "highest_stock", "first_available")


class DeduplicationRule(TimestampMixin, Base):
    __tablename__ = "deduplication_rules"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("ddr"))

    workspace_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    match_key: Mapped[str] = mapped_column(String(50), nullable=False, default="ean")
    selection_policy: Mapped[str] = mapped_column(String(50), nullable=False, default="lowest_price")

    # ordered supplier ids, most preferred first
    preferred_suppliers: Mapped[list] = mapped_column(JSONPayload, nullable=False, default=list)

    # min_price, max_price, exclude_out_of_stock, category_blacklist, keyword_blacklist
    exclusion_rules: Mapped[dict] = mapped_column(JSONPayload, nullable=False, default=dict)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # only the highest priority active rule is applied per run
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
