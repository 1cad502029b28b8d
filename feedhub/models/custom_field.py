from sqlalchemy import Boolean, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from feedhub.models.base import Base, TimestampMixin, gen_id


FIELD_DATATYPES = ("text", "number", "bool", "date", "json")


class CustomField(TimestampMixin, Base):
    __tablename__ = "custom_fields"
    __table_args__ = (
        UniqueConstraint("workspace_id", "key", name="uq_custom_field_workspace_key"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("cfd"))

    workspace_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    key: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # one of FIELD_DATATYPES
    datatype: Mapped[str] = mapped_column(String(20), nullable=False, default="text")

    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_unique: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
