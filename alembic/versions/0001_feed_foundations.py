from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_feed_foundations"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "workspace_uid_counters",
        sa.Column("workspace_id", sa.String(length=64), primary_key=True),
        sa.Column("last_uid", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "custom_fields",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("workspace_id", sa.String(length=64), nullable=False),
        sa.Column("key", sa.String(length=100), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("datatype", sa.String(length=20), nullable=False, server_default="text"),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_unique", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("workspace_id", "key", name="uq_custom_field_workspace_key"),
        sa.CheckConstraint("datatype IN ('text','number','bool','date','json')", name="ck_custom_field_datatype"),
    )
    op.create_index("ix_custom_fields_workspace_id", "custom_fields", ["workspace_id"])

    op.create_table(
        "field_mappings",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("workspace_id", sa.String(length=64), nullable=False),
        sa.Column("supplier_id", sa.String(length=64), nullable=False),
        sa.Column("source_key", sa.String(length=255), nullable=False),
        sa.Column("field_key", sa.String(length=100), nullable=False),
        sa.Column("transform_type", sa.String(length=50), nullable=False, server_default="direct"),
        sa.Column("transform_config", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_field_mappings_workspace_supplier", "field_mappings", ["workspace_id", "supplier_id"])

    op.create_table(
        "products_mapped",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("workspace_id", sa.String(length=64), nullable=False),
        sa.Column("supplier_id", sa.String(length=64), nullable=False),
        sa.Column("uid", sa.String(length=255), nullable=False),
        sa.Column("fields", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("ingestion_id", sa.String(), nullable=True),
        sa.Column("source_file", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("workspace_id", "supplier_id", "uid", name="uq_products_mapped_identity"),
    )
    op.create_index("ix_products_mapped_workspace_id", "products_mapped", ["workspace_id"])
    op.create_index("ix_products_mapped_created_at", "products_mapped", ["workspace_id", "created_at"])

    op.create_table(
        "feed_ingestions",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("workspace_id", sa.String(length=64), nullable=False),
        sa.Column("supplier_id", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="running"),
        sa.Column("feed_format", sa.String(length=10), nullable=True),
        sa.Column("source_file", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("items_total", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("items_processed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("items_success", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("items_errors", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.CheckConstraint(
            "status IN ('running','completed','failed','cancelled')",
            name="ck_feed_ingestions_status",
        ),
    )
    op.create_index("ix_feed_ingestions_workspace_id", "feed_ingestions", ["workspace_id"])
    op.create_index("ix_feed_ingestions_supplier_id", "feed_ingestions", ["supplier_id"])
    op.create_index("ix_feed_ingestions_running", "feed_ingestions", ["status", "started_at"])

    op.create_table(
        "feed_errors",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("ingestion_id", sa.String(), sa.ForeignKey("feed_ingestions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("workspace_id", sa.String(length=64), nullable=False),
        sa.Column("supplier_id", sa.String(length=64), nullable=False),
        sa.Column("item_index", sa.Integer(), nullable=True),
        sa.Column("code", sa.String(length=50), nullable=True),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("raw", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_feed_errors_ingestion_id", "feed_errors", ["ingestion_id"])


def downgrade():
    op.drop_index("ix_feed_errors_ingestion_id", table_name="feed_errors")
    op.drop_table("feed_errors")
    op.drop_index("ix_feed_ingestions_running", table_name="feed_ingestions")
    op.drop_index("ix_feed_ingestions_supplier_id", table_name="feed_ingestions")
    op.drop_index("ix_feed_ingestions_workspace_id", table_name="feed_ingestions")
    op.drop_table("feed_ingestions")
    op.drop_index("ix_products_mapped_created_at", table_name="products_mapped")
    op.drop_index("ix_products_mapped_workspace_id", table_name="products_mapped")
    op.drop_table("products_mapped")
    op.drop_index("ix_field_mappings_workspace_supplier", table_name="field_mappings")
    op.drop_table("field_mappings")
    op.drop_index("ix_custom_fields_workspace_id", table_name="custom_fields")
    op.drop_table("custom_fields")
    op.drop_table("workspace_uid_counters")
