from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0002_deduplication"
down_revision = "0001_feed_foundations"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "deduplication_rules",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("workspace_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("match_key", sa.String(length=50), nullable=False, server_default="ean"),
        sa.Column("selection_policy", sa.String(length=50), nullable=False, server_default="lowest_price"),
        sa.Column("preferred_suppliers", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("exclusion_rules", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("match_key IN ('ean','sku','title')", name="ck_dedup_rule_match_key"),
        sa.CheckConstraint(
            "selection_policy IN ('lowest_price','preferred_supplier','highest_stock','first_available')",
            name="ck_dedup_rule_selection_policy",
        ),
    )
    op.create_index("ix_deduplication_rules_workspace_id", "deduplication_rules", ["workspace_id"])

    op.create_table(
        "products_final",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("workspace_id", sa.String(length=64), nullable=False),
        sa.Column("match_value", sa.String(length=500), nullable=False),
        sa.Column("winning_supplier_id", sa.String(length=64), nullable=False),
        sa.Column("winning_uid", sa.String(length=255), nullable=False),
        sa.Column("winning_reason", sa.String(length=100), nullable=False),
        sa.Column("fields", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("other_suppliers", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("workspace_id", "match_value", name="uq_products_final_match"),
    )
    op.create_index("ix_products_final_workspace_id", "products_final", ["workspace_id"])


def downgrade():
    op.drop_index("ix_products_final_workspace_id", table_name="products_final")
    op.drop_table("products_final")
    op.drop_index("ix_deduplication_rules_workspace_id", table_name="deduplication_rules")
    op.drop_table("deduplication_rules")
