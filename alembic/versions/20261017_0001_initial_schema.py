# alembic/versions/20261017_0001_initial_schema.py
"""initial schema: orders, products, invoices, config, audit

Revision ID: 20261017_0001
Revises:
Create Date: 2026-10-17
"""
import sqlalchemy as sa

from alembic import op

revision = "20261017_0001"
down_revision = None
branch_labels = None
depends_on = None

ENUM_LEN = 40


def _base_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
    ]


def _soft_delete_columns() -> list[sa.Column]:
    return [
        sa.Column("deleted_at", sa.DateTime),
        sa.Column("deleted_by", sa.String(64)),
        sa.Column("deleted_by_name", sa.String(255)),
        sa.Column("deletion_reason", sa.Text),
    ]


def _base_indexes(table: str) -> None:
    op.create_index(f"ix__{table}__id", table, ["id"])
    op.create_index(f"ix__{table}__created_at", table, ["created_at"])


def upgrade():
    op.create_table(
        "orders",
        *_base_columns(),
        sa.Column("order_number", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255)),
        sa.Column("status", sa.String(ENUM_LEN), nullable=False),
        sa.Column("status_note", sa.Text),
        sa.Column("client_id", sa.String(64), nullable=False),
        sa.Column("client_name", sa.String(255)),
        sa.Column("client_email", sa.String(255)),
        sa.Column("client_phone", sa.String(32)),
        sa.Column("manufacturer_id", sa.String(64)),
        sa.Column("manufacturer_name", sa.String(255)),
        sa.Column("created_by", sa.String(64)),
        sa.Column("sample_fee", sa.Numeric(12, 2)),
        sa.Column("sample_invoiced", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("sample_invoice_id", sa.Integer),
        sa.CheckConstraint("sample_fee IS NULL OR sample_fee >= 0", name="ck__orders__sample_fee_nonneg"),
    )
    _base_indexes("orders")
    op.create_index("ix__orders__order_number", "orders", ["order_number"], unique=True)
    op.create_index("ix__orders__status", "orders", ["status"])
    op.create_index("ix__orders__client_id", "orders", ["client_id"])
    op.create_index("ix__orders__manufacturer_id", "orders", ["manufacturer_id"])
    op.create_index("ix__orders__sample_invoice_id", "orders", ["sample_invoice_id"])

    op.create_table(
        "invoices",
        *_base_columns(),
        sa.Column("order_id", sa.Integer, sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("invoice_number", sa.String(64), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("status", sa.String(ENUM_LEN), nullable=False),
        sa.Column("due_date", sa.DateTime),
        sa.Column("notes", sa.Text),
        sa.Column("created_by", sa.String(64)),
        sa.Column("sent_at", sa.DateTime),
        sa.Column("sent_to", sa.JSON),
        sa.Column("paid_at", sa.DateTime),
        sa.Column("voided", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("voided_at", sa.DateTime),
        sa.Column("voided_by", sa.String(64)),
        sa.Column("void_reason", sa.Text),
        sa.Column("payment_link", sa.String(1024)),
        sa.Column("document_url", sa.String(1024)),
        sa.CheckConstraint("amount >= 0", name="ck__invoices__amount_nonneg"),
    )
    _base_indexes("invoices")
    op.create_index("ix__invoices__order_id", "invoices", ["order_id"])
    op.create_index("ix__invoices__invoice_number", "invoices", ["invoice_number"], unique=True)
    op.create_index("ix__invoices__status", "invoices", ["status"])
    op.create_index("ix__invoices__voided", "invoices", ["voided"])
    op.create_index("ix_invoices_order_status", "invoices", ["order_id", "status"])

    op.create_table(
        "order_products",
        *_base_columns(),
        *_soft_delete_columns(),
        sa.Column("order_id", sa.Integer, sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("catalog_product_id", sa.String(64), nullable=False),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("product_order_number", sa.String(64)),
        sa.Column("product_category", sa.String(ENUM_LEN), nullable=False),
        sa.Column("product_price", sa.Numeric(12, 2)),
        sa.Column("sample_fee", sa.Numeric(12, 2)),
        sa.Column("shipping_air_price", sa.Numeric(12, 2)),
        sa.Column("shipping_boat_price", sa.Numeric(12, 2)),
        sa.Column("client_product_price", sa.Numeric(12, 2)),
        sa.Column("client_sample_fee", sa.Numeric(12, 2)),
        sa.Column("client_shipping_air_price", sa.Numeric(12, 2)),
        sa.Column("client_shipping_boat_price", sa.Numeric(12, 2)),
        sa.Column("client_price_locked", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("margin_override_percentage", sa.Numeric(6, 2)),
        sa.Column("shipping_margin_override_percentage", sa.Numeric(6, 2)),
        sa.Column("selected_shipping_method", sa.String(ENUM_LEN), nullable=False),
        sa.Column("production_eta", sa.Date),
        sa.Column("manufacturer_notes", sa.Text),
        sa.Column("admin_notes", sa.Text),
        sa.Column("product_status", sa.String(ENUM_LEN), nullable=False),
        sa.Column("routed_to", sa.String(ENUM_LEN), nullable=False),
        sa.Column("is_locked", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("locked_by_role", sa.String(32)),
        sa.Column("locked_by", sa.String(64)),
        sa.Column("locked_at", sa.DateTime),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("invoiced", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("invoice_id", sa.Integer, sa.ForeignKey("invoices.id", ondelete="SET NULL")),
        sa.Column("invoiced_at", sa.DateTime),
        sa.CheckConstraint(
            "product_price IS NULL OR product_price >= 0", name="ck__order_products__product_price_nonneg"
        ),
        sa.CheckConstraint("NOT invoiced OR invoice_id IS NOT NULL", name="ck__order_products__invoiced_has_invoice"),
    )
    _base_indexes("order_products")
    for col in ("order_id", "catalog_product_id", "product_status", "routed_to", "invoiced", "invoice_id", "deleted_at"):
        op.create_index(f"ix__order_products__{col}", "order_products", [col])
    op.create_index("ix_order_products_order_deleted", "order_products", ["order_id", "deleted_at"])

    op.create_table(
        "order_items",
        *_base_columns(),
        sa.Column(
            "order_product_id",
            sa.Integer,
            sa.ForeignKey("order_products.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("variant_combo", sa.String(255), nullable=False, server_default=""),
        sa.Column("quantity", sa.Integer, nullable=False, server_default="0"),
        sa.Column("notes", sa.Text),
        sa.CheckConstraint("quantity >= 0", name="ck__order_items__quantity_nonneg"),
    )
    _base_indexes("order_items")
    op.create_index("ix__order_items__order_product_id", "order_items", ["order_product_id"])

    op.create_table(
        "order_media",
        *_base_columns(),
        sa.Column(
            "order_product_id",
            sa.Integer,
            sa.ForeignKey("order_products.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("public_id", sa.String(255), nullable=False),
        sa.Column("url", sa.String(1024)),
        sa.Column("file_name", sa.String(255)),
        sa.Column("storage_removed_at", sa.DateTime),
    )
    _base_indexes("order_media")
    op.create_index("ix__order_media__order_product_id", "order_media", ["order_product_id"])

    op.create_table(
        "order_margins",
        *_base_columns(),
        sa.Column("order_id", sa.Integer, sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("margin_percentage", sa.Numeric(6, 2)),
        sa.Column("shipping_margin_percentage", sa.Numeric(6, 2)),
        sa.Column("clothing_fee_override", sa.Numeric(12, 2)),
        sa.Column("updated_by", sa.String(64)),
    )
    _base_indexes("order_margins")
    op.create_index("ix__order_margins__order_id", "order_margins", ["order_id"], unique=True)

    op.create_table(
        "invoice_items",
        *_base_columns(),
        sa.Column("invoice_id", sa.Integer, sa.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False),
        sa.Column("order_product_id", sa.Integer, sa.ForeignKey("order_products.id", ondelete="SET NULL")),
        sa.Column("item_type", sa.String(ENUM_LEN), nullable=False),
        sa.Column("description", sa.String(512), nullable=False),
        sa.Column("quantity", sa.Integer, nullable=False, server_default="1"),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
    )
    _base_indexes("invoice_items")
    op.create_index("ix__invoice_items__invoice_id", "invoice_items", ["invoice_id"])
    op.create_index("ix__invoice_items__order_product_id", "invoice_items", ["order_product_id"])

    op.create_table(
        "system_config",
        *_base_columns(),
        sa.Column("key", sa.String(100), nullable=False),
        sa.Column("value", sa.Text),
        sa.Column("description", sa.String(255)),
        sa.Column("updated_by", sa.String(64)),
    )
    _base_indexes("system_config")
    op.create_index("ix__system_config__key", "system_config", ["key"], unique=True)

    op.create_table(
        "audit_logs",
        *_base_columns(),
        sa.Column("actor_id", sa.String(64)),
        sa.Column("actor_name", sa.String(255)),
        sa.Column("action_type", sa.String(64), nullable=False),
        sa.Column("target_type", sa.String(64), nullable=False),
        sa.Column("target_id", sa.String(64), nullable=False),
        sa.Column("old_value", sa.JSON),
        sa.Column("new_value", sa.JSON),
    )
    _base_indexes("audit_logs")
    for col in ("actor_id", "action_type", "target_type", "target_id"):
        op.create_index(f"ix__audit_logs__{col}", "audit_logs", [col])


def downgrade():
    for table in (
        "audit_logs",
        "system_config",
        "invoice_items",
        "order_margins",
        "order_media",
        "order_items",
        "order_products",
        "invoices",
        "orders",
    ):
        op.drop_table(table)
