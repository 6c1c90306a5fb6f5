"""Initial schema: products, FIFO lots, ledger, orders, write-offs, documents

Revision ID: 20261019_initial_ledger
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_initial_ledger"
down_revision = None
branch_labels = None
depends_on = None


def _ts(name, nullable=False):
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=nullable)


def upgrade():
    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("sku", sa.String(64), nullable=True),
        sa.Column("price", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("cost_price", sa.Integer(), nullable=True),
        sa.Column("packaging_cost", sa.Integer(), nullable=True),
        sa.Column("currency", sa.String(8), nullable=False, server_default="RUB"),
        sa.Column("status", sa.String(16), nullable=False, server_default="ACTIVE"),
        _ts("created_at"),
        _ts("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sku", name="uq_products_sku"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.create_index("ix_products_status", ["status"], unique=False)
        batch_op.create_index("ix_products_status_title", ["status", "title"], unique=False)

    op.create_table(
        "purchases",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("supplier", sa.String(255), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="DRAFT"),
        sa.Column("posted_at", sa.DateTime(timezone=True), nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("purchases", schema=None) as batch_op:
        batch_op.create_index("ix_purchases_status", ["status"], unique=False)

    op.create_table(
        "purchase_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("purchase_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("qty", sa.Integer(), nullable=False),
        sa.Column("unit_cost", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["purchase_id"], ["purchases.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("purchase_items", schema=None) as batch_op:
        batch_op.create_index("ix_purchase_items_purchase_id", ["purchase_id"], unique=False)

    op.create_table(
        "shipments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("reference", sa.String(128), nullable=True),
        sa.Column("freight_cost", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("other_costs", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(16), nullable=False, server_default="DRAFT"),
        sa.Column("posted_at", sa.DateTime(timezone=True), nullable=True),
        _ts("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("shipments", schema=None) as batch_op:
        batch_op.create_index("ix_shipments_status", ["status"], unique=False)

    op.create_table(
        "shipment_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("shipment_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("qty", sa.Integer(), nullable=False),
        sa.Column("goods_unit_cost", sa.Integer(), nullable=False),
        sa.Column("landed_unit_cost", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["shipment_id"], ["shipments.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("shipment_lines", schema=None) as batch_op:
        batch_op.create_index("ix_shipment_lines_shipment_id", ["shipment_id"], unique=False)

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="NEW"),
        sa.Column("channel", sa.String(16), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("number", sa.String(32), nullable=False),
        sa.Column("idempotency_key", sa.String(128), nullable=True),
        sa.Column("total_amount", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("currency", sa.String(8), nullable=False, server_default="RUB"),
        sa.Column("customer_name", sa.String(255), nullable=False),
        sa.Column("customer_phone", sa.String(64), nullable=False),
        sa.Column("customer_address", sa.String(512), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("channel", "seq", name="uq_orders_channel_seq"),
        sa.UniqueConstraint("number", name="uq_orders_number"),
        sa.UniqueConstraint("idempotency_key", name="uq_orders_idempotency_key"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("orders", schema=None) as batch_op:
        batch_op.create_index("ix_orders_user_id", ["user_id"], unique=False)
        batch_op.create_index("ix_orders_status", ["status"], unique=False)
        batch_op.create_index("ix_orders_status_created", ["status", "created_at"], unique=False)

    op.create_table(
        "order_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("title_snapshot", sa.String(255), nullable=False),
        sa.Column("price_snapshot", sa.Integer(), nullable=False),
        sa.Column("cost_price_at_time", sa.Integer(), nullable=True),
        sa.Column("packaging_cost_at_time", sa.Integer(), nullable=True),
        sa.Column("qty", sa.Integer(), nullable=False),
        sa.Column("cogs_total", sa.BigInteger(), nullable=True),
        sa.Column("profit_total", sa.BigInteger(), nullable=True),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("qty > 0", name="ck_order_items_qty_positive"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("order_items", schema=None) as batch_op:
        batch_op.create_index("ix_order_items_order_id", ["order_id"], unique=False)
        batch_op.create_index("ix_order_items_product_id", ["product_id"], unique=False)

    op.create_table(
        "order_counters",
        sa.Column("channel", sa.String(16), nullable=False),
        sa.Column("value", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _ts("updated_at"),
        sa.PrimaryKeyConstraint("channel"),
    )

    op.create_table(
        "inventory_movements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(16), nullable=False),
        sa.Column("source_kind", sa.String(16), nullable=False),
        sa.Column("source_id", sa.Integer(), nullable=True),
        sa.Column("note", sa.String(255), nullable=True),
        _ts("created_at"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("quantity <> 0", name="ck_movements_quantity_nonzero"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("inventory_movements", schema=None) as batch_op:
        batch_op.create_index("ix_inventory_movements_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_inventory_movements_kind", ["kind"], unique=False)
        batch_op.create_index("ix_inventory_movements_source_kind", ["source_kind"], unique=False)
        batch_op.create_index("ix_inventory_movements_created_at", ["created_at"], unique=False)
        batch_op.create_index("ix_movements_product_created", ["product_id", "created_at"], unique=False)
        batch_op.create_index("ix_movements_source", ["source_kind", "source_id"], unique=False)

    op.create_table(
        "inventory_lots",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("purchase_id", sa.Integer(), nullable=True),
        sa.Column("shipment_id", sa.Integer(), nullable=True),
        sa.Column("unit_cost", sa.Integer(), nullable=False),
        sa.Column("qty_received", sa.Integer(), nullable=False),
        sa.Column("qty_remaining", sa.Integer(), nullable=False),
        _ts("received_at"),
        _ts("created_at"),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["purchase_id"], ["purchases.id"]),
        sa.ForeignKeyConstraint(["shipment_id"], ["shipments.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("qty_received > 0", name="ck_lots_qty_received_positive"),
        sa.CheckConstraint(
            "qty_remaining >= 0 AND qty_remaining <= qty_received",
            name="ck_lots_qty_remaining_range",
        ),
        sa.CheckConstraint("unit_cost >= 0", name="ck_lots_unit_cost_nonnegative"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("inventory_lots", schema=None) as batch_op:
        batch_op.create_index("ix_inventory_lots_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_inventory_lots_purchase_id", ["purchase_id"], unique=False)
        batch_op.create_index("ix_inventory_lots_shipment_id", ["shipment_id"], unique=False)
        batch_op.create_index("ix_lots_product_received", ["product_id", "received_at", "id"], unique=False)

    op.create_table(
        "write_offs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("qty", sa.Integer(), nullable=False),
        sa.Column("total_cost", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("reason", sa.String(255), nullable=True),
        _ts("created_at"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("qty > 0", name="ck_write_offs_qty_positive"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("write_offs", schema=None) as batch_op:
        batch_op.create_index("ix_write_offs_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_write_offs_created_at", ["created_at"], unique=False)

    op.create_table(
        "lot_allocations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("lot_id", sa.Integer(), nullable=False),
        sa.Column("order_item_id", sa.Integer(), nullable=True),
        sa.Column("write_off_id", sa.Integer(), nullable=True),
        sa.Column("qty", sa.Integer(), nullable=False),
        sa.Column("unit_cost", sa.Integer(), nullable=False),
        _ts("created_at"),
        sa.ForeignKeyConstraint(["lot_id"], ["inventory_lots.id"]),
        sa.ForeignKeyConstraint(["order_item_id"], ["order_items.id"]),
        sa.ForeignKeyConstraint(["write_off_id"], ["write_offs.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "(order_item_id IS NULL) <> (write_off_id IS NULL)",
            name="ck_allocations_single_consumer",
        ),
        sa.CheckConstraint("qty > 0", name="ck_allocations_qty_positive"),
        sa.UniqueConstraint("lot_id", "order_item_id", name="uq_allocations_lot_order_item"),
        sa.UniqueConstraint("lot_id", "write_off_id", name="uq_allocations_lot_write_off"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("lot_allocations", schema=None) as batch_op:
        batch_op.create_index("ix_lot_allocations_lot_id", ["lot_id"], unique=False)
        batch_op.create_index("ix_lot_allocations_order_item_id", ["order_item_id"], unique=False)
        batch_op.create_index("ix_lot_allocations_write_off_id", ["write_off_id"], unique=False)


def downgrade():
    op.drop_table("lot_allocations")
    op.drop_table("write_offs")
    op.drop_table("inventory_lots")
    op.drop_table("inventory_movements")
    op.drop_table("order_counters")
    op.drop_table("order_items")
    op.drop_table("orders")
    op.drop_table("shipment_lines")
    op.drop_table("shipments")
    op.drop_table("purchase_items")
    op.drop_table("purchases")
    op.drop_table("products")
