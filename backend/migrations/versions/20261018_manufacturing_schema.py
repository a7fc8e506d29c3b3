"""Manufacturing schema: catalog, stock ledger, BOMs and production orders

Revision ID: 20261018_manufacturing
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_manufacturing"
down_revision = None
branch_labels = None
depends_on = None


ORDER_STATUSES = ("draft", "planned", "in_progress", "completed", "cancelled", "on_hold")
MOVEMENT_TYPES = ("consumption", "production")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
    ]


def upgrade():
    op.create_table(
        "units",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(64), nullable=False),
        sa.Column("identifier", sa.String(32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("identifier"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sku"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.create_index("ix_products_active", ["is_active"], unique=False)

    op.create_table(
        "product_unit_quantities",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("unit_id", sa.Integer(), nullable=True),
        sa.Column("quantity", sa.Numeric(18, 4), nullable=False, server_default=sa.text("0")),
        sa.Column("cogs", sa.Numeric(18, 4), nullable=False, server_default=sa.text("0")),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["unit_id"], ["units.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("product_id", "unit_id", name="uq_puq_product_unit"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("product_unit_quantities", schema=None) as batch_op:
        batch_op.create_index("ix_product_unit_quantities_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_product_unit_quantities_unit_id", ["unit_id"], unique=False)

    op.create_table(
        "product_histories",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("unit_id", sa.Integer(), nullable=True),
        sa.Column("action", sa.String(32), nullable=False),
        sa.Column("quantity", sa.Numeric(18, 4), nullable=False),
        sa.Column("before_quantity", sa.Numeric(18, 4), nullable=False),
        sa.Column("after_quantity", sa.Numeric(18, 4), nullable=False),
        sa.Column("unit_price", sa.Numeric(18, 4), nullable=False, server_default=sa.text("0")),
        sa.Column("total_price", sa.Numeric(18, 4), nullable=False, server_default=sa.text("0")),
        sa.Column("author_id", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("order_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["unit_id"], ["units.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("product_histories", schema=None) as batch_op:
        batch_op.create_index("ix_product_histories_product_unit", ["product_id", "unit_id"], unique=False)
        batch_op.create_index("ix_product_histories_action", ["action"], unique=False)
        batch_op.create_index("ix_product_histories_order_id", ["order_id"], unique=False)

    op.create_table(
        "manufacturing_boms",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("uuid", sa.String(36), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("output_product_id", sa.Integer(), nullable=False),
        sa.Column("output_unit_id", sa.Integer(), nullable=True),
        sa.Column("output_quantity", sa.Numeric(18, 4), nullable=False, server_default=sa.text("1")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("author_id", sa.Integer(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["output_product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["output_unit_id"], ["units.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("uuid"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("manufacturing_boms", schema=None) as batch_op:
        batch_op.create_index("ix_boms_output_product", ["output_product_id"], unique=False)
        batch_op.create_index("ix_boms_active", ["is_active"], unique=False)

    op.create_table(
        "manufacturing_bom_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("bom_id", sa.Integer(), nullable=False),
        sa.Column("component_product_id", sa.Integer(), nullable=False),
        sa.Column("component_unit_id", sa.Integer(), nullable=True),
        sa.Column("quantity", sa.Numeric(18, 4), nullable=False),
        sa.Column("waste_percent", sa.Numeric(7, 4), nullable=False, server_default=sa.text("0")),
        sa.Column("cost_allocation_percent", sa.Numeric(9, 4), nullable=False, server_default=sa.text("100")),
        sa.Column("author_id", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["bom_id"], ["manufacturing_boms.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["component_product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["component_unit_id"], ["units.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("manufacturing_bom_items", schema=None) as batch_op:
        batch_op.create_index("ix_manufacturing_bom_items_bom_id", ["bom_id"], unique=False)
        batch_op.create_index("ix_bom_items_component", ["component_product_id"], unique=False)

    op.create_table(
        "manufacturing_orders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(64), nullable=False),
        sa.Column("bom_id", sa.Integer(), nullable=True),
        sa.Column("output_product_id", sa.Integer(), nullable=False),
        sa.Column("output_unit_id", sa.Integer(), nullable=True),
        sa.Column("quantity", sa.Numeric(18, 4), nullable=False),
        sa.Column(
            "status",
            sa.Enum(*ORDER_STATUSES, name="manufacturing_order_status", native_enum=False, length=16),
            nullable=False,
            server_default="draft",
        ),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("author_id", sa.Integer(), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["bom_id"], ["manufacturing_boms.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["output_product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["output_unit_id"], ["units.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("manufacturing_orders", schema=None) as batch_op:
        batch_op.create_index("ix_orders_status", ["status"], unique=False)
        batch_op.create_index("ix_orders_output_product", ["output_product_id"], unique=False)
        batch_op.create_index("ix_manufacturing_orders_bom_id", ["bom_id"], unique=False)
        batch_op.create_index("ix_manufacturing_orders_started_at", ["started_at"], unique=False)
        batch_op.create_index("ix_manufacturing_orders_completed_at", ["completed_at"], unique=False)

    op.create_table(
        "manufacturing_stock_movements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("unit_id", sa.Integer(), nullable=True),
        sa.Column("quantity", sa.Numeric(18, 4), nullable=False),
        sa.Column(
            "type",
            sa.Enum(*MOVEMENT_TYPES, name="manufacturing_movement_type", native_enum=False, length=16),
            nullable=False,
        ),
        sa.Column("cost_at_time", sa.Numeric(18, 4), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["order_id"], ["manufacturing_orders.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["unit_id"], ["units.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("manufacturing_stock_movements", schema=None) as batch_op:
        batch_op.create_index("ix_movements_order_type", ["order_id", "type"], unique=False)
        batch_op.create_index("ix_manufacturing_stock_movements_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_manufacturing_stock_movements_created_at", ["created_at"], unique=False)


def downgrade():
    op.drop_table("manufacturing_stock_movements")
    op.drop_table("manufacturing_orders")
    op.drop_table("manufacturing_bom_items")
    op.drop_table("manufacturing_boms")
    op.drop_table("product_histories")
    op.drop_table("product_unit_quantities")
    op.drop_table("products")
    op.drop_table("units")
