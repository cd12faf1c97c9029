"""initial stockflow schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


class GUID(sa.TypeDecorator):
    impl = sa.CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            from sqlalchemy.dialects.postgresql import UUID

            return dialect.type_descriptor(UUID(as_uuid=True))
        return dialect.type_descriptor(sa.CHAR(36))


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("username", sa.String(length=150), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=True),
        sa.Column("hashed_password", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=50), nullable=False, server_default="USER"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("is_superadmin", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "permission_catalog",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("code", sa.String(length=100), nullable=False, unique=True),
        sa.Column("description", sa.String(length=255), nullable=True),
    )
    op.create_table(
        "role_templates",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("name", sa.String(length=50), nullable=False, unique=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "role_template_permissions",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("role_template_id", GUID(), sa.ForeignKey("role_templates.id"), nullable=False),
        sa.Column("permission_id", GUID(), sa.ForeignKey("permission_catalog.id"), nullable=False),
        sa.UniqueConstraint("role_template_id", "permission_id", name="uq_role_template_permission"),
    )

    op.create_table(
        "warehouses",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("code", sa.String(length=50), nullable=False, unique=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_operational", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_table(
        "user_warehouse_access",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("user_id", GUID(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("warehouse_id", GUID(), sa.ForeignKey("warehouses.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "warehouse_id", name="uq_user_warehouse_access"),
    )
    op.create_index("ix_user_warehouse_access_user_id", "user_warehouse_access", ["user_id"])

    op.create_table(
        "inventory_items",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("sku", sa.String(length=100), nullable=False, unique=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("unit", sa.String(length=20), nullable=False, server_default="buc"),
        sa.Column("is_composite", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("product_id", sa.String(length=100), nullable=True),
        sa.Column("min_stock", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_stock", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_inventory_items_product_id", "inventory_items", ["product_id"])

    op.create_table(
        "warehouse_stock",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("warehouse_id", GUID(), sa.ForeignKey("warehouses.id"), nullable=False),
        sa.Column("item_id", GUID(), sa.ForeignKey("inventory_items.id"), nullable=False),
        sa.Column("current_stock", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("min_stock", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("warehouse_id", "item_id", name="uq_warehouse_stock_warehouse_item"),
        sa.CheckConstraint("current_stock >= 0", name="ck_warehouse_stock_non_negative"),
    )
    op.create_index("ix_warehouse_stock_item_id", "warehouse_stock", ["item_id"])

    op.create_table(
        "warehouse_transfers",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("transfer_number", sa.String(length=50), nullable=False, unique=True),
        sa.Column("from_warehouse_id", GUID(), sa.ForeignKey("warehouses.id"), nullable=False),
        sa.Column("to_warehouse_id", GUID(), sa.ForeignKey("warehouses.id"), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="DRAFT"),
        sa.Column("is_auto_proposed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by_user_id", GUID(), nullable=True),
        sa.Column("created_by_name", sa.String(length=255), nullable=True),
        sa.Column("approved_by_user_id", GUID(), nullable=True),
        sa.Column("approved_by_name", sa.String(length=255), nullable=True),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        sa.Column("completed_by_user_id", GUID(), nullable=True),
        sa.Column("completed_by_name", sa.String(length=255), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("canceled_by_user_id", GUID(), nullable=True),
        sa.Column("canceled_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_warehouse_transfers_from_warehouse_id", "warehouse_transfers", ["from_warehouse_id"])
    op.create_index("ix_warehouse_transfers_to_warehouse_id", "warehouse_transfers", ["to_warehouse_id"])
    op.create_index("ix_warehouse_transfers_status_created", "warehouse_transfers", ["status", "created_at"])

    op.create_table(
        "warehouse_transfer_items",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("transfer_id", GUID(), sa.ForeignKey("warehouse_transfers.id"), nullable=False),
        sa.Column("item_id", GUID(), sa.ForeignKey("inventory_items.id"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("from_stock_before", sa.Integer(), nullable=True),
        sa.Column("from_stock_after", sa.Integer(), nullable=True),
        sa.Column("to_stock_before", sa.Integer(), nullable=True),
        sa.Column("to_stock_after", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_warehouse_transfer_items_positive_qty"),
    )
    op.create_index("ix_warehouse_transfer_items_transfer_id", "warehouse_transfer_items", ["transfer_id"])

    op.create_table(
        "stock_movements",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("item_id", GUID(), sa.ForeignKey("inventory_items.id"), nullable=False),
        sa.Column("movement_type", sa.String(length=30), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("previous_stock", sa.Integer(), nullable=False),
        sa.Column("new_stock", sa.Integer(), nullable=False),
        sa.Column("warehouse_id", GUID(), sa.ForeignKey("warehouses.id"), nullable=False),
        sa.Column("transfer_id", GUID(), nullable=True),
        sa.Column("reason", sa.String(length=255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("user_id", GUID(), nullable=True),
        sa.Column("user_name", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_stock_movements_item_id", "stock_movements", ["item_id"])
    op.create_index("ix_stock_movements_warehouse_id", "stock_movements", ["warehouse_id"])
    op.create_index("ix_stock_movements_transfer_id", "stock_movements", ["transfer_id"])
    op.create_index("ix_stock_movements_item_created", "stock_movements", ["item_id", "created_at"])

    op.create_table(
        "orders",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("order_number", sa.String(length=100), nullable=False),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="PENDING"),
        sa.Column("required_transfer_id", GUID(), sa.ForeignKey("warehouse_transfers.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_orders_order_number", "orders", ["order_number"])
    op.create_index("ix_orders_required_transfer_id", "orders", ["required_transfer_id"])
    op.create_index("ix_orders_status", "orders", ["status"])

    op.create_table(
        "order_line_items",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("order_id", GUID(), sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sku", sa.String(length=100), nullable=True),
        sa.Column("product_id", sa.String(length=100), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
    )
    op.create_index("ix_order_line_items_order_id", "order_line_items", ["order_id"])

    op.create_table(
        "idempotency_records",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("actor_id", GUID(), nullable=False),
        sa.Column("endpoint", sa.String(length=255), nullable=False),
        sa.Column("method", sa.String(length=10), nullable=False),
        sa.Column("idempotency_key", sa.String(length=255), nullable=False),
        sa.Column("request_hash", sa.String(length=64), nullable=False),
        sa.Column("state", sa.String(length=20), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=True),
        sa.Column("response_body", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("actor_id", "endpoint", "method", "idempotency_key", name="uq_idempotency"),
    )
    op.create_index("ix_idempotency_records_actor_id", "idempotency_records", ["actor_id"])

    op.create_table(
        "audit_events",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("user_id", GUID(), nullable=True),
        sa.Column("trace_id", sa.String(length=64), nullable=True),
        sa.Column("actor", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=False),
        sa.Column("entity_id", sa.String(length=100), nullable=True),
        sa.Column("before_payload", sa.JSON(), nullable=True),
        sa.Column("after_payload", sa.JSON(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("result", sa.String(length=20), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_audit_events_user_id", "audit_events", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_audit_events_user_id", table_name="audit_events")
    op.drop_table("audit_events")
    op.drop_index("ix_idempotency_records_actor_id", table_name="idempotency_records")
    op.drop_table("idempotency_records")
    op.drop_index("ix_order_line_items_order_id", table_name="order_line_items")
    op.drop_table("order_line_items")
    op.drop_index("ix_orders_status", table_name="orders")
    op.drop_index("ix_orders_required_transfer_id", table_name="orders")
    op.drop_index("ix_orders_order_number", table_name="orders")
    op.drop_table("orders")
    op.drop_index("ix_stock_movements_item_created", table_name="stock_movements")
    op.drop_index("ix_stock_movements_transfer_id", table_name="stock_movements")
    op.drop_index("ix_stock_movements_warehouse_id", table_name="stock_movements")
    op.drop_index("ix_stock_movements_item_id", table_name="stock_movements")
    op.drop_table("stock_movements")
    op.drop_index("ix_warehouse_transfer_items_transfer_id", table_name="warehouse_transfer_items")
    op.drop_table("warehouse_transfer_items")
    op.drop_index("ix_warehouse_transfers_status_created", table_name="warehouse_transfers")
    op.drop_index("ix_warehouse_transfers_to_warehouse_id", table_name="warehouse_transfers")
    op.drop_index("ix_warehouse_transfers_from_warehouse_id", table_name="warehouse_transfers")
    op.drop_table("warehouse_transfers")
    op.drop_index("ix_warehouse_stock_item_id", table_name="warehouse_stock")
    op.drop_table("warehouse_stock")
    op.drop_index("ix_inventory_items_product_id", table_name="inventory_items")
    op.drop_table("inventory_items")
    op.drop_index("ix_user_warehouse_access_user_id", table_name="user_warehouse_access")
    op.drop_table("user_warehouse_access")
    op.drop_table("warehouses")
    op.drop_table("role_template_permissions")
    op.drop_table("role_templates")
    op.drop_table("permission_catalog")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_index("ix_users_username", table_name="users")
    op.drop_table("users")
