"""Create catalog, inventory ledger, order, picking and shipping tables."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_create_fulfillment_tables"
down_revision = None
branch_labels = None
depends_on = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _uuid(name: str, **kwargs) -> sa.Column:
    return sa.Column(name, sa.Uuid(as_uuid=True), **kwargs)


def _qty(name: str, nullable: bool = False, default: bool = True) -> sa.Column:
    if default:
        return sa.Column(name, sa.Numeric(18, 3), nullable=nullable, server_default="0")
    return sa.Column(name, sa.Numeric(18, 3), nullable=nullable)


def _money(name: str) -> sa.Column:
    return sa.Column(name, sa.Numeric(18, 2), nullable=False, server_default="0")


def _created_at(name: str = "created_at") -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())


def _timestamp(name: str) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=True)


def _in_list(column: str, values: tuple[str, ...]) -> str:
    quoted = ", ".join(f"'{value}'" for value in values)
    return f"{column} IN ({quoted})"


def upgrade() -> None:
    op.create_table(
        "item",
        _uuid("item_id", primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False, index=True),
        sa.Column("sku", sa.String(), nullable=False, index=True),
        sa.Column("item_name", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("base_uom", sa.String(), nullable=False, server_default="EA"),
        sa.Column("uom_conversions", JSON_TYPE, nullable=True),
        _qty("reorder_point"),
        sa.Column("unit_cost", sa.Numeric(18, 4), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            server_onupdate=sa.func.now(),
        ),
        sa.UniqueConstraint("tenant_id", "sku", name="uq_item_tenant_sku"),
        sa.CheckConstraint("reorder_point >= 0", name="ck_item_reorder_point"),
    )

    op.create_table(
        "location",
        _uuid("location_id", primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False, index=True),
        sa.Column("site_id", sa.String(), nullable=False, index=True),
        sa.Column("location_code", sa.String(), nullable=False),
        sa.Column("location_type", sa.String(), nullable=False, server_default="STOCK"),
        sa.Column("pick_sequence", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        sa.UniqueConstraint("tenant_id", "site_id", "location_code", name="uq_location_site_code"),
        sa.CheckConstraint(
            _in_list("location_type", ("RECEIVING", "STOCK", "WIP", "QC_HOLD", "SHIPPING")),
            name="ck_location_type",
        ),
    )

    op.create_table(
        "stock_balance",
        _uuid("stock_balance_id", primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("site_id", sa.String(), nullable=False),
        _uuid("item_id", sa.ForeignKey("item.item_id"), nullable=False),
        _uuid("location_id", sa.ForeignKey("location.location_id"), nullable=False),
        _qty("quantity_on_hand"),
        _qty("quantity_reserved"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        _timestamp("first_received_at"),
        _timestamp("last_movement_at"),
        sa.UniqueConstraint("tenant_id", "site_id", "item_id", "location_id", name="uq_stock_balance_unique"),
        sa.CheckConstraint("quantity_on_hand >= 0", name="ck_stock_balance_on_hand"),
        sa.CheckConstraint("quantity_reserved >= 0", name="ck_stock_balance_reserved"),
        sa.CheckConstraint("quantity_reserved <= quantity_on_hand", name="ck_stock_balance_reserved_le_on_hand"),
    )
    op.create_index("ix_stock_balance_item", "stock_balance", ["tenant_id", "site_id", "item_id"])

    op.create_table(
        "inventory_event",
        _uuid("inventory_event_id", primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("site_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        _uuid("item_id", sa.ForeignKey("item.item_id"), nullable=False),
        _qty("quantity_entered", default=False),
        sa.Column("uom_entered", sa.String(), nullable=False),
        _qty("quantity_base", default=False),
        _uuid("from_location_id", sa.ForeignKey("location.location_id"), nullable=True),
        _uuid("to_location_id", sa.ForeignKey("location.location_id"), nullable=True),
        sa.Column("reference_type", sa.String(), nullable=True),
        sa.Column("reference_id", sa.String(), nullable=True),
        sa.Column("reason_code", sa.String(), nullable=True),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("actor_id", sa.String(), nullable=True),
        _created_at("occurred_at"),
        sa.CheckConstraint(
            _in_list("event_type", ("RECEIVE", "MOVE", "ISSUE", "SCRAP", "ADJUST", "COUNT", "RETURN")),
            name="ck_inventory_event_type",
        ),
        sa.CheckConstraint("quantity_base >= 0", name="ck_inventory_event_quantity"),
    )
    op.create_index("ix_inventory_event_occurred_at", "inventory_event", ["occurred_at"])
    op.create_index("ix_inventory_event_item", "inventory_event", ["tenant_id", "item_id"])
    op.create_index("ix_inventory_event_reference", "inventory_event", ["reference_type", "reference_id"])

    op.create_table(
        "sales_order",
        _uuid("sales_order_id", primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False, index=True),
        sa.Column("site_id", sa.String(), nullable=False),
        sa.Column("order_number", sa.String(), nullable=False),
        sa.Column("customer_reference", sa.String(), nullable=False),
        sa.Column("customer_po", sa.String(), nullable=True),
        sa.Column("order_date", sa.DateTime(timezone=True), nullable=False),
        _timestamp("requested_date"),
        sa.Column("ship_to_name", sa.String(), nullable=True),
        sa.Column("ship_to_address1", sa.String(), nullable=True),
        sa.Column("ship_to_address2", sa.String(), nullable=True),
        sa.Column("ship_to_city", sa.String(), nullable=True),
        sa.Column("ship_to_state", sa.String(), nullable=True),
        sa.Column("ship_to_zip", sa.String(), nullable=True),
        sa.Column("ship_to_country", sa.String(), nullable=False, server_default="US"),
        sa.Column("shipping_method", sa.String(), nullable=True),
        _money("subtotal"),
        _money("shipping_amount"),
        _money("discount_amount"),
        _money("total_amount"),
        sa.Column("status", sa.String(), nullable=False, server_default="DRAFT", index=True),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        _timestamp("confirmed_at"),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            server_onupdate=sa.func.now(),
        ),
        sa.UniqueConstraint("tenant_id", "order_number", name="uq_sales_order_number"),
        sa.CheckConstraint(
            _in_list(
                "status",
                ("DRAFT", "CONFIRMED", "ALLOCATED", "PICKING", "PACKED", "SHIPPED", "DELIVERED", "CANCELLED"),
            ),
            name="ck_sales_order_status",
        ),
    )

    op.create_table(
        "sales_order_line",
        _uuid("sales_order_line_id", primary_key=True),
        _uuid(
            "sales_order_id",
            sa.ForeignKey("sales_order.sales_order_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=False),
        _uuid("item_id", sa.ForeignKey("item.item_id"), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        _qty("qty_entered", default=False),
        sa.Column("uom_entered", sa.String(), nullable=False),
        _qty("qty_ordered", default=False),
        sa.Column("unit_price", sa.Numeric(18, 4), nullable=False, server_default="0"),
        _money("discount"),
        _money("line_total"),
        _qty("qty_allocated"),
        _qty("qty_picked"),
        _qty("qty_shipped"),
        sa.Column("status", sa.String(), nullable=False, server_default="OPEN"),
        sa.Column("notes", sa.String(), nullable=True),
        sa.UniqueConstraint("sales_order_id", "line_number", name="uq_sales_order_line_number"),
        sa.CheckConstraint(
            _in_list("status", ("OPEN", "ALLOCATED", "PICKING", "PICKED", "PACKED", "SHIPPED", "CANCELLED")),
            name="ck_sales_order_line_status",
        ),
        sa.CheckConstraint("qty_ordered > 0", name="ck_line_qty_ordered"),
        sa.CheckConstraint("qty_allocated >= 0 AND qty_allocated <= qty_ordered", name="ck_line_qty_allocated"),
        sa.CheckConstraint("qty_picked >= 0 AND qty_picked <= qty_allocated", name="ck_line_qty_picked"),
        sa.CheckConstraint("qty_shipped >= 0 AND qty_shipped <= qty_picked", name="ck_line_qty_shipped"),
    )

    op.create_table(
        "inventory_reservation",
        _uuid("inventory_reservation_id", primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        _uuid("sales_order_id", sa.ForeignKey("sales_order.sales_order_id"), nullable=False, index=True),
        _uuid("sales_order_line_id", sa.ForeignKey("sales_order_line.sales_order_line_id"), nullable=False),
        _uuid("stock_balance_id", sa.ForeignKey("stock_balance.stock_balance_id"), nullable=False),
        _uuid("item_id", sa.ForeignKey("item.item_id"), nullable=False),
        _uuid("location_id", sa.ForeignKey("location.location_id"), nullable=False),
        _qty("reserved_quantity", default=False),
        _qty("consumed_quantity"),
        sa.Column("reservation_status", sa.String(), nullable=False, server_default="active"),
        sa.Column("allocation_rank", sa.Integer(), nullable=False, server_default="0"),
        _created_at(),
        _timestamp("released_at"),
        sa.CheckConstraint(
            _in_list("reservation_status", ("active", "released", "consumed")),
            name="ck_reservation_status",
        ),
        sa.CheckConstraint("reserved_quantity > 0", name="ck_reservation_quantity"),
        sa.CheckConstraint("consumed_quantity <= reserved_quantity", name="ck_reservation_consumed"),
    )
    op.create_index(
        "ix_reservation_line", "inventory_reservation", ["sales_order_line_id", "reservation_status"]
    )

    op.create_table(
        "pick_task",
        _uuid("pick_task_id", primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        _uuid("sales_order_id", sa.ForeignKey("sales_order.sales_order_id"), nullable=False, index=True),
        sa.Column("task_number", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="PENDING"),
        sa.Column("assigned_to", sa.String(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        _created_at(),
        _timestamp("started_at"),
        _timestamp("completed_at"),
        sa.UniqueConstraint("tenant_id", "task_number", name="uq_pick_task_number"),
        sa.CheckConstraint(
            _in_list("status", ("PENDING", "IN_PROGRESS", "COMPLETED", "CANCELLED")),
            name="ck_pick_task_status",
        ),
    )
    open_task = sa.text(_in_list("status", ("PENDING", "IN_PROGRESS")))
    op.create_index(
        "uq_pick_task_open_order",
        "pick_task",
        ["sales_order_id"],
        unique=True,
        sqlite_where=open_task,
        postgresql_where=open_task,
    )

    op.create_table(
        "pick_task_line",
        _uuid("pick_task_line_id", primary_key=True),
        _uuid("pick_task_id", sa.ForeignKey("pick_task.pick_task_id", ondelete="CASCADE"), nullable=False, index=True),
        _uuid(
            "sales_order_line_id",
            sa.ForeignKey("sales_order_line.sales_order_line_id"),
            nullable=False,
            index=True,
        ),
        _uuid("item_id", sa.ForeignKey("item.item_id"), nullable=False),
        _uuid("location_id", sa.ForeignKey("location.location_id"), nullable=True),
        _qty("qty_to_pick", default=False),
        _qty("qty_picked"),
        sa.Column("short_closed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", sa.String(), nullable=False, server_default="PENDING"),
        sa.Column("picked_by", sa.String(), nullable=True),
        _timestamp("last_picked_at"),
        sa.CheckConstraint(
            _in_list("status", ("PENDING", "IN_PROGRESS", "COMPLETED", "CANCELLED")),
            name="ck_pick_task_line_status",
        ),
        sa.CheckConstraint("qty_to_pick > 0", name="ck_pick_line_qty_to_pick"),
        sa.CheckConstraint("qty_picked >= 0 AND qty_picked <= qty_to_pick", name="ck_pick_line_qty_picked"),
    )

    op.create_table(
        "shipment",
        _uuid("shipment_id", primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("site_id", sa.String(), nullable=False),
        _uuid("sales_order_id", sa.ForeignKey("sales_order.sales_order_id"), nullable=False, index=True),
        sa.Column("shipment_number", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="DRAFT"),
        sa.Column("carrier", sa.String(), nullable=True),
        sa.Column("service_level", sa.String(), nullable=True),
        sa.Column("ship_to_name", sa.String(), nullable=True),
        sa.Column("ship_to_address1", sa.String(), nullable=True),
        sa.Column("ship_to_address2", sa.String(), nullable=True),
        sa.Column("ship_to_city", sa.String(), nullable=True),
        sa.Column("ship_to_state", sa.String(), nullable=True),
        sa.Column("ship_to_zip", sa.String(), nullable=True),
        sa.Column("ship_to_country", sa.String(), nullable=True),
        sa.Column("tracking_number", sa.String(), nullable=True),
        _timestamp("ship_date"),
        _timestamp("delivered_at"),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("shipped_by", sa.String(), nullable=True),
        _created_at(),
        sa.UniqueConstraint("tenant_id", "shipment_number", name="uq_shipment_number"),
        sa.CheckConstraint(
            _in_list("status", ("DRAFT", "READY_TO_SHIP", "SHIPPED", "DELIVERED", "CANCELLED")),
            name="ck_shipment_status",
        ),
    )

    op.create_table(
        "shipment_line",
        _uuid("shipment_line_id", primary_key=True),
        _uuid("shipment_id", sa.ForeignKey("shipment.shipment_id", ondelete="CASCADE"), nullable=False, index=True),
        _uuid(
            "sales_order_line_id",
            sa.ForeignKey("sales_order_line.sales_order_line_id"),
            nullable=False,
            index=True,
        ),
        _uuid("item_id", sa.ForeignKey("item.item_id"), nullable=False),
        _qty("qty_shipped", default=False),
        sa.UniqueConstraint("shipment_id", "sales_order_line_id", name="uq_shipment_line_order_line"),
        sa.CheckConstraint("qty_shipped > 0", name="ck_shipment_line_qty"),
    )

    op.create_table(
        "shipment_package",
        _uuid("shipment_package_id", primary_key=True),
        _uuid("shipment_id", sa.ForeignKey("shipment.shipment_id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("package_number", sa.Integer(), nullable=False),
        sa.Column("package_type", sa.String(), nullable=True),
        sa.Column("tracking_number", sa.String(), nullable=True),
        sa.Column("length", sa.Numeric(10, 2), nullable=True),
        sa.Column("width", sa.Numeric(10, 2), nullable=True),
        sa.Column("height", sa.Numeric(10, 2), nullable=True),
        sa.Column("weight", sa.Numeric(10, 3), nullable=True),
        sa.Column("contents", JSON_TYPE, nullable=True),
        _created_at(),
        sa.UniqueConstraint("shipment_id", "package_number", name="uq_shipment_package_number"),
    )

    op.create_table(
        "document_sequence",
        _uuid("document_sequence_id", primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("sequence_name", sa.String(), nullable=False),
        sa.Column("last_value", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("tenant_id", "sequence_name", name="uq_document_sequence"),
    )

    op.create_table(
        "audit_log",
        _uuid("audit_log_id", primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        _created_at("recorded_at"),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("audited_action", sa.String(), nullable=False),
        sa.Column("entity_table_name", sa.String(), nullable=False),
        _uuid("entity_primary_identifier", nullable=False),
        sa.Column("before_state", JSON_TYPE, nullable=True),
        sa.Column("after_state", JSON_TYPE, nullable=True),
        _uuid("correlation_identifier", nullable=True),
    )
    op.create_index("ix_audit_log_recorded_at", "audit_log", ["recorded_at"])
    op.create_index("ix_audit_log_entity", "audit_log", ["entity_table_name", "entity_primary_identifier"])

    op.create_table(
        "domain_event",
        _uuid("domain_event_id", primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        _created_at("occurred_at"),
        sa.Column("event_name", sa.String(), nullable=False),
        sa.Column("aggregate_type", sa.String(), nullable=False),
        _uuid("aggregate_identifier", nullable=False),
        sa.Column("event_payload", JSON_TYPE, nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        _uuid("correlation_identifier", nullable=True),
    )
    op.create_index("ix_domain_event_occurred_at", "domain_event", ["occurred_at"])
    op.create_index("ix_domain_event_aggregate", "domain_event", ["aggregate_type", "aggregate_identifier"])


def downgrade() -> None:
    op.drop_table("domain_event")
    op.drop_table("audit_log")
    op.drop_table("document_sequence")
    op.drop_table("shipment_package")
    op.drop_table("shipment_line")
    op.drop_table("shipment")
    op.drop_table("pick_task_line")
    op.drop_table("pick_task")
    op.drop_table("inventory_reservation")
    op.drop_table("sales_order_line")
    op.drop_table("sales_order")
    op.drop_table("inventory_event")
    op.drop_table("stock_balance")
    op.drop_table("location")
    op.drop_table("item")
