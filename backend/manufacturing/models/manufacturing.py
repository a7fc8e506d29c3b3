from __future__ import annotations

import enum
from uuid import uuid4

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from ..validation import decimal_str


class OrderStatus(str, enum.Enum):
    DRAFT = "draft"
    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ON_HOLD = "on_hold"


class MovementType(str, enum.Enum):
    CONSUMPTION = "consumption"
    PRODUCTION = "production"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class BillOfMaterials(db.Model):
    """
    Recipe: output_quantity units of output_product are made from the items.

    Owns its BomItems: deleting the BOM deletes its items (ORM cascade and
    ON DELETE CASCADE). Soft deletion (deleted_at) hides the BOM from
    listings and from the dependency graph but keeps orders readable.
    """
    __tablename__ = "manufacturing_boms"
    __table_args__ = (
        db.Index("ix_boms_output_product", "output_product_id"),
        db.Index("ix_boms_active", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    uuid = db.Column(db.String(36), nullable=False, unique=True, default=lambda: str(uuid4()))
    name = db.Column(db.String(255), nullable=False)

    output_product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    output_unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=True)
    output_quantity = db.Column(db.Numeric(18, 4), nullable=False, default=1)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    description = db.Column(db.Text, nullable=True)
    author_id = db.Column(db.Integer, nullable=False)

    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    items = db.relationship(
        "BomItem",
        back_populates="bom",
        cascade="all, delete-orphan",
        order_by="BomItem.id",
    )

    def __repr__(self) -> str:
        return f"<BillOfMaterials id={self.id} name={self.name!r} output_product_id={self.output_product_id}>"

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "uuid": self.uuid,
            "name": self.name,
            "output_product_id": self.output_product_id,
            "output_unit_id": self.output_unit_id,
            "output_quantity": decimal_str(self.output_quantity),
            "is_active": self.is_active,
            "description": self.description,
            "author_id": self.author_id,
            "deleted_at": to_utc_z(self.deleted_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class BomItem(db.Model):
    __tablename__ = "manufacturing_bom_items"
    __table_args__ = (
        db.Index("ix_bom_items_component", "component_product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    bom_id = db.Column(
        db.Integer,
        db.ForeignKey("manufacturing_boms.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    component_product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    component_unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=True)

    # Per one run of the BOM
    quantity = db.Column(db.Numeric(18, 4), nullable=False)

    # Recorded for costing/reporting; not applied to consumption or cost
    waste_percent = db.Column(db.Numeric(7, 4), nullable=False, default=0)
    cost_allocation_percent = db.Column(db.Numeric(9, 4), nullable=False, default=100)

    author_id = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    bom = db.relationship("BillOfMaterials", back_populates="items")

    def __repr__(self) -> str:
        return f"<BomItem id={self.id} bom_id={self.bom_id} component_product_id={self.component_product_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "bom_id": self.bom_id,
            "component_product_id": self.component_product_id,
            "component_unit_id": self.component_unit_id,
            "quantity": decimal_str(self.quantity),
            "waste_percent": decimal_str(self.waste_percent),
            "cost_allocation_percent": decimal_str(self.cost_allocation_percent),
            "author_id": self.author_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductionOrder(db.Model):
    """
    Work order: run a BOM `quantity` times.

    References its BOM and products by id only; the BOM is looked up by the
    production service when a transition needs it. Status only moves along
    production_service.TRANSITIONS.
    """
    __tablename__ = "manufacturing_orders"
    __table_args__ = (
        db.Index("ix_orders_status", "status"),
        db.Index("ix_orders_output_product", "output_product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False, unique=True)

    bom_id = db.Column(
        db.Integer,
        db.ForeignKey("manufacturing_boms.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    output_product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    output_unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=True)
    quantity = db.Column(db.Numeric(18, 4), nullable=False)

    status = db.Column(
        db.Enum(
            OrderStatus,
            name="manufacturing_order_status",
            native_enum=False,
            length=16,
            values_callable=_enum_values,
            validate_strings=True,
        ),
        nullable=False,
        default=OrderStatus.DRAFT,
    )

    started_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    author_id = db.Column(db.Integer, nullable=False)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<ProductionOrder id={self.id} code={self.code!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "bom_id": self.bom_id,
            "output_product_id": self.output_product_id,
            "output_unit_id": self.output_unit_id,
            "quantity": decimal_str(self.quantity),
            "status": self.status.value,
            "started_at": to_utc_z(self.started_at),
            "completed_at": to_utc_z(self.completed_at),
            "author_id": self.author_id,
            "version_id": self.version_id,
            "deleted_at": to_utc_z(self.deleted_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Audit record of one stock side effect of a production order.

    quantity is signed: negative for consumption, positive for production.
    Rows are created only by the inventory bridge and never edited.
    """
    __tablename__ = "manufacturing_stock_movements"
    __table_args__ = (
        db.Index("ix_movements_order_type", "order_id", "type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("manufacturing_orders.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=True)

    quantity = db.Column(db.Numeric(18, 4), nullable=False)
    type = db.Column(
        db.Enum(
            MovementType,
            name="manufacturing_movement_type",
            native_enum=False,
            length=16,
            values_callable=_enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    cost_at_time = db.Column(db.Numeric(18, 4), nullable=False, default=0)

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now(), index=True
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "unit_id": self.unit_id,
            "quantity": decimal_str(self.quantity),
            "type": self.type.value,
            "cost_at_time": decimal_str(self.cost_at_time),
            "created_at": to_utc_z(self.created_at),
        }
