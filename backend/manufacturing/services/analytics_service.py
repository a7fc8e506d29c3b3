# Overview: Service-layer reporting over production orders and their recorded stock movements.

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import func

from ..extensions import db
from ..models import (
    BillOfMaterials,
    MovementType,
    OrderStatus,
    Product,
    ProductionOrder,
    StockMovement,
    Unit,
)
from ..time_utils import to_utc_z
from ..validation import decimal_str
from . import bom_service


PENDING_STATUSES = (OrderStatus.DRAFT, OrderStatus.PLANNED, OrderStatus.IN_PROGRESS)

ZERO = Decimal("0")


def _dec(value) -> Decimal:
    """SQLite may hand back floats for NUMERIC aggregates."""
    if value is None:
        return ZERO
    return Decimal(str(value))


class ReportError(Exception):
    """Raised when report generation fails."""
    pass


def _check_range(from_dt: datetime | None, to_dt: datetime | None) -> None:
    if from_dt and to_dt and from_dt > to_dt:
        raise ReportError("'from' must be before or equal to 'to'")


def _movements_in_range(query, from_dt, to_dt):
    if from_dt:
        query = query.filter(StockMovement.created_at >= from_dt)
    if to_dt:
        query = query.filter(StockMovement.created_at <= to_dt)
    return query


def _live_orders():
    return db.session.query(ProductionOrder).filter(ProductionOrder.deleted_at.is_(None))


def _production_value(order_ids=None, from_dt=None, to_dt=None) -> Decimal:
    query = db.session.query(
        func.coalesce(func.sum(StockMovement.quantity * StockMovement.cost_at_time), 0)
    ).filter(StockMovement.type == MovementType.PRODUCTION)
    if order_ids is not None:
        query = query.filter(StockMovement.order_id.in_(order_ids))
    query = _movements_in_range(query, from_dt, to_dt)
    return _dec(query.scalar())


def get_top_products(limit: int = 5, from_dt=None, to_dt=None) -> list[dict]:
    produced = func.sum(StockMovement.quantity).label("total_qty")
    query = (
        db.session.query(StockMovement.product_id, Product.name, produced)
        .join(Product, Product.id == StockMovement.product_id)
        .filter(StockMovement.type == MovementType.PRODUCTION)
    )
    query = _movements_in_range(query, from_dt, to_dt)
    rows = (
        query.group_by(StockMovement.product_id, Product.name)
        .order_by(produced.desc())
        .limit(limit)
        .all()
    )
    return [
        {"product_id": row.product_id, "name": row.name, "quantity": decimal_str(row.total_qty)}
        for row in rows
    ]


def _order_value(order: ProductionOrder) -> Decimal | None:
    """Recorded value for completed orders, today's estimate for the rest."""
    if order.status == OrderStatus.COMPLETED:
        return _production_value(order_ids=[order.id])
    if order.bom_id is None:
        return None
    bom = db.session.get(BillOfMaterials, order.bom_id)
    if bom is None:
        return None
    return bom_service.calculate_estimated_cost(bom) * Decimal(order.quantity)


def get_recent_orders(limit: int = 5) -> list[dict]:
    orders = (
        _live_orders()
        .order_by(ProductionOrder.created_at.desc(), ProductionOrder.id.desc())
        .limit(limit)
        .all()
    )
    return [
        {
            "id": order.id,
            "code": order.code,
            "product_name": bom_service.product_name(order.output_product_id),
            "unit_name": bom_service.unit_name(order.output_unit_id) if order.output_unit_id else "",
            "quantity": decimal_str(order.quantity),
            "status": order.status.value,
            "value": decimal_str(_order_value(order)),
            "created_at": to_utc_z(order.created_at),
        }
        for order in orders
    ]


def get_summary(from_dt: datetime | None = None, to_dt: datetime | None = None) -> dict:
    """
    Headline numbers for the manufacturing dashboard.

    The date range filters completion time for the completed count and
    movement time for values and top products. Totals and pending counts
    cover all live orders.
    """
    _check_range(from_dt, to_dt)

    completed_q = _live_orders().filter(ProductionOrder.status == OrderStatus.COMPLETED)
    if from_dt:
        completed_q = completed_q.filter(ProductionOrder.completed_at >= from_dt)
    if to_dt:
        completed_q = completed_q.filter(ProductionOrder.completed_at <= to_dt)

    return {
        "from": to_utc_z(from_dt),
        "to": to_utc_z(to_dt),
        "total_orders": _live_orders().count(),
        "completed": completed_q.count(),
        "pending": _live_orders().filter(ProductionOrder.status.in_(PENDING_STATUSES)).count(),
        "total_production_value": decimal_str(_production_value(from_dt=from_dt, to_dt=to_dt)),
        "top_products": get_top_products(from_dt=from_dt, to_dt=to_dt),
        "recent_orders": get_recent_orders(),
    }


def get_bom_usage(bom_id: int) -> dict:
    bom_service.get_bom(bom_id, include_deleted=True)

    orders = _live_orders().filter(ProductionOrder.bom_id == bom_id).all()
    completed_ids = [o.id for o in orders if o.status == OrderStatus.COMPLETED]

    produced = ZERO
    if completed_ids:
        produced = _dec(
            db.session.query(func.coalesce(func.sum(StockMovement.quantity), 0))
            .filter(
                StockMovement.type == MovementType.PRODUCTION,
                StockMovement.order_id.in_(completed_ids),
            )
            .scalar()
        )

    return {
        "bom_id": bom_id,
        "total_orders": len(orders),
        "completed_orders": len(completed_ids),
        "total_quantity_produced": decimal_str(produced),
    }


def get_consumption(from_dt: datetime | None = None, to_dt: datetime | None = None) -> list[dict]:
    """
    Component usage from recorded consumption movements.

    Consumption movements are negative; totals are reported as positive
    quantities and costs at the cost recorded when consumed.
    """
    _check_range(from_dt, to_dt)

    total_qty = func.sum(StockMovement.quantity).label("total_qty")
    total_cost = func.sum(StockMovement.quantity * StockMovement.cost_at_time).label("total_cost")

    query = (
        db.session.query(
            StockMovement.product_id,
            Product.name.label("ingredient"),
            StockMovement.unit_id,
            Unit.name.label("unit"),
            total_qty,
            total_cost,
        )
        .join(Product, Product.id == StockMovement.product_id)
        .outerjoin(Unit, Unit.id == StockMovement.unit_id)
        .filter(StockMovement.type == MovementType.CONSUMPTION)
    )
    query = _movements_in_range(query, from_dt, to_dt)
    rows = (
        query.group_by(StockMovement.product_id, Product.name, StockMovement.unit_id, Unit.name)
        .order_by(Product.name)
        .all()
    )
    return [
        {
            "product_id": row.product_id,
            "ingredient": row.ingredient,
            "unit_id": row.unit_id,
            "unit": row.unit,
            "quantity": decimal_str(-_dec(row.total_qty)),
            "total_cost": decimal_str(-_dec(row.total_cost)),
        }
        for row in rows
    ]
