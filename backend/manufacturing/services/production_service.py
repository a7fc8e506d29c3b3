# Overview: Production order state machine; drives start/complete/cancel and their stock movements.

"""
Production Order Lifecycle (authoritative)

================================================================================
STATE MACHINE
================================================================================

    draft ---+                          +--> completed
             +--start--> in_progress ---+
    planned -+                   (complete)

    draft | planned | on_hold --cancel--> cancelled
    draft | planned ----------hold------> on_hold
    on_hold -----------------release----> planned

completed and cancelled are terminal. Any (status, action) pair missing from
TRANSITIONS is rejected with InvalidTransitionError naming the blocking
status.

RULES (NON-NEGOTIABLE):
1. Every transition is one DB transaction. Either the status change and all
   of its stock movements commit together, or nothing does.
2. start checks availability for every component before consuming anything
   and reports all shortfalls at once.
3. complete recomputes the unit cost from current component COGS; cost is
   never captured at start.
4. cancel never touches stock: no materials have been consumed in the
   statuses it is allowed from.
5. The order row is locked (FOR UPDATE + version_id) for the whole
   transition, and component balances are locked before the availability
   check, so two starts cannot both pass the check against the same stock.

QUANTITIES:
- order.quantity counts BOM runs.
- start consumes item.quantity * order.quantity of each component.
- complete produces order.quantity * bom.output_quantity output units.
================================================================================
"""

from __future__ import annotations

import secrets
from collections import OrderedDict
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import BillOfMaterials, OrderStatus, ProductionOrder, Product, StockMovement, Unit
from ..time_utils import utcnow
from ..validation import (
    QUANTITY_PLACES,
    ConflictError,
    ValidationError,
    optional_int,
    parse_positive_quantity,
    require_int,
)
from . import bom_service
from .bom_service import BomError
from .concurrency import atomic, lock_for_update, run_with_retry
from .inventory_bridge import InventoryBridge
from .stock_ledger_service import ProductCosting, SqlProductCosting, StockLedgerError


ACTION_START = "start"
ACTION_COMPLETE = "complete"
ACTION_CANCEL = "cancel"
ACTION_HOLD = "hold"
ACTION_RELEASE = "release"

TRANSITIONS: dict[tuple[OrderStatus, str], OrderStatus] = {
    (OrderStatus.DRAFT, ACTION_START): OrderStatus.IN_PROGRESS,
    (OrderStatus.PLANNED, ACTION_START): OrderStatus.IN_PROGRESS,
    (OrderStatus.IN_PROGRESS, ACTION_COMPLETE): OrderStatus.COMPLETED,
    (OrderStatus.DRAFT, ACTION_CANCEL): OrderStatus.CANCELLED,
    (OrderStatus.PLANNED, ACTION_CANCEL): OrderStatus.CANCELLED,
    (OrderStatus.ON_HOLD, ACTION_CANCEL): OrderStatus.CANCELLED,
    (OrderStatus.DRAFT, ACTION_HOLD): OrderStatus.ON_HOLD,
    (OrderStatus.PLANNED, ACTION_HOLD): OrderStatus.ON_HOLD,
    (OrderStatus.ON_HOLD, ACTION_RELEASE): OrderStatus.PLANNED,
}

CREATABLE_STATUSES = frozenset({OrderStatus.DRAFT, OrderStatus.PLANNED})
EDITABLE_STATUSES = frozenset({OrderStatus.DRAFT, OrderStatus.PLANNED, OrderStatus.ON_HOLD})


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class ProductionError(Exception):
    """Base for production order failures; carries the order's code."""

    def __init__(self, message: str, *, order_code: str | None = None):
        self.order_code = order_code
        super().__init__(message)


class OrderNotFoundError(ProductionError, LookupError):
    pass


class InvalidTransitionError(ProductionError):
    def __init__(self, order_code: str, current_status: OrderStatus, action: str):
        self.current_status = current_status
        self.action = action
        super().__init__(
            f"Cannot {action} production order {order_code}: "
            f"current status is '{current_status.value}'",
            order_code=order_code,
        )


class MissingOrInactiveBomError(ProductionError):
    pass


@dataclass(frozen=True)
class Shortfall:
    product_id: int
    product_name: str
    unit_id: int | None
    unit_name: str
    required: Decimal
    available: Decimal

    def describe(self) -> str:
        return f"{self.product_name} ({self.unit_name}): Required {self.required}, Available {self.available}"

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "unit_id": self.unit_id,
            "unit_name": self.unit_name,
            "required": str(self.required),
            "available": str(self.available),
        }


class InsufficientStockError(ProductionError):
    def __init__(self, order_code: str, shortfalls: list[Shortfall]):
        self.shortfalls = shortfalls
        lines = "\n".join(s.describe() for s in shortfalls)
        super().__init__(
            f"Insufficient stock to start production order {order_code} for the following items:\n{lines}",
            order_code=order_code,
        )


class PersistenceFailureError(ProductionError):
    pass


# ---------------------------------------------------------------------------
# Transition table helpers
# ---------------------------------------------------------------------------

def next_status(order: ProductionOrder, action: str) -> OrderStatus:
    target = TRANSITIONS.get((order.status, action))
    if target is None:
        raise InvalidTransitionError(order.code, order.status, action)
    return target


def allowed_actions(status: OrderStatus) -> list[str]:
    return [action for (from_status, action) in TRANSITIONS if from_status == status]


def _coerce_status(value) -> OrderStatus:
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(str(value).strip().lower())
    except ValueError:
        raise ValidationError(
            f"Invalid status '{value}'. Must be one of: {', '.join(s.value for s in OrderStatus)}"
        )


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

def generate_order_code() -> str:
    prefix = current_app.config.get("MANUFACTURING_ORDER_CODE_PREFIX", "MO")
    return f"{prefix}-{utcnow():%Y%m%d}-{secrets.token_hex(3).upper()}"


def get_order(order_id: int, *, include_deleted: bool = False) -> ProductionOrder:
    order = db.session.get(ProductionOrder, order_id)
    if order is None or (order.deleted_at is not None and not include_deleted):
        raise OrderNotFoundError(f"Production order {order_id} not found")
    return order


def get_order_movements(order_id: int) -> list[StockMovement]:
    return (
        db.session.query(StockMovement)
        .filter(StockMovement.order_id == order_id)
        .order_by(StockMovement.id)
        .all()
    )


def _ensure_code_available(code: str, *, exclude_order_id: int | None = None) -> None:
    q = db.session.query(ProductionOrder.id).filter(ProductionOrder.code == code)
    if exclude_order_id is not None:
        q = q.filter(ProductionOrder.id != exclude_order_id)
    if q.first():
        raise ConflictError(f"Production order code '{code}' already exists")


def _bom_for_order(bom_id) -> BillOfMaterials:
    bom_id = require_int(bom_id, "bom_id")
    try:
        return bom_service.get_bom(bom_id)
    except bom_service.BomNotFoundError:
        raise ValidationError(f"bom_id: BOM {bom_id} not found")


def _output_unit(unit_id) -> int | None:
    unit_id = optional_int(unit_id, "output_unit_id")
    if unit_id is not None and db.session.get(Unit, unit_id) is None:
        raise ValidationError(f"output_unit_id: unit {unit_id} not found")
    return unit_id


def create_order(
    *,
    quantity,
    author_id: int,
    bom_id: int | None = None,
    code: str | None = None,
    status=OrderStatus.PLANNED,
    output_product_id: int | None = None,
    output_unit_id: int | None = None,
) -> ProductionOrder:
    """
    Create a draft or planned production order (flushes only).

    Output product/unit default to the BOM's. Without a code, one is
    generated as <prefix>-YYYYMMDD-XXXXXX.
    """
    status = _coerce_status(status)
    if status not in CREATABLE_STATUSES:
        raise ValidationError("status must be either draft or planned")

    output_product_id = optional_int(output_product_id, "output_product_id")
    output_unit_id = _output_unit(output_unit_id)
    bom = _bom_for_order(bom_id) if bom_id is not None else None
    if bom is not None:
        output_product_id = output_product_id or bom.output_product_id
        output_unit_id = output_unit_id or bom.output_unit_id
    if output_product_id is None or db.session.get(Product, output_product_id) is None:
        raise ValidationError(f"output_product_id: product {output_product_id} not found")

    code = (code or "").strip() or generate_order_code()
    _ensure_code_available(code)

    order = ProductionOrder(
        code=code,
        bom_id=bom.id if bom is not None else None,
        output_product_id=output_product_id,
        output_unit_id=output_unit_id,
        quantity=parse_positive_quantity(quantity),
        status=status,
        author_id=author_id,
    )
    db.session.add(order)
    try:
        db.session.flush()
    except IntegrityError:
        raise ConflictError(f"Production order code '{code}' already exists")
    return order


_ORDER_FIELDS = {"code", "bom_id", "quantity", "output_product_id", "output_unit_id"}


def update_order(order_id: int, *, author_id: int, **changes) -> ProductionOrder:
    """Edit an order that has not started yet (draft, planned, on_hold)."""
    unknown = set(changes) - _ORDER_FIELDS
    if unknown:
        raise ValidationError(f"Unknown order fields: {', '.join(sorted(unknown))}")

    order = lock_for_update(
        db.session.query(ProductionOrder).filter(
            ProductionOrder.id == order_id,
            ProductionOrder.deleted_at.is_(None),
        )
    ).first()
    if order is None:
        raise OrderNotFoundError(f"Production order {order_id} not found")
    if order.status not in EDITABLE_STATUSES:
        raise InvalidTransitionError(order.code, order.status, "edit")

    if "code" in changes:
        code = (changes["code"] or "").strip()
        if not code:
            raise ValidationError("code cannot be empty")
        _ensure_code_available(code, exclude_order_id=order.id)
        order.code = code
    if "bom_id" in changes:
        order.bom_id = _bom_for_order(changes["bom_id"]).id if changes["bom_id"] is not None else None
    if "quantity" in changes:
        order.quantity = parse_positive_quantity(changes["quantity"])
    if "output_product_id" in changes:
        output_product_id = require_int(changes["output_product_id"], "output_product_id")
        if db.session.get(Product, output_product_id) is None:
            raise ValidationError(f"output_product_id: product {output_product_id} not found")
        order.output_product_id = output_product_id
    if "output_unit_id" in changes:
        order.output_unit_id = _output_unit(changes["output_unit_id"])

    order.author_id = author_id
    db.session.flush()
    return order


def soft_delete_order(order_id: int) -> ProductionOrder:
    """Soft delete is the only change allowed on completed orders."""
    order = get_order(order_id)
    order.deleted_at = utcnow()
    db.session.flush()
    return order


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

def _lock_order(order_id: int) -> ProductionOrder:
    order = (
        lock_for_update(
            db.session.query(ProductionOrder).filter(
                ProductionOrder.id == order_id,
                ProductionOrder.deleted_at.is_(None),
            )
        )
        .populate_existing()
        .first()
    )
    if order is None:
        raise OrderNotFoundError(f"Production order {order_id} not found")
    return order


def _run_transition(
    order_id: int,
    action: str,
    apply: Callable[[ProductionOrder, OrderStatus], None],
) -> ProductionOrder:
    """
    Lock the order, check the transition table, apply, commit.

    Any failure rolls the whole transition back. Domain errors propagate as
    they are; storage and ledger failures become one PersistenceFailureError
    naming the order.
    """
    label = {"code": f"#{order_id}"}

    def _op():
        with atomic():
            order = _lock_order(order_id)
            label["code"] = order.code
            target = next_status(order, action)
            apply(order, target)
            db.session.flush()
            return order

    try:
        return run_with_retry(_op)
    except ProductionError:
        raise
    except (SQLAlchemyError, StockLedgerError) as exc:
        current_app.logger.exception(
            "Manufacturing: failed to %s order %s", action, label["code"]
        )
        raise PersistenceFailureError(
            f"Failed to {action} production order {label['code']}: {exc}",
            order_code=label["code"],
        ) from exc
    except BomError as exc:
        raise ProductionError(
            f"Failed to {action} production order {label['code']}: {exc}",
            order_code=label["code"],
        ) from exc


def _require_bom(order: ProductionOrder, *, require_active: bool) -> BillOfMaterials:
    if order.bom_id is None:
        raise MissingOrInactiveBomError(f"No BOM assigned to order {order.code}", order_code=order.code)
    bom = db.session.get(BillOfMaterials, order.bom_id)
    if bom is None or (require_active and bom.deleted_at is not None):
        raise MissingOrInactiveBomError(
            f"BOM {order.bom_id} assigned to order {order.code} no longer exists",
            order_code=order.code,
        )
    if require_active and not bom.is_active:
        raise MissingOrInactiveBomError(
            f"BOM '{bom.name}' assigned to order {order.code} is not active",
            order_code=order.code,
        )
    return bom


def _collect_shortfalls(requirements, bridge: InventoryBridge) -> list[Shortfall]:
    """
    Check every requirement before anything is consumed.

    Items naming the same component and unit are summed, so a component
    listed twice cannot pass two separate checks against one pool.
    """
    totals: OrderedDict = OrderedDict()
    for req in requirements:
        key = (req.product_id, req.unit_id)
        if key in totals:
            first, required = totals[key]
            totals[key] = (first, required + req.required)
        else:
            totals[key] = (req, req.required)

    shortfalls = []
    for (product_id, unit_id), (req, required) in totals.items():
        if bridge.is_available(product_id, unit_id, required):
            continue
        shortfalls.append(Shortfall(
            product_id=product_id,
            product_name=req.product_name,
            unit_id=unit_id,
            unit_name=req.unit_name,
            required=required,
            available=bridge.available_quantity(product_id, unit_id),
        ))
    return shortfalls


def start_order(
    order_id: int,
    *,
    author_id: int,
    bridge: InventoryBridge | None = None,
    costing: ProductCosting | None = None,
) -> ProductionOrder:
    """
    draft/planned -> in_progress, consuming every component.

    Raises:
        OrderNotFoundError, InvalidTransitionError, MissingOrInactiveBomError,
        InsufficientStockError (all shortfalls at once), PersistenceFailureError
    """
    bridge = bridge or InventoryBridge()
    costing = costing or SqlProductCosting()

    def _apply(order: ProductionOrder, target: OrderStatus) -> None:
        bom = _require_bom(order, require_active=True)
        requirements = bom_service.explode_bom(bom, Decimal(order.quantity))

        bridge.lock_stock((req.product_id, req.unit_id) for req in requirements)

        shortfalls = _collect_shortfalls(requirements, bridge)
        if shortfalls:
            current_app.logger.warning(
                "Manufacturing: order %s blocked by %s shortfall(s)", order.code, len(shortfalls)
            )
            raise InsufficientStockError(order.code, shortfalls)

        for req in requirements:
            cost = costing.get_cogs(req.product_id, req.unit_id)
            bridge.consume(
                order.id,
                req.product_id,
                req.unit_id,
                req.required,
                cost,
                author_id=author_id,
                order_code=order.code,
            )

        order.status = target
        order.started_at = utcnow()

        current_app.logger.info(
            "Manufacturing: order %s started, %s component(s) consumed by user %s",
            order.code, len(requirements), author_id,
        )

    return _run_transition(order_id, ACTION_START, _apply)


def complete_order(
    order_id: int,
    *,
    author_id: int,
    bridge: InventoryBridge | None = None,
    costing: ProductCosting | None = None,
) -> ProductionOrder:
    """
    in_progress -> completed, producing the output at today's unit cost.

    Draft/planned orders are started first, in their own transaction. If the
    completion then fails the order stays in_progress.
    """
    bridge = bridge or InventoryBridge()
    costing = costing or SqlProductCosting()

    order = get_order(order_id)
    if order.status in (OrderStatus.DRAFT, OrderStatus.PLANNED):
        try:
            start_order(order_id, author_id=author_id, bridge=bridge, costing=costing)
        except InvalidTransitionError as exc:
            # Someone else started it between our read and the lock
            if exc.current_status != OrderStatus.IN_PROGRESS:
                raise

    def _apply(order: ProductionOrder, target: OrderStatus) -> None:
        bom = _require_bom(order, require_active=False)
        unit_cost = bom_service.calculate_unit_cost(bom, costing=costing)
        produced = (Decimal(order.quantity) * Decimal(bom.output_quantity)).quantize(QUANTITY_PLACES)

        bridge.produce(
            order.id,
            order.output_product_id,
            order.output_unit_id,
            produced,
            unit_cost,
            author_id=author_id,
            order_code=order.code,
        )

        order.status = target
        order.completed_at = utcnow()

        current_app.logger.info(
            "Manufacturing: order %s completed, produced %s at unit cost %s",
            order.code, produced, unit_cost,
        )

    return _run_transition(order_id, ACTION_COMPLETE, _apply)


def _set_status(label: str, author_id: int):
    def _apply(order: ProductionOrder, target: OrderStatus) -> None:
        order.status = target
        current_app.logger.info("Manufacturing: order %s %s by user %s", order.code, label, author_id)
    return _apply


def cancel_order(order_id: int, *, author_id: int) -> ProductionOrder:
    """draft/planned/on_hold -> cancelled. Never creates stock movements."""
    return _run_transition(order_id, ACTION_CANCEL, _set_status("cancelled", author_id))


def hold_order(order_id: int, *, author_id: int) -> ProductionOrder:
    return _run_transition(order_id, ACTION_HOLD, _set_status("put on hold", author_id))


def release_order(order_id: int, *, author_id: int) -> ProductionOrder:
    return _run_transition(order_id, ACTION_RELEASE, _set_status("released", author_id))
