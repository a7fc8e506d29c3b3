# Overview: Service-layer operations for bills of materials: dependency graph validation, cost estimation, CRUD.

"""
BOM Invariants (authoritative)

Dependency graph:
- "BOM B produces product P" and "BOM B requires product C" form a directed
  graph P -> C over products.
- A BOM's output product must never be reachable from one of its own
  components. Attaching a component is refused when the component already
  (transitively) requires the BOM's output.
- Soft-deleted BOMs are not part of the graph. Inactive BOMs are: they can
  be reactivated at any time.

Cost:
- Estimated cost of one BOM run = sum(item.quantity * current COGS of the
  component). It is recomputed on every call, never cached on the BOM, so
  price drift between order creation and completion is visible.
- waste_percent and cost_allocation_percent are stored for reporting only;
  they scale neither consumption nor cost.

Transactions:
- Functions here flush; the caller (route, CLI, test) commits.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal

from ..extensions import db
from ..models import BillOfMaterials, BomItem, Product, ProductionOrder, Unit
from ..time_utils import utcnow
from ..validation import (
    QUANTITY_PLACES,
    ValidationError,
    parse_percent,
    optional_int,
    parse_positive_quantity,
    require_int,
)
from .stock_ledger_service import ProductCosting, SqlProductCosting


ZERO = Decimal("0")


class BomError(Exception):
    """Raised when a BOM operation violates a business rule."""
    pass


class BomNotFoundError(BomError, LookupError):
    pass


class CircularDependencyError(BomError):
    """The component would make the BOM (transitively) require its own output."""

    def __init__(self, bom_id: int, product_id: int, message: str | None = None):
        self.bom_id = bom_id
        self.product_id = product_id
        super().__init__(
            message
            or f"Circular dependency detected: product {product_id} cannot be added "
               f"as a component to BOM {bom_id}"
        )


@dataclass(frozen=True)
class Requirement:
    """What one BOM item needs for a number of runs."""
    item_id: int
    product_id: int
    product_name: str
    unit_id: int | None
    unit_name: str
    quantity_per_run: Decimal
    required: Decimal

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "unit_id": self.unit_id,
            "unit_name": self.unit_name,
            "quantity_per_run": str(self.quantity_per_run),
            "required": str(self.required),
        }


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

def get_bom(bom_id: int, *, include_deleted: bool = False) -> BillOfMaterials:
    bom = db.session.get(BillOfMaterials, bom_id)
    if bom is None or (bom.deleted_at is not None and not include_deleted):
        raise BomNotFoundError(f"BOM {bom_id} not found")
    return bom


def get_bom_item(item_id: int) -> BomItem:
    item = db.session.get(BomItem, item_id)
    if item is None:
        raise BomNotFoundError(f"BOM item {item_id} not found")
    return item


def product_name(product_id: int) -> str:
    product = db.session.get(Product, product_id)
    return product.name if product else "Unknown Product"


def unit_name(unit_id: int | None) -> str:
    if unit_id is None:
        return "Unknown Unit"
    unit = db.session.get(Unit, unit_id)
    return unit.name if unit else "Unknown Unit"


def _require_product(product_id, field: str) -> Product:
    product = db.session.get(Product, product_id) if product_id is not None else None
    if product is None:
        raise ValidationError(f"{field}: product {product_id} not found")
    return product


def _require_unit(unit_id, field: str) -> None:
    if unit_id is not None and db.session.get(Unit, unit_id) is None:
        raise ValidationError(f"{field}: unit {unit_id} not found")


# ---------------------------------------------------------------------------
# Dependency graph
# ---------------------------------------------------------------------------

def build_dependency_graph(*, exclude_bom_id: int | None = None) -> dict[int, set[int]]:
    """
    Adjacency map product -> component products, across every live BOM.

    A product produced by several BOMs gets the union of their components.
    """
    q = (
        db.session.query(BillOfMaterials.output_product_id, BomItem.component_product_id)
        .join(BomItem, BomItem.bom_id == BillOfMaterials.id)
        .filter(BillOfMaterials.deleted_at.is_(None))
    )
    if exclude_bom_id is not None:
        q = q.filter(BillOfMaterials.id != exclude_bom_id)

    graph: dict[int, set[int]] = defaultdict(set)
    for output_product_id, component_product_id in q.all():
        graph[output_product_id].add(component_product_id)
    return graph


def requires_product(start_product_id: int, target_product_id: int, graph: dict[int, set[int]]) -> bool:
    """
    True when making start_product_id (transitively) consumes target_product_id.

    Iterative depth-first walk with an explicit stack. Each product is
    expanded at most once, which bounds the walk on deep or wide graphs and
    guarantees termination when the graph already contains cycles. Skipping
    a visited product never hides a path: it is already queued or expanded.
    """
    if start_product_id == target_product_id:
        return True

    visited = {start_product_id}
    stack = [start_product_id]
    while stack:
        current = stack.pop()
        for component_id in graph.get(current, ()):
            if component_id == target_product_id:
                return True
            if component_id not in visited:
                visited.add(component_id)
                stack.append(component_id)
    return False


def validate_circular_dependency(bom_id: int, candidate_product_id: int) -> bool:
    """
    Check whether candidate_product_id may be attached to BOM bom_id.

    Returns True when safe. Unknown (or soft-deleted) BOMs are safe: there is
    no output product to protect.
    """
    candidate_product_id = require_int(candidate_product_id, "product_id")
    bom = db.session.get(BillOfMaterials, bom_id)
    if bom is None or bom.deleted_at is not None:
        return True

    output_product_id = bom.output_product_id
    if candidate_product_id == output_product_id:
        return False

    graph = build_dependency_graph()
    return not requires_product(candidate_product_id, output_product_id, graph)


def find_cycles() -> list[dict]:
    """
    Report every live BOM whose output is reachable from one of its components.

    Used to audit data written before validation existed (or imported).
    """
    graph = build_dependency_graph()
    boms = (
        db.session.query(BillOfMaterials)
        .filter(BillOfMaterials.deleted_at.is_(None))
        .order_by(BillOfMaterials.id)
        .all()
    )
    cycles = []
    for bom in boms:
        for item in bom.items:
            if requires_product(item.component_product_id, bom.output_product_id, graph):
                cycles.append({
                    "bom_id": bom.id,
                    "bom_name": bom.name,
                    "output_product_id": bom.output_product_id,
                    "component_product_id": item.component_product_id,
                })
    return cycles


# ---------------------------------------------------------------------------
# Cost estimation
# ---------------------------------------------------------------------------

def calculate_estimated_cost(bom: BillOfMaterials, *, costing: ProductCosting | None = None) -> Decimal:
    """Cost of one BOM run at today's component COGS."""
    costing = costing or SqlProductCosting()
    total = ZERO
    for item in bom.items:
        cogs = Decimal(costing.get_cogs(item.component_product_id, item.component_unit_id))
        total += Decimal(item.quantity) * cogs
    return total


def calculate_unit_cost(bom: BillOfMaterials, *, costing: ProductCosting | None = None) -> Decimal:
    """Cost of one output unit: run cost spread over the BOM's output quantity."""
    output_quantity = Decimal(bom.output_quantity)
    if output_quantity <= 0:
        raise BomError(f"BOM '{bom.name}' has a non-positive output quantity")
    return (calculate_estimated_cost(bom, costing=costing) / output_quantity).quantize(QUANTITY_PLACES)


def explode_bom(bom: BillOfMaterials, runs: Decimal = Decimal("1")) -> list[Requirement]:
    """Per-item component requirements for `runs` executions of the BOM."""
    runs = Decimal(runs)
    return [
        Requirement(
            item_id=item.id,
            product_id=item.component_product_id,
            product_name=product_name(item.component_product_id),
            unit_id=item.component_unit_id,
            unit_name=unit_name(item.component_unit_id),
            quantity_per_run=Decimal(item.quantity),
            required=(Decimal(item.quantity) * runs).quantize(QUANTITY_PLACES),
        )
        for item in bom.items
    ]


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------

def create_bom(
    *,
    name: str,
    output_product_id: int,
    author_id: int,
    output_unit_id: int | None = None,
    output_quantity=Decimal("1"),
    is_active: bool = True,
    description: str | None = None,
) -> BillOfMaterials:
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required")
    output_product_id = require_int(output_product_id, "output_product_id")
    output_unit_id = optional_int(output_unit_id, "output_unit_id")
    _require_product(output_product_id, "output_product_id")
    _require_unit(output_unit_id, "output_unit_id")

    bom = BillOfMaterials(
        name=name,
        output_product_id=output_product_id,
        output_unit_id=output_unit_id,
        output_quantity=parse_positive_quantity(output_quantity, "output_quantity"),
        is_active=bool(is_active),
        description=description,
        author_id=author_id,
    )
    db.session.add(bom)
    db.session.flush()
    return bom


_BOM_FIELDS = {"name", "output_product_id", "output_unit_id", "output_quantity", "is_active", "description"}


def update_bom(bom_id: int, *, author_id: int, **changes) -> BillOfMaterials:
    """
    Patch a BOM.

    Changing the output product re-checks every existing item against the
    graph as it will be after the change.
    """
    unknown = set(changes) - _BOM_FIELDS
    if unknown:
        raise ValidationError(f"Unknown BOM fields: {', '.join(sorted(unknown))}")

    bom = get_bom(bom_id)

    if "name" in changes:
        name = (changes["name"] or "").strip()
        if not name:
            raise ValidationError("name is required")
        bom.name = name

    new_output = bom.output_product_id
    if "output_product_id" in changes:
        new_output = require_int(changes["output_product_id"], "output_product_id")
    if new_output != bom.output_product_id:
        _require_product(new_output, "output_product_id")
        graph = build_dependency_graph(exclude_bom_id=bom.id)
        graph[new_output] = graph[new_output] | {item.component_product_id for item in bom.items}
        for item in bom.items:
            if requires_product(item.component_product_id, new_output, graph):
                raise CircularDependencyError(
                    bom.id,
                    item.component_product_id,
                    f"Circular dependency detected: BOM {bom.id} cannot produce product "
                    f"{new_output} while component {item.component_product_id} requires it",
                )
        bom.output_product_id = new_output

    if "output_unit_id" in changes:
        output_unit_id = optional_int(changes["output_unit_id"], "output_unit_id")
        _require_unit(output_unit_id, "output_unit_id")
        bom.output_unit_id = output_unit_id
    if "output_quantity" in changes:
        bom.output_quantity = parse_positive_quantity(changes["output_quantity"], "output_quantity")
    if "is_active" in changes:
        bom.is_active = bool(changes["is_active"])
    if "description" in changes:
        bom.description = changes["description"]

    bom.author_id = author_id
    db.session.flush()
    return bom


def soft_delete_bom(bom_id: int) -> BillOfMaterials:
    bom = get_bom(bom_id)
    bom.deleted_at = utcnow()
    bom.is_active = False
    db.session.flush()
    return bom


def delete_bom(bom_id: int) -> None:
    """Hard delete a BOM and its items. Refused while orders reference it."""
    bom = get_bom(bom_id, include_deleted=True)
    in_use = (
        db.session.query(ProductionOrder.id)
        .filter(ProductionOrder.bom_id == bom.id)
        .first()
    )
    if in_use:
        raise BomError(f"BOM '{bom.name}' is referenced by production orders; soft delete it instead")
    db.session.delete(bom)
    db.session.flush()


def add_bom_item(
    bom_id: int,
    *,
    component_product_id: int,
    quantity,
    author_id: int,
    component_unit_id: int | None = None,
    waste_percent=None,
    cost_allocation_percent=None,
) -> BomItem:
    bom = get_bom(bom_id)
    component_product_id = require_int(component_product_id, "component_product_id")
    component_unit_id = optional_int(component_unit_id, "component_unit_id")
    _require_product(component_product_id, "component_product_id")
    _require_unit(component_unit_id, "component_unit_id")

    item = BomItem(
        bom_id=bom.id,
        component_product_id=component_product_id,
        component_unit_id=component_unit_id,
        quantity=parse_positive_quantity(quantity),
        waste_percent=parse_percent(waste_percent, "waste_percent", default=ZERO),
        cost_allocation_percent=parse_percent(
            cost_allocation_percent, "cost_allocation_percent", default=Decimal("100"), maximum=None
        ),
        author_id=author_id,
    )

    if not validate_circular_dependency(bom.id, component_product_id):
        raise CircularDependencyError(bom.id, component_product_id)

    bom.items.append(item)
    db.session.flush()
    return item


_ITEM_FIELDS = {"component_product_id", "component_unit_id", "quantity", "waste_percent", "cost_allocation_percent"}


def update_bom_item(item_id: int, *, author_id: int, **changes) -> BomItem:
    unknown = set(changes) - _ITEM_FIELDS
    if unknown:
        raise ValidationError(f"Unknown BOM item fields: {', '.join(sorted(unknown))}")

    item = get_bom_item(item_id)

    if "component_product_id" in changes:
        component_product_id = require_int(changes["component_product_id"], "component_product_id")
        _require_product(component_product_id, "component_product_id")
        if not validate_circular_dependency(item.bom_id, component_product_id):
            raise CircularDependencyError(item.bom_id, component_product_id)
        item.component_product_id = component_product_id
    if "component_unit_id" in changes:
        component_unit_id = optional_int(changes["component_unit_id"], "component_unit_id")
        _require_unit(component_unit_id, "component_unit_id")
        item.component_unit_id = component_unit_id
    if "quantity" in changes:
        item.quantity = parse_positive_quantity(changes["quantity"])
    if "waste_percent" in changes:
        item.waste_percent = parse_percent(changes["waste_percent"], "waste_percent", default=ZERO)
    if "cost_allocation_percent" in changes:
        item.cost_allocation_percent = parse_percent(
            changes["cost_allocation_percent"], "cost_allocation_percent", default=Decimal("100"), maximum=None
        )

    item.author_id = author_id
    db.session.flush()
    return item


def remove_bom_item(item_id: int) -> None:
    item = get_bom_item(item_id)
    bom = item.bom
    bom.items.remove(item)
    db.session.flush()
