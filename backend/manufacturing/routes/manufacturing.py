# Overview: Flask API routes for BOMs and production orders; parses input and returns JSON responses.

# backend/manufacturing/routes/manufacturing.py
"""
Manufacturing API routes.

Thin transport layer: every route parses input, calls one service function,
commits (CRUD) or lets the production service commit (transitions), and
maps domain errors to HTTP status codes.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_actor
from ..services import analytics_service, bom_service, flag_service, production_service
from ..services.analytics_service import ReportError
from ..services.bom_service import BomError, BomNotFoundError, CircularDependencyError
from ..services.concurrency import atomic
from ..services.flag_service import BalanceNotFoundError
from ..services.production_service import (
    InsufficientStockError,
    InvalidTransitionError,
    OrderNotFoundError,
    PersistenceFailureError,
    ProductionError,
)
from ..time_utils import parse_report_bound
from ..validation import (
    ConflictError,
    ValidationError,
    decimal_str,
    optional_int,
    parse_positive_quantity,
    require_int,
)


manufacturing_bp = Blueprint("manufacturing", __name__, url_prefix="/api/manufacturing")


def _error_response(exc: Exception):
    """Map a domain error to (body, status). Returns None for unexpected errors."""
    if isinstance(exc, ValidationError):
        return jsonify({"error": str(exc)}), 400
    if isinstance(exc, ReportError):
        return jsonify({"error": str(exc)}), 400
    if isinstance(exc, (BomNotFoundError, OrderNotFoundError, BalanceNotFoundError)):
        return jsonify({"error": str(exc)}), 404
    if isinstance(exc, InsufficientStockError):
        return jsonify({
            "error": str(exc),
            "order_code": exc.order_code,
            "shortfalls": [s.to_dict() for s in exc.shortfalls],
        }), 409
    if isinstance(exc, InvalidTransitionError):
        return jsonify({
            "error": str(exc),
            "order_code": exc.order_code,
            "current_status": exc.current_status.value,
        }), 409
    if isinstance(exc, PersistenceFailureError):
        return jsonify({"error": str(exc), "order_code": exc.order_code}), 500
    if isinstance(exc, ProductionError):
        return jsonify({"error": str(exc), "order_code": exc.order_code}), 409
    if isinstance(exc, CircularDependencyError):
        return jsonify({"error": str(exc), "bom_id": exc.bom_id, "product_id": exc.product_id}), 409
    if isinstance(exc, (BomError, ConflictError)):
        return jsonify({"error": str(exc)}), 409
    return None


def _fail(exc: Exception, message: str):
    response = _error_response(exc)
    if response is not None:
        return response
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("JSON object body required")
    return data


def _required(data: dict, key: str):
    if data.get(key) is None:
        raise ValidationError(f"Missing required field: {key}")
    return data[key]


# ---------------------------------------------------------------------------
# Bills of materials
# ---------------------------------------------------------------------------

@manufacturing_bp.post("/boms")
@require_actor
def create_bom_route():
    try:
        data = _json_body()
        with atomic():
            bom = bom_service.create_bom(
                name=_required(data, "name"),
                output_product_id=require_int(_required(data, "output_product_id"), "output_product_id"),
                output_unit_id=optional_int(data.get("output_unit_id"), "output_unit_id"),
                output_quantity=data.get("output_quantity", "1"),
                is_active=data.get("is_active", True),
                description=data.get("description"),
                author_id=g.actor_id,
            )
        return jsonify({"bom": bom.to_dict(include_items=True)}), 201
    except Exception as e:
        return _fail(e, "Failed to create BOM")


@manufacturing_bp.get("/boms/<int:bom_id>")
@require_actor
def get_bom_route(bom_id: int):
    try:
        bom = bom_service.get_bom(bom_id)
        return jsonify({"bom": bom.to_dict(include_items=True)}), 200
    except Exception as e:
        return _fail(e, "Failed to load BOM")


@manufacturing_bp.patch("/boms/<int:bom_id>")
@require_actor
def update_bom_route(bom_id: int):
    try:
        data = _json_body()
        with atomic():
            bom = bom_service.update_bom(bom_id, author_id=g.actor_id, **data)
        return jsonify({"bom": bom.to_dict(include_items=True)}), 200
    except Exception as e:
        return _fail(e, "Failed to update BOM")


@manufacturing_bp.delete("/boms/<int:bom_id>")
@require_actor
def delete_bom_route(bom_id: int):
    try:
        with atomic():
            bom = bom_service.soft_delete_bom(bom_id)
        return jsonify({"bom": bom.to_dict()}), 200
    except Exception as e:
        return _fail(e, "Failed to delete BOM")


@manufacturing_bp.post("/boms/<int:bom_id>/items")
@require_actor
def add_bom_item_route(bom_id: int):
    """
    Attach a component. 409 when the component would create a production
    cycle (it already requires this BOM's output, directly or not).
    """
    try:
        data = _json_body()
        with atomic():
            item = bom_service.add_bom_item(
                bom_id,
                component_product_id=require_int(
                    _required(data, "component_product_id"), "component_product_id"
                ),
                component_unit_id=optional_int(data.get("component_unit_id"), "component_unit_id"),
                quantity=_required(data, "quantity"),
                waste_percent=data.get("waste_percent"),
                cost_allocation_percent=data.get("cost_allocation_percent"),
                author_id=g.actor_id,
            )
        return jsonify({"item": item.to_dict()}), 201
    except Exception as e:
        return _fail(e, "Failed to add BOM item")


@manufacturing_bp.patch("/bom-items/<int:item_id>")
@require_actor
def update_bom_item_route(item_id: int):
    try:
        data = _json_body()
        with atomic():
            item = bom_service.update_bom_item(item_id, author_id=g.actor_id, **data)
        return jsonify({"item": item.to_dict()}), 200
    except Exception as e:
        return _fail(e, "Failed to update BOM item")


@manufacturing_bp.delete("/bom-items/<int:item_id>")
@require_actor
def remove_bom_item_route(item_id: int):
    try:
        with atomic():
            bom_service.remove_bom_item(item_id)
        return jsonify({"deleted": item_id}), 200
    except Exception as e:
        return _fail(e, "Failed to remove BOM item")


@manufacturing_bp.get("/boms/<int:bom_id>/validate-component")
@require_actor
def validate_component_route(bom_id: int):
    try:
        product_id = require_int(request.args.get("product_id"), "product_id")
        valid = bom_service.validate_circular_dependency(bom_id, product_id)
        return jsonify({"bom_id": bom_id, "product_id": product_id, "valid": valid}), 200
    except Exception as e:
        return _fail(e, "Failed to validate BOM component")


@manufacturing_bp.get("/boms/<int:bom_id>/cost")
@require_actor
def bom_cost_route(bom_id: int):
    try:
        bom = bom_service.get_bom(bom_id)
        return jsonify({
            "bom_id": bom.id,
            "estimated_cost": decimal_str(bom_service.calculate_estimated_cost(bom)),
            "unit_cost": decimal_str(bom_service.calculate_unit_cost(bom)),
        }), 200
    except Exception as e:
        return _fail(e, "Failed to estimate BOM cost")


@manufacturing_bp.get("/boms/<int:bom_id>/explode")
@require_actor
def explode_bom_route(bom_id: int):
    try:
        runs = parse_positive_quantity(request.args.get("runs", "1"), "runs")
        bom = bom_service.get_bom(bom_id)
        return jsonify({
            "bom": bom.to_dict(),
            "runs": str(runs),
            "requirements": [req.to_dict() for req in bom_service.explode_bom(bom, runs)],
        }), 200
    except Exception as e:
        return _fail(e, "Failed to explode BOM")


@manufacturing_bp.get("/boms/<int:bom_id>/usage")
@require_actor
def bom_usage_route(bom_id: int):
    try:
        return jsonify(analytics_service.get_bom_usage(bom_id)), 200
    except Exception as e:
        return _fail(e, "Failed to load BOM usage")


# ---------------------------------------------------------------------------
# Production orders
# ---------------------------------------------------------------------------

def _order_payload(order) -> dict:
    return {
        "order": order.to_dict(),
        "allowed_actions": production_service.allowed_actions(order.status),
        "movements": [m.to_dict() for m in production_service.get_order_movements(order.id)],
    }


@manufacturing_bp.post("/orders")
@require_actor
def create_order_route():
    try:
        data = _json_body()
        with atomic():
            order = production_service.create_order(
                bom_id=optional_int(data.get("bom_id"), "bom_id"),
                quantity=_required(data, "quantity"),
                code=data.get("code"),
                status=data.get("status") or "planned",
                output_product_id=optional_int(data.get("output_product_id"), "output_product_id"),
                output_unit_id=optional_int(data.get("output_unit_id"), "output_unit_id"),
                author_id=g.actor_id,
            )
        return jsonify(_order_payload(order)), 201
    except Exception as e:
        return _fail(e, "Failed to create production order")


@manufacturing_bp.get("/orders/<int:order_id>")
@require_actor
def get_order_route(order_id: int):
    try:
        order = production_service.get_order(order_id)
        return jsonify(_order_payload(order)), 200
    except Exception as e:
        return _fail(e, "Failed to load production order")


@manufacturing_bp.patch("/orders/<int:order_id>")
@require_actor
def update_order_route(order_id: int):
    try:
        data = _json_body()
        with atomic():
            order = production_service.update_order(order_id, author_id=g.actor_id, **data)
        return jsonify(_order_payload(order)), 200
    except Exception as e:
        return _fail(e, "Failed to update production order")


@manufacturing_bp.delete("/orders/<int:order_id>")
@require_actor
def delete_order_route(order_id: int):
    try:
        with atomic():
            order = production_service.soft_delete_order(order_id)
        return jsonify({"order": order.to_dict()}), 200
    except Exception as e:
        return _fail(e, "Failed to delete production order")


_ORDER_ACTIONS = {
    production_service.ACTION_START: production_service.start_order,
    production_service.ACTION_COMPLETE: production_service.complete_order,
    production_service.ACTION_CANCEL: production_service.cancel_order,
    production_service.ACTION_HOLD: production_service.hold_order,
    production_service.ACTION_RELEASE: production_service.release_order,
}


@manufacturing_bp.post("/orders/<int:order_id>/<action>")
@require_actor
def order_action_route(order_id: int, action: str):
    """
    Run one state machine transition. The production service owns the
    transaction; nothing to commit here.

    Returns:
        200: Transition applied
        404: Order not found
        409: Wrong status, missing/inactive BOM, or insufficient stock
        500: Storage failure (rolled back)
    """
    transition = _ORDER_ACTIONS.get(action)
    if transition is None:
        return jsonify({"error": f"Unknown action '{action}'"}), 404
    try:
        order = transition(order_id, author_id=g.actor_id)
        return jsonify(_order_payload(order)), 200
    except Exception as e:
        return _fail(e, f"Failed to {action} production order")


# ---------------------------------------------------------------------------
# Product unit flags
# ---------------------------------------------------------------------------

_UNIT_ROLES = {
    "production": flag_service.production_units,
    "component": flag_service.component_units,
    "raw_material": flag_service.raw_material_units,
}


def _flag(data: dict, key: str) -> bool:
    value = data.get(key, False)
    if not isinstance(value, bool):
        raise ValidationError(f"{key} must be true or false")
    return value


@manufacturing_bp.get("/product-units")
@require_actor
def list_product_units_route():
    try:
        role = request.args.get("role", "component")
        if role not in _UNIT_ROLES:
            raise ValidationError(f"role must be one of: {', '.join(sorted(_UNIT_ROLES))}")
        return jsonify({"data": [b.to_dict() for b in _UNIT_ROLES[role]()]}), 200
    except Exception as e:
        return _fail(e, "Failed to list product units")


@manufacturing_bp.put("/product-units/<int:balance_id>/flags")
@require_actor
def set_product_unit_flags_route(balance_id: int):
    """409 while the product unit is a component of an active BOM."""
    try:
        data = _json_body()
        with atomic():
            balance = flag_service.set_flags(
                balance_id,
                is_manufactured=_flag(data, "is_manufactured"),
                is_raw_material=_flag(data, "is_raw_material"),
            )
        return jsonify({"product_unit": balance.to_dict()}), 200
    except Exception as e:
        return _fail(e, "Failed to update product unit flags")


@manufacturing_bp.delete("/product-units/<int:balance_id>/flags")
@require_actor
def clear_product_unit_flags_route(balance_id: int):
    try:
        with atomic():
            balance = flag_service.clear_flags(balance_id)
        return jsonify({"product_unit": balance.to_dict()}), 200
    except Exception as e:
        return _fail(e, "Failed to clear product unit flags")


@manufacturing_bp.put("/product-units/flags")
@require_actor
def bulk_set_product_unit_flags_route():
    try:
        data = _json_body()
        ids = _required(data, "ids")
        if not isinstance(ids, list):
            raise ValidationError("ids must be a list")
        with atomic():
            updated = flag_service.bulk_set_flags(
                ids,
                is_manufactured=_flag(data, "is_manufactured"),
                is_raw_material=_flag(data, "is_raw_material"),
            )
        return jsonify({"updated": updated}), 200
    except Exception as e:
        return _fail(e, "Failed to update product unit flags")


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

def _report_range():
    try:
        from_dt = parse_report_bound(request.args.get("from"))
        to_dt = parse_report_bound(request.args.get("to"), end=True)
    except ValueError:
        raise ValidationError("from/to must be ISO-8601 dates")
    return from_dt, to_dt


@manufacturing_bp.get("/reports/summary")
@require_actor
def summary_report_route():
    try:
        from_dt, to_dt = _report_range()
        return jsonify(analytics_service.get_summary(from_dt, to_dt)), 200
    except Exception as e:
        return _fail(e, "Failed to build manufacturing summary")


@manufacturing_bp.get("/reports/consumption")
@require_actor
def consumption_report_route():
    try:
        from_dt, to_dt = _report_range()
        return jsonify({"data": analytics_service.get_consumption(from_dt, to_dt)}), 200
    except Exception as e:
        return _fail(e, "Failed to build consumption report")
