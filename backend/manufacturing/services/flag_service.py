# Overview: Manufacturing role flags (manufactured / raw material) on product unit balances.

"""
Flag rules:
- A flagged balance is manufactured, a raw material, or both. Setting both
  flags to False goes through clear_flags, never set_flags.
- Flags cannot change while the (product, unit) is a component of an active,
  non-deleted BOM. Update or deactivate those BOMs first.
- Production candidates are manufactured balances; component candidates are
  balances carrying either flag.
"""

from __future__ import annotations

from typing import Iterable

from ..extensions import db
from ..models import BillOfMaterials, BomItem, ProductUnitQuantity
from ..validation import ConflictError, ValidationError, require_int


class BalanceNotFoundError(LookupError):
    pass


def get_balance_by_id(balance_id: int) -> ProductUnitQuantity:
    balance = db.session.get(ProductUnitQuantity, require_int(balance_id, "product_unit_id"))
    if balance is None:
        raise BalanceNotFoundError(f"Product unit {balance_id} not found")
    return balance


def used_in_active_boms(balance: ProductUnitQuantity) -> bool:
    q = (
        db.session.query(BomItem.id)
        .join(BillOfMaterials, BillOfMaterials.id == BomItem.bom_id)
        .filter(
            BomItem.component_product_id == balance.product_id,
            BillOfMaterials.is_active.is_(True),
            BillOfMaterials.deleted_at.is_(None),
        )
    )
    if balance.unit_id is None:
        q = q.filter(BomItem.component_unit_id.is_(None))
    else:
        q = q.filter(BomItem.component_unit_id == balance.unit_id)
    return q.first() is not None


def _ensure_not_in_use(balance: ProductUnitQuantity) -> None:
    if used_in_active_boms(balance):
        raise ConflictError(
            f"Product unit {balance.id} is currently used in active BOMs. Please update the BOMs first."
        )


def _require_one_flag(is_manufactured: bool, is_raw_material: bool) -> None:
    if not is_manufactured and not is_raw_material:
        raise ValidationError("At least one manufacturing flag must be true (is_manufactured or is_raw_material)")


def set_flags(balance_id: int, *, is_manufactured: bool, is_raw_material: bool) -> ProductUnitQuantity:
    _require_one_flag(is_manufactured, is_raw_material)
    balance = get_balance_by_id(balance_id)
    _ensure_not_in_use(balance)

    balance.is_manufactured = bool(is_manufactured)
    balance.is_raw_material = bool(is_raw_material)
    db.session.flush()
    return balance


def bulk_set_flags(balance_ids: Iterable[int], *, is_manufactured: bool, is_raw_material: bool) -> int:
    """All-or-nothing: every balance is checked before any is changed."""
    _require_one_flag(is_manufactured, is_raw_material)
    balances = [get_balance_by_id(balance_id) for balance_id in balance_ids]
    for balance in balances:
        _ensure_not_in_use(balance)

    for balance in balances:
        balance.is_manufactured = bool(is_manufactured)
        balance.is_raw_material = bool(is_raw_material)
    db.session.flush()
    return len(balances)


def clear_flags(balance_id: int) -> ProductUnitQuantity:
    balance = get_balance_by_id(balance_id)
    _ensure_not_in_use(balance)

    balance.is_manufactured = False
    balance.is_raw_material = False
    db.session.flush()
    return balance


def production_units() -> list[ProductUnitQuantity]:
    return (
        db.session.query(ProductUnitQuantity)
        .filter(ProductUnitQuantity.is_manufactured.is_(True))
        .order_by(ProductUnitQuantity.id)
        .all()
    )


def component_units() -> list[ProductUnitQuantity]:
    return (
        db.session.query(ProductUnitQuantity)
        .filter(
            db.or_(
                ProductUnitQuantity.is_raw_material.is_(True),
                ProductUnitQuantity.is_manufactured.is_(True),
            )
        )
        .order_by(ProductUnitQuantity.id)
        .all()
    )


def raw_material_units() -> list[ProductUnitQuantity]:
    return (
        db.session.query(ProductUnitQuantity)
        .filter(ProductUnitQuantity.is_raw_material.is_(True))
        .order_by(ProductUnitQuantity.id)
        .all()
    )


def can_be_used_for_production(balance_id: int) -> bool:
    balance = db.session.get(ProductUnitQuantity, balance_id)
    return bool(balance and balance.is_manufactured)


def can_be_used_as_component(balance_id: int) -> bool:
    balance = db.session.get(ProductUnitQuantity, balance_id)
    return bool(balance and (balance.is_manufactured or balance.is_raw_material))
