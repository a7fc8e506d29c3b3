# Overview: Stock ledger and product costing collaborators backing the inventory bridge.

"""
Stock Ledger Invariants (authoritative)

Balance model:
- One ProductUnitQuantity row per (product_id, unit_id) holds the on-hand
  quantity and the per-unit COGS.
- A missing balance row means zero stock and zero cost.

Business invariants:
- On-hand quantity may never go negative.
- Every adjustment appends exactly one ProductHistory row (before/after
  quantities, unit and total price, author, originating order).
- Adjustments run inside the caller's transaction: this module flushes,
  it never commits or rolls back.

Locking:
- lock_balances() takes row locks in (product_id, unit_id) order so two
  transactions locking overlapping sets cannot deadlock on lock order.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Optional, Protocol, Tuple

from ..extensions import db
from ..models import ProductUnitQuantity, ProductHistory
from .concurrency import lock_for_update


ACTION_MANUFACTURING_CONSUME = "manufacturing_consume"
ACTION_MANUFACTURING_PRODUCE = "manufacturing_produce"
ACTION_ADDED = "added"
ACTION_REMOVED = "removed"

INCREASE_ACTIONS = {ACTION_MANUFACTURING_PRODUCE, ACTION_ADDED}
DECREASE_ACTIONS = {ACTION_MANUFACTURING_CONSUME, ACTION_REMOVED}

ZERO = Decimal("0")

BalanceKey = Tuple[int, Optional[int]]


class StockLedgerError(Exception):
    """Raised when the ledger refuses an adjustment (unknown action, negative stock)."""
    pass


class StockLedger(Protocol):
    def get_quantity(self, product_id: int, unit_id: int | None) -> Decimal: ...

    def lock_balances(self, keys: Iterable[BalanceKey]) -> None: ...

    def adjust_stock(
        self,
        action: str,
        *,
        product_id: int,
        unit_id: int | None,
        quantity: Decimal,
        unit_price: Decimal,
        author_id: int,
        description: str | None = None,
        order_id: int | None = None,
    ): ...


class ProductCosting(Protocol):
    def get_cogs(self, product_id: int, unit_id: int | None) -> Decimal: ...


def _sort_key(key: BalanceKey):
    product_id, unit_id = key
    # None units sort first
    return (product_id, -1 if unit_id is None else unit_id)


def _balance_query(product_id: int, unit_id: int | None):
    query = db.session.query(ProductUnitQuantity).filter(ProductUnitQuantity.product_id == product_id)
    if unit_id is None:
        return query.filter(ProductUnitQuantity.unit_id.is_(None))
    return query.filter(ProductUnitQuantity.unit_id == unit_id)


def get_balance(product_id: int, unit_id: int | None, *, lock: bool = False) -> ProductUnitQuantity | None:
    query = _balance_query(product_id, unit_id)
    if lock:
        query = lock_for_update(query)
    return query.first()


class SqlStockLedger:
    """Stock ledger on the product_unit_quantities / product_histories tables."""

    def get_quantity(self, product_id: int, unit_id: int | None) -> Decimal:
        balance = get_balance(product_id, unit_id)
        if balance is None:
            return ZERO
        return Decimal(balance.quantity)

    def lock_balances(self, keys: Iterable[BalanceKey]) -> None:
        for product_id, unit_id in sorted(set(keys), key=_sort_key):
            get_balance(product_id, unit_id, lock=True)

    def adjust_stock(
        self,
        action: str,
        *,
        product_id: int,
        unit_id: int | None,
        quantity: Decimal,
        unit_price: Decimal,
        author_id: int,
        description: str | None = None,
        order_id: int | None = None,
    ) -> ProductHistory:
        """
        Increase or decrease on-hand stock and record the audit row.

        quantity is always positive; the action decides the direction.
        """
        if action not in INCREASE_ACTIONS and action not in DECREASE_ACTIONS:
            raise StockLedgerError(f"Unknown stock action '{action}'")

        quantity = Decimal(quantity)
        if quantity <= 0:
            raise StockLedgerError(f"Stock adjustment quantity must be positive, got {quantity}")

        balance = get_balance(product_id, unit_id, lock=True)
        if balance is None:
            if action in DECREASE_ACTIONS:
                raise StockLedgerError(
                    f"No stock recorded for product {product_id} (unit {unit_id})"
                )
            balance = ProductUnitQuantity(
                product_id=product_id,
                unit_id=unit_id,
                quantity=ZERO,
                cogs=ZERO,
            )
            db.session.add(balance)
            db.session.flush()

        before = Decimal(balance.quantity)
        if action in DECREASE_ACTIONS:
            after = before - quantity
            if after < 0:
                raise StockLedgerError(
                    f"Insufficient stock for product {product_id} (unit {unit_id}). "
                    f"On-hand: {before}, requested: {quantity}"
                )
        else:
            after = before + quantity

        balance.quantity = after

        unit_price = Decimal(unit_price or 0)
        history = ProductHistory(
            product_id=product_id,
            unit_id=unit_id,
            action=action,
            quantity=quantity,
            before_quantity=before,
            after_quantity=after,
            unit_price=unit_price,
            total_price=unit_price * quantity,
            author_id=author_id,
            description=description,
            order_id=order_id,
        )
        db.session.add(history)
        db.session.flush()
        return history


class SqlProductCosting:
    """COGS lookup on the balance rows; always reads the current value."""

    def get_cogs(self, product_id: int, unit_id: int | None) -> Decimal:
        balance = get_balance(product_id, unit_id)
        if balance is None:
            return ZERO
        return Decimal(balance.cogs)


def set_cogs(product_id: int, unit_id: int | None, cogs: Decimal) -> ProductUnitQuantity:
    """Record a new per-unit cost for a product/unit pair (flushes only)."""
    balance = get_balance(product_id, unit_id, lock=True)
    if balance is None:
        balance = ProductUnitQuantity(product_id=product_id, unit_id=unit_id, quantity=ZERO, cogs=cogs)
        db.session.add(balance)
    else:
        balance.cogs = cogs
    db.session.flush()
    return balance
