# Overview: Adapter between production orders and the stock ledger; records StockMovement audit rows.

from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from ..extensions import db
from ..models import MovementType, StockMovement
from .stock_ledger_service import (
    ACTION_MANUFACTURING_CONSUME,
    ACTION_MANUFACTURING_PRODUCE,
    BalanceKey,
    SqlStockLedger,
    StockLedger,
)


class InventoryBridge:
    """
    Translate consume/produce requests into stock ledger adjustments.

    Every ledger adjustment made here has exactly one StockMovement with the
    same quantity: negative for consumption, positive for production.

    The bridge never commits. It is meant to run inside the production
    service's transaction so a failure anywhere rolls back both the ledger
    and the movements.
    """

    def __init__(self, ledger: StockLedger | None = None):
        self.ledger = ledger or SqlStockLedger()

    def available_quantity(self, product_id: int, unit_id: int | None) -> Decimal:
        return Decimal(self.ledger.get_quantity(product_id, unit_id))

    def is_available(self, product_id: int, unit_id: int | None, quantity: Decimal) -> bool:
        return self.available_quantity(product_id, unit_id) >= Decimal(quantity)

    def lock_stock(self, keys: Iterable[BalanceKey]) -> None:
        """Serialize against other consumers of these balances until commit."""
        self.ledger.lock_balances(keys)

    def consume(
        self,
        order_id: int,
        product_id: int,
        unit_id: int | None,
        quantity: Decimal,
        cost_at_time: Decimal = Decimal("0"),
        *,
        author_id: int,
        order_code: str | None = None,
    ) -> StockMovement:
        quantity = Decimal(quantity)
        self.ledger.adjust_stock(
            ACTION_MANUFACTURING_CONSUME,
            product_id=product_id,
            unit_id=unit_id,
            quantity=quantity,
            unit_price=cost_at_time,
            author_id=author_id,
            description=f"Manufacturing Consumption (Order {order_code or '#' + str(order_id)})",
            order_id=order_id,
        )
        return self._record(order_id, product_id, unit_id, -quantity, MovementType.CONSUMPTION, cost_at_time)

    def produce(
        self,
        order_id: int,
        product_id: int,
        unit_id: int | None,
        quantity: Decimal,
        cost_at_time: Decimal = Decimal("0"),
        *,
        author_id: int,
        order_code: str | None = None,
    ) -> StockMovement:
        quantity = Decimal(quantity)
        self.ledger.adjust_stock(
            ACTION_MANUFACTURING_PRODUCE,
            product_id=product_id,
            unit_id=unit_id,
            quantity=quantity,
            unit_price=cost_at_time,
            author_id=author_id,
            description=f"Manufacturing Output (Order {order_code or '#' + str(order_id)})",
            order_id=order_id,
        )
        return self._record(order_id, product_id, unit_id, quantity, MovementType.PRODUCTION, cost_at_time)

    def _record(self, order_id, product_id, unit_id, signed_quantity, movement_type, cost_at_time) -> StockMovement:
        movement = StockMovement(
            order_id=order_id,
            product_id=product_id,
            unit_id=unit_id,
            quantity=signed_quantity,
            type=movement_type,
            cost_at_time=Decimal(cost_at_time or 0),
        )
        db.session.add(movement)
        db.session.flush()
        return movement
