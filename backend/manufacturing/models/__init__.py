from .catalog import Unit, Product, ProductUnitQuantity, ProductHistory
from .manufacturing import (
    OrderStatus,
    MovementType,
    BillOfMaterials,
    BomItem,
    ProductionOrder,
    StockMovement,
)

__all__ = [
    'Unit', 'Product', 'ProductUnitQuantity', 'ProductHistory',
    'OrderStatus', 'MovementType',
    'BillOfMaterials', 'BomItem', 'ProductionOrder', 'StockMovement',
]
