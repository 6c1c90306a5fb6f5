from .catalog import Product
from .inventory import InventoryMovement, InventoryLot, LotAllocation, WriteOff
from .orders import Order, OrderItem, OrderCounter
from .documents import Purchase, PurchaseItem, Shipment, ShipmentLine

__all__ = [
    'Product',
    'InventoryMovement', 'InventoryLot', 'LotAllocation', 'WriteOff',
    'Order', 'OrderItem', 'OrderCounter',
    'Purchase', 'PurchaseItem', 'Shipment', 'ShipmentLine',
]
