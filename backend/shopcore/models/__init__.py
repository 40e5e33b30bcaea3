from .inventory import Product, StockMovement
from .orders import Order, OrderItem
from .purchasing import Supplier, PurchaseOrder, PurchaseOrderItem
from .documents import DocumentSequence, AuditEvent

__all__ = [
    'Product', 'StockMovement',
    'Order', 'OrderItem',
    'Supplier', 'PurchaseOrder', 'PurchaseOrderItem',
    'DocumentSequence', 'AuditEvent',
]
