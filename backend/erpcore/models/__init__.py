from .inventory import Product, StockLot, InventoryMovement, ProductBatch, MOVEMENT_TYPES
from .procurement import (
    Supplier,
    PurchaseOrder,
    PurchaseOrderItem,
    Reception,
    ReceptionItem,
    SupplierReturn,
    SupplierReturnItem,
    SupplierPayment,
    QualityCheck,
)
from .sales import Order, OrderItem
from .finance import CashRegister, CashShift, ShiftPayment, FinancialTransaction
from .documents import DocumentSequence, AuditLog

__all__ = [
    'Product', 'StockLot', 'InventoryMovement', 'ProductBatch', 'MOVEMENT_TYPES',
    'Supplier', 'PurchaseOrder', 'PurchaseOrderItem',
    'Reception', 'ReceptionItem', 'SupplierReturn', 'SupplierReturnItem',
    'SupplierPayment', 'QualityCheck',
    'Order', 'OrderItem',
    'CashRegister', 'CashShift', 'ShiftPayment', 'FinancialTransaction',
    'DocumentSequence', 'AuditLog',
]
