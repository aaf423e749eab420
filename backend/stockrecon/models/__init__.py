from .inventory import ProductModel, Product, InventoryItem
from .sales import Sale, Swap, Return
from .customers import Customer, Debt, DebtPayment

__all__ = [
    'ProductModel', 'Product', 'InventoryItem',
    'Sale', 'Swap', 'Return',
    'Customer', 'Debt', 'DebtPayment',
]
