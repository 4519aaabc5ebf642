from .auth import User, ApiToken
from .catalog import Category, Supplier, Product
from .inventory import StockMovement
from .purchasing import Purchase, PurchaseItem
from .sales import Sale, SaleItem
from .expenses import ExpenseCategory, Expense
from .audit import AuditLog

__all__ = [
    'User', 'ApiToken',
    'Category', 'Supplier', 'Product',
    'StockMovement',
    'Purchase', 'PurchaseItem',
    'Sale', 'SaleItem',
    'ExpenseCategory', 'Expense',
    'AuditLog',
]
