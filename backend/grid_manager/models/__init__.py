from .tenancy import Organization, Branch
from .auth import User, SessionToken
from .security import SecurityEvent
from .catalog import Product, StockMovement
from .parties import Customer, Supplier, Collection, SupplierPayment
from .accounts import Account, AccountMovement
from .orders import Sale, SaleItem, Purchase, PurchaseItem, DocumentSequence
from .audit import AuditLog
from .settings import OrganizationSetting

__all__ = [
    'Organization', 'Branch',
    'User', 'SessionToken', 'SecurityEvent',
    'Product', 'StockMovement',
    'Customer', 'Supplier', 'Collection', 'SupplierPayment',
    'Account', 'AccountMovement',
    'Sale', 'SaleItem', 'Purchase', 'PurchaseItem', 'DocumentSequence',
    'AuditLog',
    'OrganizationSetting',
]
