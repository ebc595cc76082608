from .tenancy import Business, Location, DocumentSequence
from .parties import Customer, Supplier
from .inventory import Product, StockPosition, StockMovement, Purchase, PurchaseLine
from .orders import Order, OrderLine, OrderAmountEntry, LoadSheet, LoadSheetLine
from .finance import Account, AccountTransaction, Payment, Cheque, SupplierPayment
from .audit import HistoryRecord

__all__ = [
    'Business', 'Location', 'DocumentSequence',
    'Customer', 'Supplier',
    'Product', 'StockPosition', 'StockMovement', 'Purchase', 'PurchaseLine',
    'Order', 'OrderLine', 'OrderAmountEntry', 'LoadSheet', 'LoadSheetLine',
    'Account', 'AccountTransaction', 'Payment', 'Cheque', 'SupplierPayment',
    'HistoryRecord',
]
