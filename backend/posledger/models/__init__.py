from .inventory import Product, StockMovement
from .sales import Sale, SaleLine
from .documents import (
    ProductReturn,
    ReturnLine,
    Invoice,
    InvoiceLine,
    DocumentSequence,
    LedgerEvent,
)

__all__ = [
    'Product', 'StockMovement',
    'Sale', 'SaleLine',
    'ProductReturn', 'ReturnLine',
    'Invoice', 'InvoiceLine',
    'DocumentSequence', 'LedgerEvent',
]
