from .accounts import Account
from .inventory import Item, StockReceipt, StockReceiptLine
from .movements import Movement, SimpleMovement, LineItemMovement, MovementLine
from .ledger import LedgerEvent

__all__ = [
    'Account',
    'Item', 'StockReceipt', 'StockReceiptLine',
    'Movement', 'SimpleMovement', 'LineItemMovement', 'MovementLine',
    'LedgerEvent',
]
