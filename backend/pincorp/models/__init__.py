from .inventory import Material, Product, StockHistory
from .production import Bom, ProductionOrder
from .sales import Sale
from .repairs import RepairOrder
from .ledger import CashTransaction, DailySequence, WriteBatch

__all__ = [
    'Material', 'Product', 'StockHistory',
    'Bom', 'ProductionOrder',
    'Sale',
    'RepairOrder',
    'CashTransaction', 'DailySequence', 'WriteBatch',
]
