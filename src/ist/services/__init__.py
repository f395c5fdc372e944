from .inventory_service import InventoryService
from .sales_service import SalesService
from .purge_service import PurgePolicy, PurgeService
from .export_service import ExportService
from .stock_ledger import StockLedger

__all__ = [
    "InventoryService",
    "SalesService",
    "PurgePolicy",
    "PurgeService",
    "ExportService",
    "StockLedger",
]
