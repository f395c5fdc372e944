import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


USER = "user-1"


def build_services(tmp_path: Path, name: str = "tracker.db", max_attempts: int = 5, store=None):
    from ist.repositories.document_store import DocumentStore
    from ist.repositories.unit_of_work import RetryPolicy, TransactionRunner
    from ist.services.inventory_service import InventoryService
    from ist.services.sales_service import SalesService

    if store is None:
        store = DocumentStore(tmp_path / name)
    store.init_db()
    runner = TransactionRunner(store, RetryPolicy(max_attempts=max_attempts, backoff_seconds=0.001))
    inventory = InventoryService(store, USER, runner)
    sales = SalesService(store, USER, runner)
    return store, inventory, sales
