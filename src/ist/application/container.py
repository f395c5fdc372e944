from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from ist.config import Settings
from ist.domain.errors import ValidationError
from ist.repositories.document_store import DocumentStore
from ist.repositories.unit_of_work import RetryPolicy, TransactionRunner
from ist.services.export_service import ExportService
from ist.services.inventory_service import InventoryService
from ist.services.purge_service import PurgePolicy, PurgeService
from ist.services.sales_service import SalesService


@dataclass(frozen=True)
class AppContainer:
    user_id: str
    settings: Settings
    store: DocumentStore
    runner: TransactionRunner
    inventory: InventoryService
    sales: SalesService
    purge: PurgeService
    export: ExportService


def build_container(db_path: Path | str, user_id: str, settings: Settings | None = None) -> AppContainer:
    settings = settings or Settings()
    user_id = (user_id or "").strip()
    if not user_id:
        raise ValidationError("User not authenticated. A user id is required.")

    store = DocumentStore(db_path, busy_timeout=settings.busy_timeout_seconds)
    store.init_db()

    runner = TransactionRunner(
        store,
        RetryPolicy(max_attempts=settings.tx_max_attempts, backoff_seconds=settings.tx_backoff_seconds),
    )
    inventory = InventoryService(store, user_id, runner, low_stock_threshold=settings.low_stock_threshold)
    sales = SalesService(store, user_id, runner)
    purge = PurgeService(store, user_id, sales, PurgePolicy(restore_stock=settings.purge_restores_stock))
    export = ExportService(sales)

    return AppContainer(
        user_id=user_id,
        settings=settings,
        store=store,
        runner=runner,
        inventory=inventory,
        sales=sales,
        purge=purge,
        export=export,
    )
