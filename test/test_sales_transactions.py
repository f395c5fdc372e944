import sqlite3
import threading
from datetime import datetime
from decimal import Decimal
from pathlib import Path

import pytest

from conftest import USER, build_services
from ist.domain.errors import (
    InsufficientStockError,
    NotFoundError,
    StoreUnavailableError,
    TransactionConflictError,
    ValidationError,
)
from ist.repositories.document_store import DocumentStore


class InterferingStore(DocumentStore):
    """Runs `interfere` right before transactional commits, like a concurrent writer would."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.interfere = None
        self.times = 0

    def _commit(self, writes, read_versions=None):
        if read_versions and self.interfere and self.times > 0:
            self.times -= 1
            self.interfere()
        return super()._commit(writes, read_versions)


class BrokenDiskStore(DocumentStore):
    """Fails inside the write section, after BEGIN, so the commit outcome is unknown."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.broken = False
        self.commits = 0

    def _commit(self, writes, read_versions=None):
        self.commits += 1
        return super()._commit(writes, read_versions)

    def _apply_writes(self, conn, writes, now_iso):
        if self.broken:
            raise sqlite3.OperationalError("disk I/O error")
        return super()._apply_writes(conn, writes, now_iso)


def _setup(tmp_path: Path, quantity=10, selling="100", buying="60", max_attempts=5):
    store, inventory, sales = build_services(tmp_path, max_attempts=max_attempts)
    item_id = inventory.add_item("Widget", "Tools", quantity, buying, selling)
    return store, inventory, sales, item_id


def test_full_scenario_create_edit_delete(tmp_path: Path):
    _store, inventory, sales, item_id = _setup(tmp_path)

    receipt = sales.create_sale(item_id, 3)
    assert inventory.get_item(item_id).quantity == 7
    sale = sales.get_sale(receipt.sale_id)
    assert sale.total_revenue == 300
    assert sale.total_cost == 180
    assert sale.profit == 120
    assert receipt.item_name == "Widget"
    assert receipt.quantity == 3

    sales.edit_sale(receipt.sale_id, item_id, 5)
    assert inventory.get_item(item_id).quantity == 5
    edited = sales.get_sale(receipt.sale_id)
    assert edited.quantity == 5
    assert edited.total_revenue == 500
    assert edited.profit == 200
    assert edited.sale_date == sale.sale_date

    sales.delete_sale(receipt.sale_id)
    assert inventory.get_item(item_id).quantity == 10
    with pytest.raises(NotFoundError):
        sales.get_sale(receipt.sale_id)


def test_create_sale_snapshots_prices_at_time_of_sale(tmp_path: Path):
    _store, inventory, sales, item_id = _setup(tmp_path, selling="19.99", buying="12.50")

    receipt = sales.create_sale(item_id, "3")
    inventory.update_item(item_id, "Widget", "Tools", 7, "20.00", "25.00")
    sale = sales.get_sale(receipt.sale_id)

    assert sale.item_price == Decimal("19.99")
    assert sale.unit_cost == Decimal("12.50")
    assert sale.total_revenue == Decimal("59.97")
    assert sale.total_cost == Decimal("37.50")
    assert sale.profit == Decimal("22.47")
    assert sale.item_category == "Tools"
    assert sale.sale_date is not None


def test_create_sale_rejects_oversell_and_leaves_stock(tmp_path: Path):
    _store, inventory, sales, item_id = _setup(tmp_path, quantity=4)

    with pytest.raises(InsufficientStockError, match="Only 4 Widget") as exc:
        sales.create_sale(item_id, 5)

    assert exc.value.available == 4
    assert exc.value.item_name == "Widget"
    assert inventory.get_item(item_id).quantity == 4
    assert sales.list_sales_for_day() == []


def test_create_sale_can_sell_the_last_unit(tmp_path: Path):
    _store, inventory, sales, item_id = _setup(tmp_path, quantity=2)
    sales.create_sale(item_id, 2)
    assert inventory.get_item(item_id).quantity == 0


@pytest.mark.parametrize("qty", [0, -1, "abc", "", None, 1.5, True])
def test_create_sale_rejects_invalid_quantity(tmp_path: Path, qty):
    _store, inventory, sales, item_id = _setup(tmp_path)
    with pytest.raises(ValidationError):
        sales.create_sale(item_id, qty)
    assert inventory.get_item(item_id).quantity == 10


def test_create_sale_requires_item_selection(tmp_path: Path):
    _store, _inventory, sales, _item_id = _setup(tmp_path)
    with pytest.raises(ValidationError):
        sales.create_sale("", 1)


def test_create_sale_for_unknown_item(tmp_path: Path):
    _store, _inventory, sales, _item_id = _setup(tmp_path)
    with pytest.raises(NotFoundError):
        sales.create_sale("missing-item", 1)


def test_noop_edit_changes_nothing(tmp_path: Path):
    _store, inventory, sales, item_id = _setup(tmp_path)
    receipt = sales.create_sale(item_id, 4)
    before = sales.get_sale(receipt.sale_id)

    sales.edit_sale(receipt.sale_id, item_id, 4)

    after = sales.get_sale(receipt.sale_id)
    assert inventory.get_item(item_id).quantity == 6
    assert (after.quantity, after.total_revenue, after.total_cost, after.profit) == (
        before.quantity, before.total_revenue, before.total_cost, before.profit,
    )


def test_edit_same_item_can_use_reverted_stock(tmp_path: Path):
    _store, inventory, sales, item_id = _setup(tmp_path, quantity=10)
    receipt = sales.create_sale(item_id, 8)

    sales.edit_sale(receipt.sale_id, item_id, 10)
    assert inventory.get_item(item_id).quantity == 0

    with pytest.raises(InsufficientStockError):
        sales.edit_sale(receipt.sale_id, item_id, 11)
    assert inventory.get_item(item_id).quantity == 0
    assert sales.get_sale(receipt.sale_id).quantity == 10


def test_edit_moves_sale_between_items(tmp_path: Path):
    _store, inventory, sales, a = _setup(tmp_path, quantity=10)
    b = inventory.add_item("Gadget", "", 6, "5", "8")
    c = inventory.add_item("Bystander", "Misc", 9, "1", "2")
    receipt = sales.create_sale(a, 3)

    moved = sales.edit_sale(receipt.sale_id, b, 4)

    assert inventory.get_item(a).quantity == 10
    assert inventory.get_item(b).quantity == 2
    assert inventory.get_item(c).quantity == 9
    sale = sales.get_sale(receipt.sale_id)
    assert sale.item_id == b
    assert sale.item_name == "Gadget"
    assert sale.item_category == "Uncategorized"
    assert sale.total_revenue == 32
    assert sale.profit == 12
    assert moved.item_name == "Gadget"


def test_failed_move_is_atomic(tmp_path: Path):
    _store, inventory, sales, a = _setup(tmp_path, quantity=10)
    b = inventory.add_item("Gadget", "", 2, "5", "8")
    receipt = sales.create_sale(a, 3)

    with pytest.raises(InsufficientStockError, match="Only 2 Gadget"):
        sales.edit_sale(receipt.sale_id, b, 5)

    assert inventory.get_item(a).quantity == 7
    assert inventory.get_item(b).quantity == 2
    sale = sales.get_sale(receipt.sale_id)
    assert (sale.item_id, sale.quantity) == (a, 3)


def test_edit_fails_when_original_item_was_deleted(tmp_path: Path):
    _store, inventory, sales, a = _setup(tmp_path)
    b = inventory.add_item("Gadget", "", 5, "5", "8")
    receipt = sales.create_sale(a, 3)
    inventory.delete_item(a)

    with pytest.raises(NotFoundError, match="Original item"):
        sales.edit_sale(receipt.sale_id, b, 1)
    assert inventory.get_item(b).quantity == 5


def test_edit_fails_for_missing_new_item_or_sale(tmp_path: Path):
    _store, _inventory, sales, a = _setup(tmp_path)
    receipt = sales.create_sale(a, 1)

    with pytest.raises(NotFoundError, match="New item"):
        sales.edit_sale(receipt.sale_id, "missing", 1)
    with pytest.raises(NotFoundError):
        sales.edit_sale("missing-sale", a, 1)
    with pytest.raises(ValidationError):
        sales.edit_sale(receipt.sale_id, a, 0)


def test_delete_is_blocked_when_item_was_deleted(tmp_path: Path):
    _store, inventory, sales, item_id = _setup(tmp_path)
    receipt = sales.create_sale(item_id, 2)
    inventory.delete_item(item_id)

    with pytest.raises(NotFoundError):
        sales.delete_sale(receipt.sale_id)
    assert sales.get_sale(receipt.sale_id).quantity == 2


def test_delete_unknown_sale(tmp_path: Path):
    _store, _inventory, sales, _item_id = _setup(tmp_path)
    with pytest.raises(NotFoundError):
        sales.delete_sale("nope")


def test_create_sale_retries_after_concurrent_stock_change(tmp_path: Path):
    store = InterferingStore(tmp_path / "interfere.db")
    _store, inventory, sales = build_services(tmp_path, store=store)
    item_id = inventory.add_item("Widget", "", 10, "1", "2")
    item_ref = store.collection(USER, "items").document(item_id)

    store.interfere = lambda: store.update(item_ref, {"quantity": 4})
    store.times = 1
    sales.create_sale(item_id, 3)

    assert inventory.get_item(item_id).quantity == 1


def test_create_sale_rechecks_stock_on_retry(tmp_path: Path):
    store = InterferingStore(tmp_path / "interfere.db")
    _store, inventory, sales = build_services(tmp_path, store=store)
    item_id = inventory.add_item("Widget", "", 10, "1", "2")
    item_ref = store.collection(USER, "items").document(item_id)

    store.interfere = lambda: store.update(item_ref, {"quantity": 2})
    store.times = 1
    with pytest.raises(InsufficientStockError):
        sales.create_sale(item_id, 3)

    assert inventory.get_item(item_id).quantity == 2
    assert sales.list_sales_for_day() == []


def test_edit_sale_retries_after_concurrent_stock_change(tmp_path: Path):
    store = InterferingStore(tmp_path / "interfere.db")
    _store, inventory, sales = build_services(tmp_path, store=store)
    item_id = inventory.add_item("Widget", "", 10, "1", "2")
    item_ref = store.collection(USER, "items").document(item_id)
    receipt = sales.create_sale(item_id, 3)

    store.interfere = lambda: store.update(item_ref, {"quantity": 4})
    store.times = 1
    sales.edit_sale(receipt.sale_id, item_id, 5)

    assert store.times == 0
    assert inventory.get_item(item_id).quantity == 2
    assert sales.get_sale(receipt.sale_id).quantity == 5


def test_delete_sale_retries_after_concurrent_stock_change(tmp_path: Path):
    store = InterferingStore(tmp_path / "interfere.db")
    _store, inventory, sales = build_services(tmp_path, store=store)
    item_id = inventory.add_item("Widget", "", 10, "1", "2")
    item_ref = store.collection(USER, "items").document(item_id)
    receipt = sales.create_sale(item_id, 3)

    store.interfere = lambda: store.update(item_ref, {"quantity": 4})
    store.times = 1
    sales.delete_sale(receipt.sale_id)

    assert store.times == 0
    assert inventory.get_item(item_id).quantity == 7
    assert sales.list_sales_for_day() == []


def test_unknown_commit_outcome_is_not_retried(tmp_path: Path):
    store = BrokenDiskStore(tmp_path / "broken.db")
    _store, inventory, sales = build_services(tmp_path, store=store)
    item_id = inventory.add_item("Widget", "", 10, "1", "2")

    store.broken = True
    store.commits = 0
    with pytest.raises(StoreUnavailableError):
        sales.create_sale(item_id, 3)

    assert store.commits == 1
    store.broken = False
    assert inventory.get_item(item_id).quantity == 10
    assert sales.list_sales_for_day() == []


def test_exhausted_retries_surface_conflict_without_partial_writes(tmp_path: Path):
    store = InterferingStore(tmp_path / "interfere.db")
    _store, inventory, sales = build_services(tmp_path, store=store, max_attempts=3)
    item_id = inventory.add_item("Widget", "", 10, "1", "2")
    item_ref = store.collection(USER, "items").document(item_id)

    store.interfere = lambda: store.update(item_ref, {"quantity": 10})
    store.times = 100
    with pytest.raises(TransactionConflictError):
        sales.create_sale(item_id, 3)

    assert inventory.get_item(item_id).quantity == 10
    assert sales.list_sales_for_day() == []


def test_concurrent_sales_never_drive_stock_negative(tmp_path: Path):
    _store, inventory, sales, item_id = _setup(tmp_path, quantity=10, max_attempts=200)
    outcomes = []
    lock = threading.Lock()

    def sell():
        try:
            sales.create_sale(item_id, 3)
            result = "ok"
        except InsufficientStockError:
            result = "short"
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=sell) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count("ok") == 3
    assert outcomes.count("short") == 5
    assert inventory.get_item(item_id).quantity == 1
    assert sum(s.quantity for s in sales.list_sales_for_day()) == 9


def test_watch_sales_between_follows_commits(tmp_path: Path):
    _store, _inventory, sales, item_id = _setup(tmp_path)
    seen = []
    reg = sales.watch_sales_between(
        datetime(2000, 1, 1), datetime(2100, 1, 1), lambda rows: seen.append([s.quantity for s in rows])
    )

    receipt = sales.create_sale(item_id, 2)
    sales.edit_sale(receipt.sale_id, item_id, 4)
    reg.unsubscribe()
    sales.delete_sale(receipt.sale_id)

    assert seen == [[], [2], [4]]
