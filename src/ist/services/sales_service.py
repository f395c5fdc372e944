from __future__ import annotations

import logging
from datetime import date, datetime, time
from typing import Callable, Optional

from ist.domain.errors import (
    InsufficientStockError,
    NotFoundError,
    TransactionConflictError,
    ValidationError,
)
from ist.domain.models import Sale, SaleReceipt
from ist.repositories.document_store import (
    SERVER_TIMESTAMP,
    DocumentStore,
    ListenerRegistration,
    Transaction,
)
from ist.repositories.documents import ITEMS, SALES, sale_fields, sale_from_snapshot
from ist.repositories.unit_of_work import TransactionRunner
from ist.services.stock_ledger import StockLedger
from ist.services.validation import positive_int, required_text

log = logging.getLogger("ist.sales")

INVALID_SALE_INPUT = "Please select an item and enter a valid quantity."


def day_bounds(day: date) -> tuple[datetime, datetime]:
    return datetime.combine(day, time.min), datetime.combine(day, time.max)


def _require_id(value, message: str) -> str:
    doc_id = required_text(value, message)
    if "/" in doc_id:
        raise ValidationError(message)
    return doc_id


def _receipt(sale_id: str, fields: dict) -> SaleReceipt:
    return SaleReceipt(
        sale_id=sale_id,
        item_id=fields["itemId"],
        item_name=fields["itemName"],
        quantity=fields["quantity"],
        total_revenue=fields["totalRevenue"],
        profit=fields["profit"],
    )


class SalesService:
    """Records, edits and deletes sales together with the stock they move.

    Each write operation is one atomic transaction over the sale and the one
    or two items it references; conflicts with concurrent writers are retried
    by the runner, business failures are not.
    """

    def __init__(self, store: DocumentStore, user_id: str, runner: TransactionRunner | None = None):
        self.store = store
        self.user_id = user_id
        self.runner = runner or TransactionRunner(store)
        self.items = store.collection(user_id, ITEMS)
        self.sales = store.collection(user_id, SALES)

    def create_sale(self, item_id: str, quantity) -> SaleReceipt:
        item_id = _require_id(item_id, INVALID_SALE_INPUT)
        qty = positive_int(quantity, INVALID_SALE_INPUT)

        def apply(tx: Transaction) -> SaleReceipt:
            ledger = StockLedger(tx, self.items)
            item = ledger.get_item(item_id, not_found_message="Item does not exist.")
            ledger.adjust_quantity(item_id, -qty)

            sale_ref = self.sales.document()
            fields = sale_fields(item, qty)
            tx.set(sale_ref, {**fields, "saleDate": SERVER_TIMESTAMP})
            return _receipt(sale_ref.id, fields)

        try:
            receipt = self.runner.run(apply)
        except (InsufficientStockError, NotFoundError, TransactionConflictError) as e:
            log.info("sale_rejected item_id=%s qty=%s reason=%s", item_id, qty, e)
            raise
        log.info(
            "sale_created sale_id=%s item_id=%s qty=%s revenue=%s profit=%s",
            receipt.sale_id, item_id, qty, receipt.total_revenue, receipt.profit,
        )
        return receipt

    def edit_sale(self, sale_id: str, new_item_id: str, new_quantity) -> SaleReceipt:
        sale_id = _require_id(sale_id, "Sale record not found.")
        new_item_id = _require_id(new_item_id, INVALID_SALE_INPUT)
        qty = positive_int(new_quantity, INVALID_SALE_INPUT)
        sale_ref = self.sales.document(sale_id)

        def apply(tx: Transaction) -> SaleReceipt:
            snap = tx.get(sale_ref)
            if not snap.exists:
                raise NotFoundError("Sale record not found.")
            old = sale_from_snapshot(snap)

            ledger = StockLedger(tx, self.items)
            # all reads happen before the first staged write
            ledger.get_item(old.item_id, not_found_message="Original item not found in inventory.")
            new_item = ledger.get_item(new_item_id, not_found_message="New item not found in inventory.")

            ledger.adjust_quantity(old.item_id, old.quantity)
            ledger.adjust_quantity(new_item_id, -qty)

            fields = sale_fields(new_item, qty)
            tx.update(sale_ref, fields)
            return _receipt(sale_id, fields)

        try:
            receipt = self.runner.run(apply)
        except (InsufficientStockError, NotFoundError, TransactionConflictError) as e:
            log.info("sale_edit_rejected sale_id=%s item_id=%s qty=%s reason=%s", sale_id, new_item_id, qty, e)
            raise
        log.info("sale_edited sale_id=%s item_id=%s qty=%s revenue=%s", sale_id, new_item_id, qty, receipt.total_revenue)
        return receipt

    def delete_sale(self, sale_id: str) -> None:
        sale_id = _require_id(sale_id, "Sale record not found.")
        sale_ref = self.sales.document(sale_id)

        def apply(tx: Transaction) -> Sale:
            snap = tx.get(sale_ref)
            if not snap.exists:
                raise NotFoundError("Sale record not found.")
            sale = sale_from_snapshot(snap)

            ledger = StockLedger(tx, self.items)
            # Blocked rather than skipping the restore when the item is gone.
            ledger.get_item(sale.item_id, not_found_message="Item for this sale no longer exists; stock cannot be restored.")
            ledger.adjust_quantity(sale.item_id, sale.quantity)
            tx.delete(sale_ref)
            return sale

        try:
            sale = self.runner.run(apply)
        except (NotFoundError, TransactionConflictError) as e:
            log.info("sale_delete_rejected sale_id=%s reason=%s", sale_id, e)
            raise
        log.info("sale_deleted sale_id=%s item_id=%s restored=%s", sale_id, sale.item_id, sale.quantity)

    # ---------- Reads ----------
    def get_sale(self, sale_id: str) -> Sale:
        snap = self.store.get(self.sales.document(_require_id(sale_id, "Sale record not found.")))
        if not snap.exists:
            raise NotFoundError("Sale record not found.")
        return sale_from_snapshot(snap)

    def _range_query(self, start: datetime, end: datetime):
        return (
            self.sales.where("saleDate", ">=", start)
            .where("saleDate", "<=", end)
            .order_by("saleDate", descending=True)
        )

    def list_sales_between(self, start: datetime, end: datetime) -> list[Sale]:
        return [sale_from_snapshot(s) for s in self.store.query(self._range_query(start, end))]

    def list_sales_for_day(self, day: Optional[date] = None) -> list[Sale]:
        return self.list_sales_between(*day_bounds(day or date.today()))

    def watch_sales_between(
        self,
        start: datetime,
        end: datetime,
        callback: Callable[[list[Sale]], None],
    ) -> ListenerRegistration:
        return self.store.on_snapshot(
            self._range_query(start, end),
            lambda snaps: callback([sale_from_snapshot(s) for s in snaps]),
        )
