from __future__ import annotations

from ist.domain.errors import InsufficientStockError, NotFoundError
from ist.domain.models import Item
from ist.repositories.document_store import CollectionRef, Transaction
from ist.repositories.documents import item_from_snapshot


class StockLedger:
    """Item quantities as seen by one transaction.

    Quantities are read once through the transaction and then tracked
    locally, so several adjustments to the same item compound against the
    staged balance. Nothing becomes visible until the transaction commits.
    """

    def __init__(self, tx: Transaction, items: CollectionRef):
        self.tx = tx
        self.items = items
        self._items: dict[str, Item] = {}
        self._balances: dict[str, int] = {}

    def get_item(self, item_id: str, not_found_message: str | None = None) -> Item:
        if item_id not in self._items:
            snap = self.tx.get(self.items.document(item_id))
            if not snap.exists:
                raise NotFoundError(not_found_message or "Item not found.")
            item = item_from_snapshot(snap)
            self._items[item_id] = item
            self._balances[item_id] = item.quantity
        return self._items[item_id]

    def get_quantity(self, item_id: str) -> int:
        self.get_item(item_id)
        return self._balances[item_id]

    def adjust_quantity(self, item_id: str, delta: int) -> int:
        item = self.get_item(item_id)
        current = self._balances[item_id]
        new_quantity = current + int(delta)
        if new_quantity < 0:
            raise InsufficientStockError(item.name, available=current, requested=-int(delta))
        self._balances[item_id] = new_quantity
        self.tx.update(self.items.document(item_id), {"quantity": new_quantity})
        return new_quantity
