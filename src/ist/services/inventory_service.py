from __future__ import annotations

import logging
from typing import Callable, Optional

from ist.domain.errors import NotFoundError, StaleDataError, ValidationError
from ist.domain.models import Category, Item
from ist.repositories.document_store import (
    MAX_BATCH_WRITES,
    SERVER_TIMESTAMP,
    DocumentStore,
    ListenerRegistration,
    Transaction,
)
from ist.repositories.documents import (
    CATEGORIES,
    ITEMS,
    category_from_snapshot,
    item_fields,
    item_from_snapshot,
)
from ist.repositories.unit_of_work import TransactionRunner
from ist.services.validation import non_negative_int, non_negative_money, required_text

log = logging.getLogger("ist.inventory")

DEFAULT_LOW_STOCK_THRESHOLD = 20


class InventoryService:
    def __init__(
        self,
        store: DocumentStore,
        user_id: str,
        runner: TransactionRunner | None = None,
        low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD,
    ):
        self.store = store
        self.runner = runner or TransactionRunner(store)
        self.low_stock_threshold = int(low_stock_threshold)
        self.items = store.collection(user_id, ITEMS)
        self.categories = store.collection(user_id, CATEGORIES)

    @staticmethod
    def _validated_fields(name, category, quantity, buying_price, selling_price) -> dict:
        name = required_text(name, "Item name is required.")
        category = str(category or "").strip()
        qty = non_negative_int(quantity, "Quantity must be a whole number >= 0.")
        buying = non_negative_money(buying_price, "Buying price must be >= 0.")
        selling = non_negative_money(selling_price, "Selling price must be >= 0.")
        return item_fields(name, category, qty, buying, selling)

    def add_item(self, name: str, category: str, quantity, buying_price, selling_price) -> str:
        fields = self._validated_fields(name, category, quantity, buying_price, selling_price)
        ref = self.store.add(self.items, {**fields, "createdAt": SERVER_TIMESTAMP})
        log.info("item_added item_id=%s name=%s qty=%s", ref.id, fields["name"], fields["quantity"])
        return ref.id

    def get_item(self, item_id: str) -> Item:
        snap = self.store.get(self.items.document(required_text(item_id, "Item not found.")))
        if not snap.exists:
            raise NotFoundError("Item not found.")
        return item_from_snapshot(snap)

    def list_items(self, search: str = "", category: Optional[str] = None) -> list[Item]:
        """Items by name; `search` matches a name substring (any case), `category` exactly."""
        query = self.items.order_by("name")
        if category is not None:
            query = query.where("category", "==", category.strip())
        items = [item_from_snapshot(s) for s in self.store.query(query)]
        needle = (search or "").strip().lower()
        if needle:
            items = [i for i in items if needle in i.name.lower()]
        return items

    def update_item(
        self,
        item_id: str,
        name: str,
        category: str,
        quantity,
        buying_price,
        selling_price,
        expected_quantity: int | None = None,
    ) -> None:
        """Direct edit from the stock manager form.

        Runs as a transaction so it serialises with sale operations on the
        same item. expected_quantity is the quantity the form was loaded
        with; if a sale moved stock since then the edit is refused instead
        of overwriting that change.
        """
        fields = self._validated_fields(name, category, quantity, buying_price, selling_price)
        ref = self.items.document(required_text(item_id, "Item not found."))

        def apply(tx: Transaction) -> int:
            snap = tx.get(ref)
            if not snap.exists:
                raise NotFoundError("Item not found.")
            current = int(snap.get("quantity", 0))
            if expected_quantity is not None and current != int(expected_quantity):
                raise StaleDataError(
                    f"Stock for {snap.get('name')} changed to {current} since the form was loaded. Reload and try again."
                )
            tx.update(ref, fields)
            return current

        previous = self.runner.run(apply)
        log.info("item_updated item_id=%s qty_before=%s qty_after=%s", ref.id, previous, fields["quantity"])

    def delete_item(self, item_id: str) -> None:
        # Sales keep their itemId; it simply stops resolving.
        ref = self.items.document(required_text(item_id, "Item not found."))
        if not self.store.get(ref).exists:
            raise NotFoundError("Item not found.")
        self.store.delete(ref)
        log.info("item_deleted item_id=%s", ref.id)

    def delete_all_items(self) -> int:
        snaps = self.store.query(self.items)
        for i in range(0, len(snaps), MAX_BATCH_WRITES):
            batch = self.store.batch()
            for s in snaps[i : i + MAX_BATCH_WRITES]:
                batch.delete(s.ref)
            batch.commit()
        log.warning("items_deleted_all count=%s", len(snaps))
        return len(snaps)

    def low_stock_items(self, threshold: int | None = None) -> list[Item]:
        limit = self.low_stock_threshold if threshold is None else int(threshold)
        q = self.items.where("quantity", "<=", limit).order_by("quantity")
        return [item_from_snapshot(s) for s in self.store.query(q)]

    def watch_items(self, callback: Callable[[list[Item]], None]) -> ListenerRegistration:
        return self.store.on_snapshot(
            self.items.order_by("name"),
            lambda snaps: callback([item_from_snapshot(s) for s in snaps]),
        )

    def watch_low_stock(self, callback: Callable[[list[Item]], None]) -> ListenerRegistration:
        q = self.items.where("quantity", "<=", self.low_stock_threshold).order_by("quantity")
        return self.store.on_snapshot(q, lambda snaps: callback([item_from_snapshot(s) for s in snaps]))

    # ---------- Categories ----------
    def add_category(self, name: str) -> str:
        name = required_text(name, "Category name is required.")
        if any(c.name.lower() == name.lower() for c in self.list_categories()):
            raise ValidationError(f'Category "{name}" already exists.')
        ref = self.store.add(self.categories, {"name": name, "createdAt": SERVER_TIMESTAMP})
        log.info("category_added category_id=%s name=%s", ref.id, name)
        return ref.id

    def list_categories(self) -> list[Category]:
        return [category_from_snapshot(s) for s in self.store.query(self.categories.order_by("name"))]

    def delete_category(self, category_id: str) -> None:
        ref = self.categories.document(required_text(category_id, "Category not found."))
        if not self.store.get(ref).exists:
            raise NotFoundError("Category not found.")
        self.store.delete(ref)
