from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from ist.domain.models import Category, Item, Sale, compute_sale_totals
from ist.repositories.document_store import DocumentSnapshot, parse_timestamp

ITEMS = "items"
SALES = "sales"
CATEGORIES = "categories"

UNCATEGORIZED = "Uncategorized"


def to_decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        # str() first so floats from older documents keep their printed value
        return Decimal(str(value))
    except InvalidOperation:
        return Decimal("0")


def item_from_snapshot(snap: DocumentSnapshot) -> Item:
    d = snap.data or {}
    return Item(
        id=snap.id,
        name=str(d.get("name", "")),
        category=str(d.get("category") or ""),
        quantity=int(d.get("quantity", 0)),
        buying_price=to_decimal(d.get("buyingPrice")),
        selling_price=to_decimal(d.get("sellingPrice")),
        created_at=parse_timestamp(d.get("createdAt")),
    )


def item_fields(name: str, category: str, quantity: int, buying_price: Decimal, selling_price: Decimal) -> dict:
    return {
        "name": name,
        "category": category,
        "quantity": int(quantity),
        "buyingPrice": buying_price,
        "sellingPrice": selling_price,
    }


def sale_from_snapshot(snap: DocumentSnapshot) -> Sale:
    d = snap.data or {}
    item_price = to_decimal(d.get("itemPrice", d.get("price")))
    return Sale(
        id=snap.id,
        item_id=str(d.get("itemId", "")),
        item_name=str(d.get("itemName", "")),
        item_category=str(d.get("itemCategory") or UNCATEGORIZED),
        item_price=item_price,
        unit_cost=to_decimal(d.get("unitCost")),
        quantity=int(d.get("quantity", 0)),
        total_revenue=to_decimal(d.get("totalRevenue")),
        total_cost=to_decimal(d.get("totalCost")),
        profit=to_decimal(d.get("profit")),
        sale_date=parse_timestamp(d.get("saleDate")),
    )


def sale_fields(item: Item, quantity: int) -> dict:
    """Snapshot and derived fields of a sale of `quantity` units of `item`.

    saleDate is deliberately absent: it is set once on creation and an edit
    must leave it alone.
    """
    totals = compute_sale_totals(quantity, item.selling_price, item.buying_price)
    return {
        "itemId": item.id,
        "itemName": item.name,
        "itemCategory": item.category or UNCATEGORIZED,
        "itemPrice": item.selling_price,
        "price": item.selling_price,
        "unitCost": item.buying_price,
        "quantity": totals.quantity,
        "totalRevenue": totals.total_revenue,
        "totalCost": totals.total_cost,
        "profit": totals.profit,
    }


def category_from_snapshot(snap: DocumentSnapshot) -> Category:
    d = snap.data or {}
    return Category(id=snap.id, name=str(d.get("name", "")), created_at=parse_timestamp(d.get("createdAt")))
