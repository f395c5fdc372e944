from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional


@dataclass(frozen=True)
class Item:
    id: str
    name: str
    category: str
    quantity: int
    buying_price: Decimal
    selling_price: Decimal
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class Sale:
    id: str
    item_id: str
    item_name: str
    item_category: str
    item_price: Decimal
    unit_cost: Decimal
    quantity: int
    total_revenue: Decimal
    total_cost: Decimal
    profit: Decimal
    sale_date: Optional[datetime]


@dataclass(frozen=True)
class Category:
    id: str
    name: str
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class SaleReceipt:
    sale_id: str
    item_id: str
    item_name: str
    quantity: int
    total_revenue: Decimal
    profit: Decimal

    @property
    def message(self) -> str:
        return f"Recorded a sale of {self.quantity} {self.item_name}(s)."


@dataclass(frozen=True)
class SaleTotals:
    quantity: int
    total_revenue: Decimal
    total_cost: Decimal
    profit: Decimal


def compute_sale_totals(quantity: int, item_price: Decimal, unit_cost: Decimal) -> SaleTotals:
    revenue = Decimal(quantity) * item_price
    cost = Decimal(quantity) * unit_cost
    return SaleTotals(quantity=quantity, total_revenue=revenue, total_cost=cost, profit=revenue - cost)
