from __future__ import annotations

import calendar
import csv
import logging
from datetime import date, datetime, timedelta
from pathlib import Path

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.table import Table, TableStyleInfo

from ist.domain.errors import ValidationError
from ist.domain.models import Sale
from ist.services.sales_service import day_bounds

log = logging.getLogger(__name__)

HEADERS = ["Date", "Time", "Item", "Category", "Quantity", "Unit Price", "Revenue", "Cost", "Profit"]
PERIODS = ("daily", "weekly", "monthly")


def period_bounds(period: str, day: date) -> tuple[datetime, datetime]:
    """Inclusive range for a report period containing `day`. Weeks run Sunday to Saturday."""
    if period == "daily":
        return day_bounds(day)
    if period == "weekly":
        first = day - timedelta(days=(day.weekday() + 1) % 7)
        last = first + timedelta(days=6)
    elif period == "monthly":
        first = day.replace(day=1)
        last = day.replace(day=calendar.monthrange(day.year, day.month)[1])
    else:
        raise ValidationError(f"Unknown report period: {period!r}. Use one of: {', '.join(PERIODS)}.")
    return day_bounds(first)[0], day_bounds(last)[1]


def default_export_name(period: str, today: date | None = None, ext: str = "csv") -> str:
    today = today or date.today()
    return f"sales_report_{period}_{today.strftime('%Y%m%d')}.{ext}"


class ExportService:
    def __init__(self, sales_service):
        self.sales = sales_service

    def _rows(self, start: datetime, end: datetime) -> list[tuple[Sale, str, str]]:
        out = []
        for s in self.sales.list_sales_between(start, end):
            when = s.sale_date or datetime.now()
            out.append((s, when.strftime("%Y-%m-%d"), when.strftime("%H:%M")))
        return out

    def export_sales_csv(self, path: Path | str, start: datetime, end: datetime) -> int:
        rows = self._rows(start, end)
        with open(path, "w", newline="", encoding="utf-8") as fh:
            w = csv.writer(fh)
            w.writerow(HEADERS)
            for s, day, hhmm in rows:
                w.writerow([
                    day,
                    hhmm,
                    s.item_name,
                    s.item_category or "N/A",
                    s.quantity,
                    s.item_price,
                    s.total_revenue,
                    s.total_cost,
                    s.profit,
                ])
        log.info("sales_exported format=csv rows=%s path=%s", len(rows), path)
        return len(rows)

    def export_sales_excel(self, path: Path | str, start: datetime, end: datetime) -> int:
        rows = self._rows(start, end)
        wb = Workbook()
        ws = wb.active
        ws.title = "Sales"

        ws.append(HEADERS)
        for c in ws[1]:
            c.font = Font(bold=True)

        for s, day, hhmm in rows:
            ws.append([
                day,
                hhmm,
                s.item_name,
                s.item_category or "N/A",
                s.quantity,
                float(s.item_price),
                float(s.total_revenue),
                float(s.total_cost),
                float(s.profit),
            ])

        for row in ws.iter_rows(min_row=2, min_col=6, max_col=9):
            for cell in row:
                cell.number_format = "#,##0.00"

        widths = {"A": 12, "B": 8, "C": 28, "D": 18, "E": 10, "F": 12, "G": 14, "H": 14, "I": 14}
        for col, width in widths.items():
            ws.column_dimensions[col].width = width

        if rows:
            ref = f"A1:{get_column_letter(len(HEADERS))}{len(rows) + 1}"
            tab = Table(displayName="SalesTable", ref=ref)
            tab.tableStyleInfo = TableStyleInfo(
                name="TableStyleMedium9",
                showRowStripes=True,
                showColumnStripes=False,
            )
            ws.add_table(tab)

        wb.save(path)
        log.info("sales_exported format=xlsx rows=%s path=%s", len(rows), path)
        return len(rows)
