from __future__ import annotations

import argparse
import logging
import sys
from datetime import date
from pathlib import Path
from typing import Optional, Sequence

from ist.application.container import AppContainer, build_container
from ist.config import get_app_paths, load_settings
from ist.domain.errors import AppError, StoreUnavailableError, TransactionConflictError
from ist.logging_config import setup_logging
from ist.services.export_service import PERIODS, default_export_name, period_bounds

log = logging.getLogger(__name__)


def _parse_day(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"Expected YYYY-MM-DD, got {value!r}") from e


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="ist", description="Inventory and sales tracker")
    p.add_argument("--user", help="user id that owns the data (default: $IST_USER_ID)")
    p.add_argument("--db", type=Path, help="database file (default: app data directory)")
    sub = p.add_subparsers(dest="area", required=True)

    items = sub.add_parser("items").add_subparsers(dest="action", required=True)
    add = items.add_parser("add")
    add.add_argument("name")
    add.add_argument("--category", default="")
    add.add_argument("--quantity", required=True)
    add.add_argument("--buying-price", required=True)
    add.add_argument("--selling-price", required=True)
    item_list = items.add_parser("list")
    item_list.add_argument("--search", default="", help="case-insensitive name substring")
    item_list.add_argument("--category")
    low = items.add_parser("low")
    low.add_argument("--threshold", type=int)

    sales = sub.add_parser("sales").add_subparsers(dest="action", required=True)
    record = sales.add_parser("record")
    record.add_argument("item_id")
    record.add_argument("quantity")
    edit = sales.add_parser("edit")
    edit.add_argument("sale_id")
    edit.add_argument("item_id")
    edit.add_argument("quantity")
    delete = sales.add_parser("delete")
    delete.add_argument("sale_id")
    listing = sales.add_parser("list")
    listing.add_argument("--day", type=_parse_day)
    purge = sales.add_parser("purge-today")
    purge.add_argument("--yes", action="store_true", help="confirm deleting every sale recorded today")

    export = sub.add_parser("export")
    export.add_argument("format", choices=["csv", "xlsx"])
    export.add_argument("--day", type=_parse_day)
    export.add_argument("--period", choices=PERIODS, default="daily")
    export.add_argument("--out", type=Path)

    return p


def _run(c: AppContainer, args: argparse.Namespace, exports_dir: Path) -> int:
    if args.area == "items":
        if args.action == "add":
            item_id = c.inventory.add_item(args.name, args.category, args.quantity, args.buying_price, args.selling_price)
            print(item_id)
        elif args.action == "list":
            for it in c.inventory.list_items(args.search, args.category):
                print(f"{it.id}\t{it.name}\t{it.category}\t{it.quantity}\t{it.selling_price}")
        else:
            for it in c.inventory.low_stock_items(args.threshold):
                print(f"{it.id}\t{it.name}\t{it.quantity}")
        return 0

    if args.area == "sales":
        if args.action == "record":
            receipt = c.sales.create_sale(args.item_id, args.quantity)
            print(f"{receipt.sale_id}\t{receipt.message}")
        elif args.action == "edit":
            receipt = c.sales.edit_sale(args.sale_id, args.item_id, args.quantity)
            print(f"Updated the sale for {receipt.item_name}.")
        elif args.action == "delete":
            c.sales.delete_sale(args.sale_id)
            print("Sale record deleted.")
        elif args.action == "list":
            for s in c.sales.list_sales_for_day(args.day):
                print(f"{s.id}\t{s.sale_date}\t{s.item_name}\t{s.quantity}\t{s.total_revenue}\t{s.profit}")
        else:
            if not args.yes:
                print("Refusing to purge without --yes.", file=sys.stderr)
                return 2
            print(f"Deleted {c.purge.purge_today()} sale record(s).")
        return 0

    day = args.day or date.today()
    out = args.out or exports_dir / default_export_name(args.period, day, args.format)
    start, end = period_bounds(args.period, day)
    if args.format == "csv":
        rows = c.export.export_sales_csv(out, start, end)
    else:
        rows = c.export.export_sales_excel(out, start, end)
    print(f"Exported {rows} sale(s) to {out}")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings()
        paths = get_app_paths()
        setup_logging(paths.logs_dir, level=logging.INFO)
        container = build_container(args.db or paths.db_path, args.user or settings.user_id or "", settings)
        return _run(container, args, paths.exports_dir)
    except (TransactionConflictError, StoreUnavailableError) as e:
        log.warning("operation_outcome_unknown error=%s", e)
        print("Could not complete the operation. Reload the data and try again.", file=sys.stderr)
        return 1
    except AppError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
