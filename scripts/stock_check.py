# scripts/stock_check.py
from __future__ import annotations

import argparse
import logging
import os
import sys
import uuid
from dataclasses import dataclass, replace
from pathlib import Path
from typing import List, Optional, Tuple

from dotenv import load_dotenv

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from scripts.channel_cohort import load_orders_batched  # noqa: E402
from scripts.channel_config import (  # noqa: E402
    CHANNEL_UPDATES_REQUIRED,
    UPDATED_FOLDER,
    ConfigError,
    load_client,
)
from scripts.channel_post_actions import MutationTally, add_order_note  # noqa: E402
from services.linnworks.models import EMPTY_GUID, Order  # noqa: E402

load_dotenv(ROOT / ".env")

logger = logging.getLogger(__name__)


def _env(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


INSUFFICIENT_NOTE = "Order has insufficient stock available for all lines."
SUFFICIENT_NOTE = "Order updated as stock now available for all lines."
NOTE_AUTHOR = "Rules Engine"


@dataclass(frozen=True)
class StockCheckOptions:
    out_of_stock_folder: str = "Out of Stock"
    to_be_cancelled_folder: str = "To Be Cancelled"
    new_folder: str = "New"
    updated_folder: str = UPDATED_FOLDER
    channel_updates_property: str = CHANNEL_UPDATES_REQUIRED
    back_orders_property: str = "BackOrders"
    # empty: use each order's fulfilment location
    location_id: str = ""
    back_in_stock: bool = False
    ignore_unknown_skus: bool = False


@dataclass
class StockCheckReport:
    checked: int = 0
    parked: int = 0
    sufficient: int = 0
    insufficient: int = 0
    tally: Optional[MutationTally] = None

    @property
    def failed(self) -> int:
        return self.tally.failed if self.tally else 0


def drop_unknown_skus(orders: List[Order]) -> List[Order]:
    """Strip unlinked items, then drop orders with nothing left."""
    kept: List[Order] = []
    for order in orders:
        items = tuple(i for i in order.items if i.is_linked)
        if not items:
            logger.info("Order %s has no known SKUs - skipping.", order.order_id)
            continue
        kept.append(replace(order, items=items) if len(items) != len(order.items) else order)
    return kept


def has_sufficient_stock(client, order: Order, location_id: str = "") -> bool:
    location = location_id or order.fulfilment_location_id or EMPTY_GUID
    for item in order.items:
        level = client.get_stock_level_by_location(item.stock_item_id, location)
        if level is None:
            logger.error("Stock item not found for item %s in order %s", item.stock_item_id, order.order_id)
            return False
        if level.available < item.quantity or level.available < 0:
            logger.info(
                "Insufficient stock for item %s in order %s: required %s, available %s",
                item.stock_item_id, order.order_id, item.quantity, level.available,
            )
            return False
    return True


def route_order(order: Order, sufficient: bool, opts: StockCheckOptions) -> Tuple[str, Optional[str]]:
    """Return the target folder and the note to add (None for no note)."""
    if not sufficient:
        if order.has_flag(opts.back_orders_property):
            return opts.out_of_stock_folder, INSUFFICIENT_NOTE
        return opts.to_be_cancelled_folder, INSUFFICIENT_NOTE
    folder = opts.new_folder if order.has_flag(opts.channel_updates_property) else opts.updated_folder
    return folder, SUFFICIENT_NOTE if opts.back_in_stock else None


def run_stock_check(client, orders: List[Order], opts: StockCheckOptions) -> StockCheckReport:
    report = StockCheckReport(tally=MutationTally())
    if opts.ignore_unknown_skus:
        orders = drop_unknown_skus(orders)

    for order in orders:
        if order.is_parked:
            logger.info("Order %s is parked - skipping.", order.order_id)
            report.parked += 1
            continue
        report.checked += 1
        try:
            sufficient = has_sufficient_stock(client, order, opts.location_id)
            folder, note = route_order(order, sufficient, opts)
            client.assign_to_folder([order.order_id], folder)
            logger.info("Order %s (sufficient=%s) assigned to %r folder.", order.order_id, sufficient, folder)
        except Exception as e:
            report.tally.fail(order.order_id)
            logger.error("Failed to update order %s: %s", order.order_id, e)
            continue

        report.tally.ok()
        if sufficient:
            report.sufficient += 1
        else:
            report.insufficient += 1

        if note:
            try:
                add_order_note(client, order.order_id, note, NOTE_AUTHOR, internal=False)
            except Exception as e:
                logger.error("Failed to add note to order %s: %s", order.order_id, e)
    return report


def load_folder_orders(client, folder: str, location_id: str) -> List[Order]:
    filters = {"ListFields": [{"FieldCode": "FOLDER", "Value": folder, "Type": "Is"}]}
    sorting = [{"FieldCode": "GENERAL_INFO_REFERENCE_NUMBER", "Direction": "ASCENDING", "Order": 0}]
    ids = client.get_all_open_orders(filters, sorting, location_id or EMPTY_GUID)
    logger.info("Total orders returned: %s", len(ids))
    return load_orders_batched(client, ids)


def _parse_location(raw: str) -> str:
    if not raw:
        return ""
    try:
        return str(uuid.UUID(raw))
    except ValueError as e:
        raise ConfigError(f"Invalid locationId: {raw}") from e


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Route orders to folders by stock availability")
    parser.add_argument("--order-id", action="append", default=[], help="order GUID to check (repeatable)")
    parser.add_argument("--check-folder", default=_env("STOCK_CHECK_FOLDER"))
    parser.add_argument("--location-id", default=_env("STOCK_LOCATION_ID"))
    parser.add_argument("--back-in-stock", action="store_true", help="add a note to orders that now have stock")
    parser.add_argument("--ignore-unknown-skus", action="store_true")
    parser.add_argument("--debug", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="[STOCK] %(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        location_id = _parse_location(args.location_id)
        if not args.order_id and not args.check_folder:
            raise ConfigError("pass --order-id or --check-folder (STOCK_CHECK_FOLDER)")
        client = load_client()
    except ConfigError as e:
        print(f"[STOCK] Configuration error: {e}", file=sys.stderr)
        return 2

    opts = StockCheckOptions(
        out_of_stock_folder=_env("CHAN_OOS_FOLDER", "Out of Stock"),
        to_be_cancelled_folder=_env("CHAN_CANCEL_FOLDER", "To Be Cancelled"),
        new_folder=_env("CHAN_NEW_FOLDER", "New"),
        updated_folder=_env("STOCK_UPDATED_FOLDER", UPDATED_FOLDER),
        back_orders_property=_env("STOCK_BACK_ORDERS_PROPERTY", "BackOrders"),
        location_id=location_id,
        back_in_stock=args.back_in_stock,
        ignore_unknown_skus=args.ignore_unknown_skus,
    )

    if args.order_id:
        orders = load_orders_batched(client, args.order_id)
    else:
        orders = load_folder_orders(client, args.check_folder, location_id)

    report = run_stock_check(client, orders, opts)
    print(
        f"[STOCK] checked={report.checked} parked={report.parked} sufficient={report.sufficient} "
        f"insufficient={report.insufficient} errors={report.failed}"
    )
    return 1 if report.failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
