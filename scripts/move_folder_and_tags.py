# scripts/move_folder_and_tags.py
from __future__ import annotations

import argparse
import logging
import os
import sys
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from scripts.channel_cohort import load_orders_batched  # noqa: E402
from scripts.channel_config import ConfigError, load_client  # noqa: E402
from scripts.channel_post_actions import MutationTally  # noqa: E402
from services.linnworks.models import EMPTY_GUID  # noqa: E402

load_dotenv(ROOT / ".env")

logger = logging.getLogger(__name__)

NO_TAG_FILTER = -1


def build_filter(folder: str, sub_source: str, filter_tag: int, last_days: int) -> Dict[str, Any]:
    list_fields: List[Dict[str, Any]] = [
        {"FieldCode": "FOLDER", "Value": folder, "Type": "Is"},
        {"FieldCode": "GENERAL_INFO_SUBSOURCE", "Value": sub_source, "Type": "Is"},
    ]
    if filter_tag != NO_TAG_FILTER:
        list_fields.append({"FieldCode": "GENERAL_INFO_TAG", "Value": str(filter_tag), "Type": "Is"})
    return {
        "ListFields": list_fields,
        "DateFields": [{"FieldCode": "GENERAL_INFO_DATE", "Type": "LastDays", "Value": last_days}],
    }


def normalize_location(raw: str) -> str:
    if not raw:
        return EMPTY_GUID
    try:
        return str(uuid.UUID(raw))
    except ValueError:
        logger.error("Invalid locationId: %s, using empty GUID", raw)
        return EMPTY_GUID


def move_and_tag(
    client,
    *,
    folder: str,
    move_to: str,
    sub_source: str,
    tag: int,
    filter_tag: int = NO_TAG_FILTER,
    location_id: str = "",
    last_days: int = 7,
) -> MutationTally:
    """Move every matching open order to `move_to` and set its tag. Per-order failures are counted."""
    logger.info("Retrieving orders in folder %r with subSource %r from last %s days.", folder, sub_source, last_days)
    sorting = [{"FieldCode": "GENERAL_INFO_REFERENCE_NUMBER", "Direction": "ASCENDING", "Order": 0}]
    ids = client.get_all_open_orders(
        build_filter(folder, sub_source, filter_tag, last_days), sorting, normalize_location(location_id)
    )
    logger.info("Order GUIDs returned: %s", len(ids))

    tally = MutationTally()
    if not ids:
        logger.info("No orders found matching the filter.")
        return tally

    for order in load_orders_batched(client, ids):
        try:
            client.assign_to_folder([order.order_id], move_to)
            client.change_order_tag([order.order_id], tag)
            tally.ok()
            logger.info("Order %s moved to folder %s and tagged with %s.", order.order_id, move_to, tag)
        except Exception as e:
            tally.fail(order.order_id)
            logger.error("Failed to update order %s: %s", order.order_id, e)
    return tally


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Move open orders between folders and tag them")
    parser.add_argument("--folder", required=True, help="source folder name")
    parser.add_argument("--move-to", required=True, help="target folder name")
    parser.add_argument("--sub-source", default=(os.getenv("CHAN_SUB_SOURCE") or "").strip())
    parser.add_argument("--tag", type=int, required=True, help="tag number to set")
    parser.add_argument("--filter-tag", type=int, default=NO_TAG_FILTER, help="only orders with this tag (-1 = any)")
    parser.add_argument("--location-id", default="")
    parser.add_argument("--last-days", type=int, default=7)
    parser.add_argument("--debug", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="[MOVE] %(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        if not args.sub_source:
            raise ConfigError("--sub-source (or CHAN_SUB_SOURCE) is required")
        client = load_client()
    except ConfigError as e:
        print(f"[MOVE] Configuration error: {e}", file=sys.stderr)
        return 2

    tally = move_and_tag(
        client,
        folder=args.folder,
        move_to=args.move_to,
        sub_source=args.sub_source,
        tag=args.tag,
        filter_tag=args.filter_tag,
        location_id=args.location_id,
        last_days=args.last_days,
    )
    print(f"[MOVE] moved={tally.succeeded} errors={tally.failed}")
    return 1 if tally.failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
