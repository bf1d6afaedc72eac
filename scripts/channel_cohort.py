from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple

from scripts.channel_config import (
    BATCH_SIZE,
    CHANNEL_UPDATES_REQUIRED,
    COMPLETED_FOLDER,
    NotificationConfig,
    ProcessingContext,
    SelectionMode,
)
from services.linnworks.models import Order

logger = logging.getLogger(__name__)


class OrderQueryApi(Protocol):
    def get_all_open_orders(
        self,
        filters: Dict[str, Any],
        sorting: List[Dict[str, Any]],
        location_id: str = ...,
        additional_filter: str = ...,
    ) -> List[str]: ...

    def search_processed_orders(self, request: Dict[str, Any]) -> Dict[str, Any]: ...

    def get_orders_by_id(self, order_ids: Iterable[str]) -> List[Order]: ...


def build_open_order_filter(sub_source: str, folder: str = "") -> Dict[str, Any]:
    """Paid, not parked, not locked, on the sub-source; optionally in one folder."""
    filters: Dict[str, Any] = {
        "NumericFields": [
            {"FieldCode": "GENERAL_INFO_STATUS", "Type": "Equal", "Value": 1},
            {"FieldCode": "GENERAL_INFO_PARKED", "Type": "Equal", "Value": 0},
            {"FieldCode": "GENERAL_INFO_LOCKED", "Type": "Equal", "Value": 0},
        ],
        "TextFields": [
            {"FieldCode": "GENERAL_INFO_SUBSOURCE", "Text": sub_source, "Type": "Equal"},
        ],
    }
    if folder:
        filters["ListFields"] = [{"FieldCode": "FOLDER", "Value": folder, "Type": "Is"}]
    return filters


def build_sorting(ctx: ProcessingContext) -> List[Dict[str, Any]]:
    code = "GENERAL_INFO_REFERENCE_NUMBER" if ctx.sort_by_reference else "GENERAL_INFO_ORDER_ID"
    direction = "ASCENDING" if ctx.sort_ascending else "DESCENDING"
    return [{"FieldCode": code, "Direction": direction, "Order": 0}]


def load_orders_batched(client: OrderQueryApi, order_ids: List[str], batch_size: int = BATCH_SIZE) -> List[Order]:
    orders: List[Order] = []
    for i in range(0, len(order_ids), batch_size):
        batch = order_ids[i : i + batch_size]
        logger.info("Fetching order details batch %s: %s orders", i // batch_size + 1, len(batch))
        orders.extend(client.get_orders_by_id(batch))
    return orders


def filter_channel_updates(orders: List[Order]) -> List[Order]:
    kept = [o for o in orders if o.has_flag(CHANNEL_UPDATES_REQUIRED)]
    logger.info("After %s filter: %s -> %s", CHANNEL_UPDATES_REQUIRED, len(orders), len(kept))
    return kept


def filter_not_processed(orders: List[Order], ep_name: str) -> List[Order]:
    if not ep_name:
        return list(orders)
    kept = [o for o in orders if not o.has_flag(ep_name)]
    logger.info("After %s filter: %s -> %s", ep_name, len(orders), len(kept))
    return kept


def exclude_completed(orders: List[Order]) -> List[Order]:
    # exact folder name, as the processed search reports it
    kept = [o for o in orders if COMPLETED_FOLDER not in o.folders]
    logger.info("After %s folder filter: %s -> %s", COMPLETED_FOLDER, len(orders), len(kept))
    return kept


def sort_orders(orders: List[Order], ctx: ProcessingContext) -> List[Order]:
    if ctx.sort_by_reference:
        return sorted(orders, key=lambda o: o.reference_num, reverse=not ctx.sort_ascending)
    return sorted(orders, key=lambda o: o.num_order_id, reverse=not ctx.sort_ascending)


def _apply_ep_filters(orders: List[Order], config: NotificationConfig) -> List[Order]:
    if config.selection == SelectionMode.OPEN_NO_EP_FILTER:
        return orders
    if config.requires_channel_updates:
        orders = filter_channel_updates(orders)
    return filter_not_processed(orders, config.ep_filter)


def select_open_orders(client: OrderQueryApi, config: NotificationConfig, ctx: ProcessingContext) -> List[Order]:
    folder = "" if config.selection == SelectionMode.OPEN_ALL else config.folder
    filters = build_open_order_filter(ctx.sub_source, folder)
    ids = client.get_all_open_orders(filters, build_sorting(ctx))
    logger.info("%s: %s open order ids (folder=%r)", config.name, len(ids), folder or "*")
    if not ids:
        return []
    orders = load_orders_batched(client, ids)
    return sort_orders(_apply_ep_filters(orders, config), ctx)


def processed_search_window(look_back_days: int, today: Optional[date] = None) -> Tuple[datetime, datetime]:
    day = today or datetime.now(timezone.utc).date()
    start = datetime.combine(day - timedelta(days=look_back_days), time.min, tzinfo=timezone.utc)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=timezone.utc)
    return start, end


def build_processed_search(
    ctx: ProcessingContext, *, cancelled: bool, page: int, today: Optional[date] = None
) -> Dict[str, Any]:
    start, end = processed_search_window(ctx.look_back_days, today)
    return {
        "SearchTerm": "",
        "SearchFilters": [
            {"SearchField": "SubSource", "SearchTerm": ctx.sub_source},
            {"SearchField": "Source", "SearchTerm": ctx.source},
        ],
        "DateField": "cancelled" if cancelled else "processed",
        "FromDate": start.strftime("%Y-%m-%dT%H:%M:%S"),
        "ToDate": end.strftime("%Y-%m-%dT%H:%M:%S"),
        "PageNumber": page,
        "ResultsPerPage": BATCH_SIZE,
    }


def search_processed_ids(
    client: OrderQueryApi, ctx: ProcessingContext, *, cancelled: bool, today: Optional[date] = None
) -> List[str]:
    ids: List[str] = []
    page = 1
    while True:
        body = client.search_processed_orders(build_processed_search(ctx, cancelled=cancelled, page=page, today=today))
        result = body.get("ProcessedOrders") or {}
        data = result.get("Data") or []
        ids.extend(str(row.get("pkOrderID")) for row in data if isinstance(row, dict) and row.get("pkOrderID"))
        total_pages = int(result.get("TotalPages") or 0)
        logger.info("SearchProcessedOrders page %s/%s returned %s orders", page, total_pages or 1, len(data))
        if not data or page >= total_pages:
            break
        page += 1
    # a row can move between pages while paging
    return list(dict.fromkeys(ids))


def select_processed_orders(
    client: OrderQueryApi,
    config: NotificationConfig,
    ctx: ProcessingContext,
    today: Optional[date] = None,
) -> List[Order]:
    cancelled = config.selection == SelectionMode.PROCESSED_CANCELLED
    ids = search_processed_ids(client, ctx, cancelled=cancelled, today=today)
    if not ids:
        return []
    orders = exclude_completed(load_orders_batched(client, ids))
    return sort_orders(_apply_ep_filters(orders, config), ctx)


def select_cohort(
    client: OrderQueryApi,
    config: NotificationConfig,
    ctx: ProcessingContext,
    today: Optional[date] = None,
) -> List[Order]:
    """
    Select the orders one notification type has to report.

    Client errors propagate unchanged; the caller abandons the type.
    """
    if config.selection.is_open:
        return select_open_orders(client, config, ctx)
    return select_processed_orders(client, config, ctx, today=today)
