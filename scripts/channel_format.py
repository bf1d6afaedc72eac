from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Set, Tuple
from xml.sax.saxutils import escape

from scripts.channel_config import (
    BUYER_REFERENCE,
    MAX_STATUSES_PER_FILE,
    SENDER_ADDRESS,
    FolderAction,
    NotificationConfig,
    ProcessingContext,
)
from services.linnworks.models import Order, OrderItem

logger = logging.getLogger(__name__)

CSV_HEADER = [
    "Linnworks Order Number",
    "Reference Num",
    "Secondary Ref",
    "External Ref",
    "Primary PO Field",
    "JDE Order Number",
    "Sold To Account",
    "Received Date",
    "Source",
    "Sub Source",
    "Despatch By Date",
    "Number Order Items",
    "Postal Service Name",
    "Total Order Weight",
    "Tracking Number",
    "Item > SKU",
    "Item > ChannelSKU",
    "Item > Description",
    "Item > Quantity",
    "Item > Line Ref",
    "Item > Item Cost (ex VAT)",
    "Item > Item Discount (ex VAT)",
    "Item > Tax Rate",
    "Item > Weight Per Item",
]

HELD_DATE_OFFSET_DAYS = 5

_XML_ENTITIES = {'"': "&quot;", "'": "&apos;"}
_INVALID_FILENAME_CHARS = set('<>:"/\\|?* ') | {chr(i) for i in range(32)}


@dataclass(frozen=True)
class OutputDocument:
    content: str
    filename: str
    order_ids: Tuple[str, ...] = ()
    tracking_order_ids: Tuple[str, ...] = ()
    status_count: int = 0


@dataclass(frozen=True)
class FormattedOutput:
    documents: List[OutputDocument] = field(default_factory=list)
    order_ids: Tuple[str, ...] = ()
    tracking_order_ids: Tuple[str, ...] = ()
    is_xml: bool = False

    @property
    def file_count(self) -> int:
        return len(self.documents)


def xml_escape(value: str) -> str:
    return escape(value or "", _XML_ENTITIES)


def sanitize_for_filename(value: str) -> str:
    return "".join(ch for ch in (value or "") if ch not in _INVALID_FILENAME_CHARS).strip()


def format_number(value: float) -> str:
    if value == int(value):
        return str(int(value))
    return repr(float(value))


def _date(dt: Optional[datetime]) -> str:
    return dt.strftime("%Y-%m-%d") if dt is not None else ""


def tracking_subset(cohort: Iterable[Order], folder: str) -> Tuple[str, ...]:
    if not folder:
        return ()
    return tuple(o.order_id for o in cohort if o.in_folder(folder))


def _tracking_ids(cohort: List[Order], config: NotificationConfig, ctx: ProcessingContext) -> Tuple[str, ...]:
    if config.folder_action != FolderAction.MOVE_TRACKED:
        return ()
    folder = config.tracking_folder or ctx.new_folder
    ids = tracking_subset(cohort, folder)
    logger.info("Orders in %r to be moved: %s", folder, len(ids))
    return ids


# --- CSV ---


def csv_filename(ctx: ProcessingContext, config: NotificationConfig, now: datetime) -> str:
    return "{0}_Orders_{1}_{2}_{3}.csv".format(
        sanitize_for_filename(ctx.sub_source),
        sanitize_for_filename(config.file_prefix),
        now.strftime("%Y%m%d%H%M%S"),
        sanitize_for_filename(ctx.file_type),
    )


def csv_row(order: Order, item: OrderItem) -> List[str]:
    return [
        str(order.num_order_id),
        order.reference_num,
        order.secondary_reference,
        order.external_reference,
        order.extended_property("PrimaryPONumber"),
        order.extended_property("JDEOrderNo"),
        order.extended_property("SoldTo"),
        _date(order.received_date),
        order.source,
        order.sub_source,
        _date(order.despatch_by_date),
        str(order.num_items),
        order.shipping.postal_service_name,
        format_number(order.shipping.total_weight),
        order.shipping.tracking_number,
        item.sku,
        item.channel_sku,
        item.title,
        str(item.quantity),
        item.item_number,
        format_number(item.price_per_unit),
        format_number(item.discount),
        format_number(item.tax_rate),
        format_number(item.weight),
    ]


def format_csv(
    cohort: List[Order], config: NotificationConfig, ctx: ProcessingContext, now: Optional[datetime] = None
) -> FormattedOutput:
    now = now or datetime.now()
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_MINIMAL, lineterminator="\r\n")
    writer.writerow(CSV_HEADER)
    lines = 0
    for order in cohort:
        for item in order.items:
            writer.writerow(csv_row(order, item))
            lines += 1
    logger.info("CSV generated: %s item lines from %s orders", lines, len(cohort))

    order_ids = tuple(o.order_id for o in cohort)
    tracking = _tracking_ids(cohort, config, ctx)
    doc = OutputDocument(
        content=buf.getvalue(),
        filename=csv_filename(ctx, config, now),
        order_ids=order_ids,
        tracking_order_ids=tracking,
    )
    return FormattedOutput(documents=[doc], order_ids=order_ids, tracking_order_ids=tracking)


# --- XML ---


def order_numbers(order: Order, per_item: bool) -> List[str]:
    if per_item:
        return [i.item_number for i in order.items if i.item_number]
    if order.items and order.items[0].item_number:
        return [order.items[0].item_number]
    return []


def build_status_elements(
    order: Order,
    config: NotificationConfig,
    seen: Set[str],
    now: datetime,
) -> List[str]:
    """
    Render the STATUS blocks for one order.

    `seen` holds the casefolded order numbers already emitted in this run and is
    updated in place; a number already in it is dropped.
    """
    numbers = order_numbers(order, config.per_item_order_numbers)
    if not numbers:
        logger.info("Order %s has no ItemNumber values - skipping XML STATUS", order.num_order_id)
        return []

    date_value = now.strftime("%Y-%m-%dT%H:%M:%S")
    time_value = now.strftime("%H:%M:%S")
    order_date = order.received_date.strftime("%Y-%m-%dT00:00:00") if order.received_date else ""
    held_date = (now + timedelta(days=HELD_DATE_OFFSET_DAYS)).strftime("%Y-%m-%dT00:00:00")

    out: List[str] = []
    for number in numbers:
        key = number.casefold()
        if key in seen:
            continue
        seen.add(key)
        lines = [
            "    <STATUS>",
            f"        <DATE>{date_value}</DATE>",
            f"        <TIME>{time_value}</TIME>",
            f"        <STATUSCODE>{xml_escape(config.xml_status_code)}</STATUSCODE>",
            "        <ORDER>",
            f"            <ORDERNUMBER>{xml_escape(number)}</ORDERNUMBER>",
            f"            <ORDERDATE>{order_date}</ORDERDATE>",
            "            <SUPPLIER>",
            f"                <BUYERREFERENCE>{BUYER_REFERENCE}</BUYERREFERENCE>",
            "            </SUPPLIER>",
        ]
        if config.include_held_date:
            lines.append(f"            <HELDDATE>{held_date}</HELDDATE>")
        lines.append("        </ORDER>")
        lines.append("    </STATUS>")
        out.append("\n".join(lines))
    return out


def xml_filename(update_type: str, now: datetime, index: int) -> str:
    stamp = now.strftime("%d%m%Y%H%M%S")
    if index > 0:
        return f"{BUYER_REFERENCE}_ORDER_{update_type}-{stamp}_Part{index + 1}.xml"
    return f"{BUYER_REFERENCE}_ORDER_{update_type}-{stamp}.xml"


def build_xml_file(statuses: List[str], data_type: str) -> str:
    lines = [
        "<STATUSES>",
        f"    <SENDERADDRESS>{SENDER_ADDRESS}</SENDERADDRESS>",
        f"    <DATATYPE>{xml_escape(data_type)}</DATATYPE>",
    ]
    lines.extend(statuses)
    lines.append("</STATUSES>")
    return "\n".join(lines)


def format_xml(
    cohort: List[Order],
    config: NotificationConfig,
    ctx: ProcessingContext,
    now: Optional[datetime] = None,
    max_per_file: int = MAX_STATUSES_PER_FILE,
) -> FormattedOutput:
    now = now or datetime.now()
    seen: Set[str] = set()
    statuses: List[str] = []
    for order in cohort:
        statuses.extend(build_status_elements(order, config, seen, now))
    logger.info("XML generated: %s STATUS elements from %s orders", len(statuses), len(cohort))

    order_ids = tuple(o.order_id for o in cohort)
    tracking = _tracking_ids(cohort, config, ctx)
    docs: List[OutputDocument] = []
    for index, start in enumerate(range(0, len(statuses), max_per_file)):
        chunk = statuses[start : start + max_per_file]
        content = build_xml_file(chunk, config.xml_data_type)
        name = xml_filename(config.xml_update_type, now, index)
        logger.info("XML file built: %s with %s statuses (%s bytes)", name, len(chunk), len(content))
        docs.append(
            OutputDocument(
                content=content,
                filename=name,
                order_ids=order_ids,
                tracking_order_ids=tracking,
                status_count=len(chunk),
            )
        )
    if not docs:
        logger.info("No unique order numbers to output in XML.")
    return FormattedOutput(documents=docs, order_ids=order_ids, tracking_order_ids=tracking, is_xml=True)


def format_documents(
    cohort: List[Order],
    config: NotificationConfig,
    ctx: ProcessingContext,
    now: Optional[datetime] = None,
) -> FormattedOutput:
    if ctx.is_xml_mode:
        return format_xml(cohort, config, ctx, now=now)
    return format_csv(cohort, config, ctx, now=now)
