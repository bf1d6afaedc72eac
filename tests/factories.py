# tests/factories.py
from __future__ import annotations

import uuid
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional, Sequence

from scripts.channel_config import ProcessingContext
from services.file_delivery import LocalDestination
from services.linnworks.models import ExtendedProperty, Order, OrderItem, ShippingInfo


def make_item(item_number: str = "", *, sku: str = "SKU-1", quantity: int = 1, **kw) -> OrderItem:
    return OrderItem(
        item_id=kw.pop("item_id", str(uuid.uuid4())),
        stock_item_id=kw.pop("stock_item_id", str(uuid.uuid4())),
        sku=sku,
        quantity=quantity,
        item_number=item_number,
        **kw,
    )


def make_order(
    num: int,
    *,
    folders: Sequence[str] = ("New",),
    sub_source: str = "ShopDirect",
    source: str = "DIRECT",
    reference: Optional[str] = None,
    eps: Optional[Dict[str, str]] = None,
    items: Optional[Sequence[OrderItem]] = None,
    item_numbers: Optional[Sequence[str]] = None,
    **kw,
) -> Order:
    """An open, paid order that needs channel updates unless told otherwise."""
    if eps is None:
        eps = {"ChannelUpdatesRequired": "TRUE"}
    if items is None:
        numbers = item_numbers if item_numbers is not None else [f"ON{num}"]
        items = [make_item(n) for n in numbers]
    return Order(
        order_id=kw.pop("order_id", str(uuid.uuid4())),
        num_order_id=num,
        reference_num=reference if reference is not None else f"REF{num:05d}",
        source=source,
        sub_source=sub_source,
        folders=tuple(folders),
        status=kw.pop("status", 1),
        received_date=kw.pop("received_date", datetime(2026, 10, 1, 14, 30)),
        num_items=len(items),
        items=tuple(items),
        shipping=kw.pop("shipping", ShippingInfo(postal_service_name="Courier", total_weight=1.5)),
        extended_properties=tuple(
            ExtendedProperty(name=k, value=v, row_id=str(uuid.uuid4())) for k, v in eps.items()
        ),
        **kw,
    )


def make_ctx(tmp_path: Optional[Path] = None, **kw) -> ProcessingContext:
    kw.setdefault("source", "DIRECT")
    kw.setdefault("sub_source", "ShopDirect")
    kw.setdefault("new_folder", "New")
    if tmp_path is not None:
        kw.setdefault("local_destination", LocalDestination(tmp_path))
    return ProcessingContext(**kw)
