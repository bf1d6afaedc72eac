# tests/conftest.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import pytest

from services.email_sender.notifier import EmailNotifier
from services.linnworks.client import LinnworksApiError
from services.linnworks.models import ExtendedProperty, Order, OrderNote, StockLevel


class FakeLinnworksClient:
    """
    In-memory stand-in for LinnworksClient.

    Open-order filters are evaluated against the stored orders; processed
    search pages through `processed_ids` (or `cancelled_ids` for the cancelled
    date field). `fail(method, order_id)` makes a method raise
    LinnworksApiError for one order, or always when order_id is None.
    """

    def __init__(self, orders: Iterable[Order] = ()):
        self.orders: Dict[str, Order] = {o.order_id: o for o in orders}
        self.processed_ids: List[str] = []
        self.cancelled_ids: List[str] = []
        self.stock: Dict[Tuple[str, str], StockLevel] = {}
        self.notes: Dict[str, List[OrderNote]] = {}
        self.calls: List[Tuple[str, Any]] = []
        self.batches: List[int] = []
        self.processed_requests: List[Dict[str, Any]] = []
        self.cancelled: List[str] = []
        self.tags: Dict[str, int] = {}
        self.emails: List[Tuple[List[str], str, str]] = []
        self._failures: Dict[str, Set[Optional[str]]] = {}

    # --- test helpers ---

    def add(self, *orders: Order) -> None:
        for o in orders:
            self.orders[o.order_id] = o

    def fail(self, method: str, order_id: Optional[str] = None) -> None:
        self._failures.setdefault(method, set()).add(order_id)

    def _check(self, method: str, order_id: Optional[str] = None) -> None:
        keys = self._failures.get(method, set())
        if None in keys or (order_id is not None and order_id in keys):
            raise LinnworksApiError(method, "HTTP 500: injected failure", 500)

    def ep(self, order_id: str, name: str) -> str:
        return self.orders[order_id].extended_property(name)

    def called(self, method: str) -> List[Any]:
        return [args for m, args in self.calls if m == method]

    # --- order query ---

    def _matches(self, order: Order, filters: Dict[str, Any]) -> bool:
        numeric = {"GENERAL_INFO_STATUS": order.status, "GENERAL_INFO_PARKED": int(order.is_parked),
                   "GENERAL_INFO_LOCKED": int(order.is_locked)}
        for f in filters.get("NumericFields") or []:
            if numeric[f["FieldCode"]] != f["Value"]:
                return False
        for f in filters.get("TextFields") or []:
            if f["FieldCode"] == "GENERAL_INFO_SUBSOURCE" and order.sub_source != f["Text"]:
                return False
        for f in filters.get("ListFields") or []:
            code, value = f["FieldCode"], f["Value"]
            if code == "FOLDER" and not order.in_folder(value):
                return False
            if code == "GENERAL_INFO_SUBSOURCE" and order.sub_source != value:
                return False
            if code == "GENERAL_INFO_TAG" and str(order.marker) != value:
                return False
        return True

    def get_all_open_orders(self, filters, sorting, location_id="", additional_filter="") -> List[str]:
        self.calls.append(("get_all_open_orders", (filters, sorting, location_id)))
        self._check("get_all_open_orders")
        return [o.order_id for o in self.orders.values() if self._matches(o, filters)]

    def search_processed_orders(self, request: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append(("search_processed_orders", request))
        self.processed_requests.append(request)
        self._check("search_processed_orders")
        source = self.cancelled_ids if request["DateField"] == "cancelled" else self.processed_ids
        per_page = request["ResultsPerPage"]
        page = request["PageNumber"]
        chunk = source[(page - 1) * per_page : page * per_page]
        total_pages = (len(source) + per_page - 1) // per_page
        return {
            "ProcessedOrders": {
                "Data": [{"pkOrderID": oid} for oid in chunk],
                "TotalPages": total_pages,
                "TotalEntries": len(source),
            }
        }

    def get_orders_by_id(self, order_ids: Iterable[str]) -> List[Order]:
        ids = list(order_ids)
        self.calls.append(("get_orders_by_id", ids))
        self.batches.append(len(ids))
        for oid in ids:
            self._check("get_orders_by_id", oid)
        return [self.orders[i] for i in ids if i in self.orders]

    # --- mutations ---

    def get_extended_properties(self, order_id: str) -> List[ExtendedProperty]:
        self.calls.append(("get_extended_properties", order_id))
        self._check("get_extended_properties", order_id)
        return list(self.orders[order_id].extended_properties)

    def set_extended_properties(self, order_id: str, props: Iterable[ExtendedProperty]) -> None:
        props = list(props)
        self.calls.append(("set_extended_properties", (order_id, props)))
        self._check("set_extended_properties", order_id)
        self.orders[order_id] = replace(self.orders[order_id], extended_properties=tuple(props))

    def assign_to_folder(self, order_ids: Iterable[str], folder: str) -> None:
        ids = list(order_ids)
        self.calls.append(("assign_to_folder", (ids, folder)))
        for oid in ids:
            self._check("assign_to_folder", oid)
        for oid in ids:
            self.orders[oid] = replace(self.orders[oid], folders=(folder,))

    def change_order_tag(self, order_ids: Iterable[str], tag: int) -> None:
        ids = list(order_ids)
        self.calls.append(("change_order_tag", (ids, tag)))
        for oid in ids:
            self._check("change_order_tag", oid)
            self.tags[oid] = tag

    def cancel_order(self, order_id: str, note: str, *, fulfilment_center: str = "", refund: float = 0) -> None:
        self.calls.append(("cancel_order", (order_id, note)))
        self._check("cancel_order", order_id)
        self.cancelled.append(order_id)

    def get_order_notes(self, order_id: str) -> List[OrderNote]:
        self._check("get_order_notes", order_id)
        return list(self.notes.get(order_id, []))

    def set_order_notes(self, order_id: str, notes: Iterable[OrderNote]) -> None:
        self._check("set_order_notes", order_id)
        self.notes[order_id] = list(notes)

    # --- stock / email ---

    def get_stock_level_by_location(self, stock_item_id: str, location_id: str) -> Optional[StockLevel]:
        self.calls.append(("get_stock_level_by_location", (stock_item_id, location_id)))
        self._check("get_stock_level_by_location", stock_item_id)
        return self.stock.get((stock_item_id, location_id))

    def generate_free_text_email(self, recipient_ids, subject: str, body: str) -> List[str]:
        self._check("generate_free_text_email")
        self.emails.append((list(recipient_ids), subject, body))
        return []


class RecordingNotifier(EmailNotifier):
    def __init__(self):
        self.messages: List[Tuple[str, str]] = []
        super().__init__(lambda subject, body: self.messages.append((subject, body)), label="recording")

    @property
    def subjects(self) -> List[str]:
        return [s for s, _ in self.messages]


@pytest.fixture
def fake_client() -> FakeLinnworksClient:
    return FakeLinnworksClient()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()
