from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

import requests

from services.linnworks.models import (
    EMPTY_GUID,
    ExtendedProperty,
    Order,
    OrderNote,
    StockLevel,
)

logger = logging.getLogger(__name__)

DEFAULT_AUTH_URL = "https://api.linnworks.net"
DEFAULT_TIMEOUT_SEC = 30


class LinnworksApiError(RuntimeError):
    def __init__(self, method: str, reason: str, status_code: int | None = None):
        super().__init__(f"{method}: {reason}")
        self.method = method
        self.reason = reason
        self.status_code = status_code


class LinnworksClient:
    """
    Thin wrapper around the Linnworks v1 REST API.

    Every call is a JSON POST to {server}/api/{Controller}/{Method} carrying the
    session token in the Authorization header. The session token and server are
    obtained lazily through AuthorizeByApplication.
    """

    def __init__(
        self,
        application_id: str,
        application_secret: str,
        token: str,
        *,
        auth_url: str = DEFAULT_AUTH_URL,
        timeout_sec: int = DEFAULT_TIMEOUT_SEC,
        session: Optional[requests.Session] = None,
    ):
        self.application_id = application_id
        self.application_secret = application_secret
        self.token = token
        self.auth_url = auth_url.rstrip("/")
        self.timeout_sec = timeout_sec
        self.session = session or requests.Session()
        self.session.headers.update({"accept": "application/json"})
        self._session_token: Optional[str] = None
        self._server: Optional[str] = None

    # --- transport ---

    def authorize(self) -> None:
        url = f"{self.auth_url}/api/Auth/AuthorizeByApplication"
        payload = {
            "ApplicationId": self.application_id,
            "ApplicationSecret": self.application_secret,
            "Token": self.token,
        }
        body = self._post(url, payload, "Auth/AuthorizeByApplication", authorized=False)
        if not isinstance(body, dict) or not body.get("Token") or not body.get("Server"):
            raise LinnworksApiError("Auth/AuthorizeByApplication", "response has no Token/Server")
        self._session_token = str(body["Token"])
        self._server = str(body["Server"]).rstrip("/")
        logger.info("Linnworks session authorized server=%s", self._server)

    def call(self, method: str, payload: Dict[str, Any]) -> Any:
        if not self._session_token or not self._server:
            self.authorize()
        url = f"{self._server}/api/{method}"
        return self._post(url, payload, method, authorized=True)

    def _post(self, url: str, payload: Dict[str, Any], method: str, *, authorized: bool) -> Any:
        headers = {"Content-Type": "application/json"}
        if authorized:
            headers["Authorization"] = str(self._session_token)
        try:
            r = self.session.post(url, json=payload, headers=headers, timeout=self.timeout_sec)
        except requests.exceptions.RequestException as e:
            raise LinnworksApiError(method, f"{type(e).__name__}: {e}") from e

        if r.status_code < 200 or r.status_code >= 300:
            raise LinnworksApiError(method, f"HTTP {r.status_code}: {r.text[:500]}", r.status_code)

        if not r.content:
            return None
        try:
            return r.json()
        except ValueError as e:
            raise LinnworksApiError(method, f"invalid JSON response: {r.text[:200]}") from e

    # --- orders ---

    def get_all_open_orders(
        self,
        filters: Dict[str, Any],
        sorting: List[Dict[str, Any]],
        location_id: str = EMPTY_GUID,
        additional_filter: str = "",
    ) -> List[str]:
        body = self.call(
            "Orders/GetAllOpenOrders",
            {
                "filters": filters,
                "sorting": sorting,
                "fulfilmentCenter": location_id or EMPTY_GUID,
                "additionalFilter": additional_filter,
            },
        )
        if not isinstance(body, list):
            raise LinnworksApiError("Orders/GetAllOpenOrders", f"unexpected payload shape: {type(body).__name__}")
        return [str(x) for x in body]

    def search_processed_orders(self, request: Dict[str, Any]) -> Dict[str, Any]:
        body = self.call("ProcessedOrders/SearchProcessedOrders", {"request": request})
        if not isinstance(body, dict):
            raise LinnworksApiError(
                "ProcessedOrders/SearchProcessedOrders", f"unexpected payload shape: {type(body).__name__}"
            )
        return body

    def get_orders_by_id(self, order_ids: Iterable[str]) -> List[Order]:
        ids = [str(x) for x in order_ids]
        if not ids:
            return []
        body = self.call("Orders/GetOrdersById", {"pkOrderIds": ids})
        if not isinstance(body, list):
            raise LinnworksApiError("Orders/GetOrdersById", f"unexpected payload shape: {type(body).__name__}")
        return [Order.from_payload(o) for o in body if isinstance(o, dict)]

    def get_extended_properties(self, order_id: str) -> List[ExtendedProperty]:
        body = self.call("Orders/GetExtendedProperties", {"orderId": order_id})
        return [ExtendedProperty.from_payload(p) for p in (body or []) if isinstance(p, dict)]

    def set_extended_properties(self, order_id: str, props: Iterable[ExtendedProperty]) -> None:
        self.call(
            "Orders/SetExtendedProperties",
            {"orderId": order_id, "extendedProperties": [p.to_payload() for p in props]},
        )

    def assign_to_folder(self, order_ids: Iterable[str], folder: str) -> None:
        self.call("Orders/AssignToFolder", {"orderIds": [str(x) for x in order_ids], "folder": folder})

    def change_order_tag(self, order_ids: Iterable[str], tag: int) -> None:
        self.call("Orders/ChangeOrderTag", {"orderIds": [str(x) for x in order_ids], "tag": int(tag)})

    def cancel_order(
        self,
        order_id: str,
        note: str,
        *,
        fulfilment_center: str = EMPTY_GUID,
        refund: float = 0,
    ) -> None:
        self.call(
            "Orders/CancelOrder",
            {
                "orderId": order_id,
                "fulfilmentCenter": fulfilment_center,
                "refund": refund,
                "note": note,
            },
        )

    def get_order_notes(self, order_id: str) -> List[OrderNote]:
        body = self.call("Orders/GetOrderNotes", {"orderId": order_id})
        return [OrderNote.from_payload(n) for n in (body or []) if isinstance(n, dict)]

    def set_order_notes(self, order_id: str, notes: Iterable[OrderNote]) -> None:
        self.call("Orders/SetOrderNotes", {"orderId": order_id, "orderNotes": [n.to_payload() for n in notes]})

    # --- stock ---

    def get_stock_level_by_location(self, stock_item_id: str, location_id: str) -> Optional[StockLevel]:
        body = self.call(
            "Stock/GetStockLevelByLocation",
            {"request": {"StockItemId": stock_item_id, "LocationId": location_id}},
        )
        if not isinstance(body, dict) or not body:
            return None
        level = body.get("StockLevel")
        if level is None:
            return None
        return StockLevel.from_payload(body)

    # --- email ---

    def generate_free_text_email(self, recipient_ids: Iterable[str], subject: str, body: str) -> List[str]:
        """Send a free text email through the account's mail settings. Returns failed recipients."""
        resp = self.call(
            "Email/GenerateFreeTextEmail",
            {"request": {"ids": [str(x) for x in recipient_ids], "subject": subject, "body": body, "templateType": None}},
        )
        resp = resp or {}
        if resp.get("isComplete"):
            return []
        failed = resp.get("FailedRecipients") or []
        return [str(x) for x in failed] or ["unknown"]
