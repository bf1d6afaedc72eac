from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

TRUE_VALUE = "TRUE"
EMPTY_GUID = "00000000-0000-0000-0000-000000000000"


def _str(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_datetime(raw: Any) -> Optional[datetime]:
    """
    Parse a vendor timestamp.

    Accepts ISO strings with or without "Z" and fractional seconds. The vendor
    encodes "no date" as year 1 (DateTime.MinValue); that maps to None.
    """
    if isinstance(raw, datetime):
        dt = raw
    else:
        s = _str(raw).strip()
        if not s:
            return None
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        # the API emits 7 fractional digits, fromisoformat wants at most 6
        if "." in s:
            head, _, tail = s.partition(".")
            digits = ""
            rest = ""
            for i, ch in enumerate(tail):
                if not ch.isdigit():
                    rest = tail[i:]
                    break
                digits += ch
            s = f"{head}.{digits[:6].ljust(6, '0')}{rest}"
        try:
            dt = datetime.fromisoformat(s)
        except ValueError:
            return None
    if dt.year <= 1:
        return None
    return dt


def format_datetime(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


@dataclass(frozen=True)
class ExtendedProperty:
    name: str
    value: str
    row_id: str = EMPTY_GUID
    type: str = "Order"

    @classmethod
    def from_payload(cls, p: Dict[str, Any]) -> "ExtendedProperty":
        return cls(
            name=_str(p.get("Name")),
            value=_str(p.get("Value")),
            row_id=_str(p.get("RowId")) or EMPTY_GUID,
            type=_str(p.get("Type")) or "Order",
        )

    def to_payload(self) -> Dict[str, Any]:
        return {"RowId": self.row_id, "Name": self.name, "Value": self.value, "Type": self.type}


def find_property(props: Tuple[ExtendedProperty, ...] | List[ExtendedProperty], name: str) -> Optional[ExtendedProperty]:
    wanted = (name or "").casefold()
    for p in props or ():
        if p.name.casefold() == wanted:
            return p
    return None


def upsert_property(
    props: Tuple[ExtendedProperty, ...] | List[ExtendedProperty], name: str, value: str
) -> List[ExtendedProperty]:
    """
    Return a new property list where `name` carries `value`.

    The first case-insensitive match keeps its row id, type and stored name and
    only gets a new value; without a match a fresh entry is appended. Every
    other property is returned untouched and in its original position.
    """
    out = list(props or ())
    wanted = (name or "").casefold()
    for i, p in enumerate(out):
        if p.name.casefold() == wanted:
            out[i] = replace(p, value=value)
            return out
    out.append(ExtendedProperty(name=name, value=value))
    return out


@dataclass(frozen=True)
class OrderItem:
    item_id: str = EMPTY_GUID
    stock_item_id: str = EMPTY_GUID
    sku: str = ""
    channel_sku: str = ""
    title: str = ""
    quantity: int = 0
    price_per_unit: float = 0.0
    discount: float = 0.0
    tax_rate: float = 0.0
    weight: float = 0.0
    item_number: str = ""

    @classmethod
    def from_payload(cls, p: Dict[str, Any]) -> "OrderItem":
        return cls(
            item_id=_str(p.get("ItemId")) or EMPTY_GUID,
            stock_item_id=_str(p.get("StockItemId")) or EMPTY_GUID,
            sku=_str(p.get("SKU")),
            channel_sku=_str(p.get("ChannelSKU")),
            title=_str(p.get("Title")),
            quantity=_int(p.get("Quantity")),
            price_per_unit=_float(p.get("PricePerUnit")),
            discount=_float(p.get("DiscountValue", p.get("Discount"))),
            tax_rate=_float(p.get("TaxRate")),
            weight=_float(p.get("Weight")),
            item_number=_str(p.get("ItemNumber")),
        )

    @property
    def is_linked(self) -> bool:
        return self.item_id != EMPTY_GUID and bool(self.sku.strip())


@dataclass(frozen=True)
class ShippingInfo:
    postal_service_name: str = ""
    total_weight: float = 0.0
    tracking_number: str = ""
    postage_cost_ex_tax: float = 0.0

    @classmethod
    def from_payload(cls, p: Dict[str, Any]) -> "ShippingInfo":
        return cls(
            postal_service_name=_str(p.get("PostalServiceName")),
            total_weight=_float(p.get("TotalWeight")),
            tracking_number=_str(p.get("TrackingNumber")),
            postage_cost_ex_tax=_float(p.get("PostageCostExTax")),
        )


@dataclass(frozen=True)
class Address:
    full_name: str = ""
    company: str = ""
    address1: str = ""
    address2: str = ""
    address3: str = ""
    town: str = ""
    region: str = ""
    postcode: str = ""
    country: str = ""
    country_code: str = ""
    phone: str = ""
    email: str = ""

    @classmethod
    def from_payload(cls, p: Dict[str, Any]) -> "Address":
        return cls(
            full_name=_str(p.get("FullName")),
            company=_str(p.get("Company")),
            address1=_str(p.get("Address1")),
            address2=_str(p.get("Address2")),
            address3=_str(p.get("Address3")),
            town=_str(p.get("Town")),
            region=_str(p.get("Region")),
            postcode=_str(p.get("PostCode")),
            country=_str(p.get("Country")),
            country_code=_str(p.get("CountryCode")),
            phone=_str(p.get("PhoneNumber")),
            email=_str(p.get("EmailAddress")),
        )

    def require_country_code(self) -> str:
        code = self.country_code.strip()
        if not code:
            raise ValueError(f"Address for {self.full_name or 'unknown customer'} has no CountryCode")
        return code


@dataclass(frozen=True)
class Order:
    order_id: str
    num_order_id: int = 0
    reference_num: str = ""
    secondary_reference: str = ""
    external_reference: str = ""
    source: str = ""
    sub_source: str = ""
    folders: Tuple[str, ...] = ()
    status: int = 0
    is_parked: bool = False
    is_locked: bool = False
    marker: Optional[int] = None
    received_date: Optional[datetime] = None
    despatch_by_date: Optional[datetime] = None
    processed_date: Optional[datetime] = None
    num_items: int = 0
    fulfilment_location_id: str = EMPTY_GUID
    items: Tuple[OrderItem, ...] = ()
    shipping: ShippingInfo = field(default_factory=ShippingInfo)
    address: Address = field(default_factory=Address)
    extended_properties: Tuple[ExtendedProperty, ...] = ()

    @classmethod
    def from_payload(cls, p: Dict[str, Any]) -> "Order":
        general = p.get("GeneralInfo") or {}
        customer = p.get("CustomerInfo") or {}
        folders = p.get("FolderName") or []
        if isinstance(folders, str):
            folders = [folders]
        marker_raw = general.get("Marker")
        return cls(
            order_id=_str(p.get("OrderId")),
            num_order_id=_int(p.get("NumOrderId")),
            reference_num=_str(general.get("ReferenceNum")),
            secondary_reference=_str(general.get("SecondaryReference")),
            external_reference=_str(general.get("ExternalReferenceNum")),
            source=_str(general.get("Source")),
            sub_source=_str(general.get("SubSource")),
            folders=tuple(_str(f) for f in folders if f is not None),
            status=_int(general.get("Status")),
            is_parked=bool(general.get("IsParked")),
            is_locked=bool(general.get("Locked")),
            marker=_int(marker_raw) if marker_raw is not None else None,
            received_date=parse_datetime(general.get("ReceivedDate")),
            despatch_by_date=parse_datetime(general.get("DespatchByDate")),
            processed_date=parse_datetime(p.get("ProcessedDateTime")),
            num_items=_int(general.get("NumItems")),
            fulfilment_location_id=_str(p.get("FulfilmentLocationId")) or EMPTY_GUID,
            items=tuple(OrderItem.from_payload(i) for i in (p.get("Items") or []) if isinstance(i, dict)),
            shipping=ShippingInfo.from_payload(p.get("ShippingInfo") or {}),
            address=Address.from_payload(customer.get("Address") or {}),
            extended_properties=tuple(
                ExtendedProperty.from_payload(e) for e in (p.get("ExtendedProperties") or []) if isinstance(e, dict)
            ),
        )

    def extended_property(self, name: str) -> str:
        prop = find_property(self.extended_properties, name)
        return prop.value if prop is not None else ""

    def has_flag(self, name: str) -> bool:
        if not name:
            return False
        return self.extended_property(name).strip().upper() == TRUE_VALUE

    def in_folder(self, folder: str, *, ignore_case: bool = True) -> bool:
        if not folder:
            return False
        if ignore_case:
            wanted = folder.casefold()
            return any(f.casefold() == wanted for f in self.folders)
        return folder in self.folders


@dataclass(frozen=True)
class OrderNote:
    note: str
    order_id: str = EMPTY_GUID
    note_id: str = EMPTY_GUID
    note_date: Optional[datetime] = None
    internal: bool = False
    created_by: str = ""
    note_type_id: Optional[int] = None

    @classmethod
    def from_payload(cls, p: Dict[str, Any]) -> "OrderNote":
        type_id = p.get("NoteTypeId")
        return cls(
            note=_str(p.get("Note")),
            order_id=_str(p.get("OrderId")) or EMPTY_GUID,
            note_id=_str(p.get("OrderNoteId")) or EMPTY_GUID,
            note_date=parse_datetime(p.get("NoteDate")),
            internal=bool(p.get("Internal")),
            created_by=_str(p.get("CreatedBy")),
            note_type_id=_int(type_id) if type_id is not None else None,
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "OrderNoteId": self.note_id,
            "OrderId": self.order_id,
            "NoteDate": format_datetime(self.note_date),
            "Internal": self.internal,
            "Note": self.note,
            "CreatedBy": self.created_by,
            "NoteTypeId": self.note_type_id,
        }


@dataclass(frozen=True)
class StockLevel:
    available: float
    in_orders: float = 0.0
    stock_level: float = 0.0

    @classmethod
    def from_payload(cls, p: Dict[str, Any]) -> "StockLevel":
        level = p.get("StockLevel") if isinstance(p.get("StockLevel"), dict) else p
        return cls(
            available=_float(level.get("Available")),
            in_orders=_float(level.get("InOrders")),
            stock_level=_float(level.get("StockLevel")),
        )
