from __future__ import annotations

from scripts.stock_check import (
    INSUFFICIENT_NOTE,
    SUFFICIENT_NOTE,
    StockCheckOptions,
    drop_unknown_skus,
    has_sufficient_stock,
    route_order,
    run_stock_check,
)
from services.linnworks.models import EMPTY_GUID, StockLevel
from tests.factories import make_item, make_order

WAREHOUSE = "7c9e6679-7425-40de-944b-e07fc1f90ae7"


def _order(num, *, stock_item_id="S1", quantity=1, eps=None, **kw):
    items = [make_item(f"ON{num}", stock_item_id=stock_item_id, quantity=quantity)]
    return make_order(num, items=items, eps=eps, **kw)


def test_route_order_covers_every_outcome():
    opts = StockCheckOptions()
    back_order = _order(1, eps={"BackOrders": "TRUE"})
    plain = _order(2, eps={})
    needs_update = _order(3, eps={"ChannelUpdatesRequired": "TRUE"})

    assert route_order(back_order, False, opts) == ("Out of Stock", INSUFFICIENT_NOTE)
    assert route_order(plain, False, opts) == ("To Be Cancelled", INSUFFICIENT_NOTE)
    assert route_order(needs_update, True, opts) == ("New", None)
    assert route_order(plain, True, opts) == ("Updated", None)
    assert route_order(plain, True, StockCheckOptions(back_in_stock=True)) == ("Updated", SUFFICIENT_NOTE)


def test_stock_is_checked_per_line(fake_client):
    order = _order(1, quantity=3)
    fake_client.stock[("S1", EMPTY_GUID)] = StockLevel(available=2)

    assert not has_sufficient_stock(fake_client, order)

    fake_client.stock[("S1", EMPTY_GUID)] = StockLevel(available=3)
    assert has_sufficient_stock(fake_client, order)


def test_missing_stock_record_is_insufficient(fake_client):
    assert not has_sufficient_stock(fake_client, _order(1))


def test_location_override(fake_client):
    fake_client.stock[("S1", WAREHOUSE)] = StockLevel(available=10)

    assert has_sufficient_stock(fake_client, _order(1), WAREHOUSE)
    assert fake_client.called("get_stock_level_by_location") == [("S1", WAREHOUSE)]


def test_run_stock_check_routes_and_notes(fake_client):
    in_stock = _order(1, stock_item_id="S1", eps={"ChannelUpdatesRequired": "TRUE"})
    short = _order(2, stock_item_id="S2", eps={})
    parked = _order(3, stock_item_id="S1", is_parked=True)
    fake_client.add(in_stock, short, parked)
    fake_client.stock[("S1", EMPTY_GUID)] = StockLevel(available=5)
    fake_client.stock[("S2", EMPTY_GUID)] = StockLevel(available=0)

    report = run_stock_check(fake_client, [in_stock, short, parked], StockCheckOptions(back_in_stock=True))

    assert (report.checked, report.parked, report.sufficient, report.insufficient) == (2, 1, 1, 1)
    assert fake_client.orders[in_stock.order_id].folders == ("New",)
    assert fake_client.orders[short.order_id].folders == ("To Be Cancelled",)
    assert fake_client.orders[parked.order_id].folders == ("New",)
    assert [n.note for n in fake_client.notes[in_stock.order_id]] == [SUFFICIENT_NOTE]
    assert [n.note for n in fake_client.notes[short.order_id]] == [INSUFFICIENT_NOTE]
    assert fake_client.notes[short.order_id][0].created_by == "Rules Engine"


def test_no_note_for_sufficient_orders_outside_back_in_stock_mode(fake_client):
    order = _order(1, eps={})
    fake_client.add(order)
    fake_client.stock[("S1", EMPTY_GUID)] = StockLevel(available=1)

    run_stock_check(fake_client, [order], StockCheckOptions())

    assert fake_client.orders[order.order_id].folders == ("Updated",)
    assert order.order_id not in fake_client.notes


def test_failures_are_counted_per_order(fake_client):
    first, second = _order(1, eps={}), _order(2, eps={})
    fake_client.add(first, second)
    fake_client.stock[("S1", EMPTY_GUID)] = StockLevel(available=1)
    fake_client.fail("assign_to_folder", first.order_id)
    fake_client.fail("set_order_notes", second.order_id)

    report = run_stock_check(fake_client, [first, second], StockCheckOptions(back_in_stock=True))

    assert report.failed == 1
    assert report.tally.failed_ids == [first.order_id]
    assert fake_client.orders[second.order_id].folders == ("Updated",)


def test_unknown_skus_are_dropped():
    known = make_item("ON1", sku="SKU-1")
    unknown = make_item("ON1", sku="", item_id=EMPTY_GUID)
    mixed = make_order(1, items=[known, unknown])
    only_unknown = make_order(2, items=[make_item("ON2", sku="")])

    kept = drop_unknown_skus([mixed, only_unknown])

    assert [o.order_id for o in kept] == [mixed.order_id]
    assert kept[0].items == (known,)
