import re

import pytest

from conftest import make_po, make_product, make_supplier
from material_store.core.exceptions import InvalidStateError, NotFoundError
from material_store.crud import crud_notification, crud_purchase_order
from material_store.models.base import (
    Notification, NotificationType, PriceHistory, Product, PurchaseOrder, StockMovement
)
from material_store.schemas.schemas import POItemCreate, PurchaseOrderUpdate, ReceivedItemIn


@pytest.fixture()
def stocked(db, admin):
    supplier = make_supplier(db)
    cement = make_product(db, "Semen Gresik", sku="SMN-001", stock=10, buy_price=50000, sell_price=55000)
    rebar = make_product(db, "Besi 10mm", sku="BSI-010", stock=0, buy_price=80000, sell_price=90000)
    po = make_po(db, supplier, [(cement, 5, 50000), (rebar, 3, 85000)], user_id=admin.id)
    return {"supplier": supplier, "cement": cement, "rebar": rebar, "po": po}


def _movements(db, po_id):
    return db.query(StockMovement).filter(StockMovement.reference_type == "PO",
                                          StockMovement.reference_id == po_id).all()


# =============================================================================
# DRAFT LIFECYCLE
# =============================================================================

def test_create_computes_totals_and_number(db, stocked):
    po = stocked["po"]
    assert po.status == "DRAFT"
    assert re.match(r"^PO-\d{8}-0001$", po.po_number)
    assert [i.subtotal for i in po.items] == [250000, 255000]
    assert po.total_amount == 505000


def test_po_numbers_increment_within_a_day(db, stocked, admin):
    second = make_po(db, stocked["supplier"], [(stocked["cement"], 1, 50000)], user_id=admin.id)
    assert second.po_number.endswith("-0002")
    assert second.po_number[:12] == stocked["po"].po_number[:12]


def test_update_replaces_items_while_draft(db, stocked, admin):
    po = crud_purchase_order.update_purchase_order(
        db, stocked["po"].id,
        PurchaseOrderUpdate(items=[POItemCreate(product_id=stocked["cement"].id, quantity=2, price=49000)]),
        admin.id
    )
    assert len(po.items) == 1
    assert po.total_amount == 98000


def test_update_rejected_after_sending(db, stocked, admin):
    crud_purchase_order.send_purchase_order(db, stocked["po"].id, admin.id)
    with pytest.raises(InvalidStateError):
        crud_purchase_order.update_purchase_order(db, stocked["po"].id, PurchaseOrderUpdate(notes="late"), admin.id)


def test_send_only_from_draft(db, stocked, admin):
    po = crud_purchase_order.send_purchase_order(db, stocked["po"].id, admin.id)
    assert po.status == "SENT"
    with pytest.raises(InvalidStateError):
        crud_purchase_order.send_purchase_order(db, po.id, admin.id)


def test_missing_po_is_not_found(db):
    with pytest.raises(NotFoundError):
        crud_purchase_order.receive_purchase_order(db, 999)

# =============================================================================
# RECEIVING
# =============================================================================

@pytest.mark.parametrize("send_first", [False, True])
def test_receive_without_overrides_adds_ordered_quantities(db, stocked, admin, send_first):
    po_id = stocked["po"].id
    if send_first:
        crud_purchase_order.send_purchase_order(db, po_id, admin.id)

    po = crud_purchase_order.receive_purchase_order(db, po_id, None, admin.id)

    assert po.status == "RECEIVED"
    assert po.received_at is not None
    assert [i.received_qty for i in po.items] == [5, 3]
    assert db.get(Product, stocked["cement"].id).stock == 15
    assert db.get(Product, stocked["rebar"].id).stock == 3

    movements = _movements(db, po_id)
    assert len(movements) == 2
    by_product = {m.product_id: m for m in movements}
    cement_move = by_product[stocked["cement"].id]
    assert (cement_move.type, cement_move.quantity, cement_move.previous_stock, cement_move.new_stock) == ("IN", 5, 10, 15)
    rebar_move = by_product[stocked["rebar"].id]
    assert (rebar_move.quantity, rebar_move.previous_stock, rebar_move.new_stock) == (3, 0, 3)


def test_receive_records_price_history_only_for_changed_prices(db, stocked, admin):
    crud_purchase_order.receive_purchase_order(db, stocked["po"].id, None, admin.id)

    histories = db.query(PriceHistory).all()
    assert len(histories) == 1
    history = histories[0]
    assert history.product_id == stocked["rebar"].id
    assert (history.old_buy, history.new_buy) == (80000, 85000)
    assert history.old_sell == history.new_sell == 90000
    assert history.changed_by == admin.id

    assert db.get(Product, stocked["rebar"].id).buy_price == 85000
    assert db.get(Product, stocked["cement"].id).buy_price == 50000


def test_receive_honours_per_item_overrides(db, stocked, admin):
    po = stocked["po"]
    rebar_item = next(i for i in po.items if i.product_id == stocked["rebar"].id)

    po = crud_purchase_order.receive_purchase_order(
        db, po.id, [ReceivedItemIn(item_id=rebar_item.id, received_qty=1)], admin.id
    )

    assert db.get(Product, stocked["rebar"].id).stock == 1
    assert db.get(Product, stocked["cement"].id).stock == 15
    assert {i.product_id: i.received_qty for i in po.items} == {
        stocked["cement"].id: 5, stocked["rebar"].id: 1
    }


@pytest.mark.parametrize("close", ["receive", "cancel"])
def test_receive_rejects_closed_orders_without_side_effects(db, stocked, admin, close):
    po_id = stocked["po"].id
    if close == "receive":
        crud_purchase_order.receive_purchase_order(db, po_id, None, admin.id)
    else:
        crud_purchase_order.cancel_purchase_order(db, po_id, admin.id)

    stock_before = {p.id: p.stock for p in db.query(Product).all()}
    movements_before = db.query(StockMovement).count()
    history_before = db.query(PriceHistory).count()
    status_before = db.get(PurchaseOrder, po_id).status

    with pytest.raises(InvalidStateError):
        crud_purchase_order.receive_purchase_order(db, po_id, None, admin.id)

    assert {p.id: p.stock for p in db.query(Product).all()} == stock_before
    assert db.query(StockMovement).count() == movements_before
    assert db.query(PriceHistory).count() == history_before
    assert db.get(PurchaseOrder, po_id).status == status_before


def test_receive_same_product_on_two_lines(db, stocked, admin):
    cement = stocked["cement"]
    po = make_po(db, stocked["supplier"], [(cement, 5, 50000), (cement, 2, 52000)], user_id=admin.id)

    crud_purchase_order.receive_purchase_order(db, po.id, None, admin.id)

    assert db.get(Product, cement.id).stock == 17
    assert db.get(Product, cement.id).buy_price == 52000
    steps = sorted((m.previous_stock, m.new_stock) for m in _movements(db, po.id))
    assert steps == [(10, 15), (15, 17)]
    history = db.query(PriceHistory).one()
    assert (history.product_id, history.old_buy, history.new_buy) == (cement.id, 50000, 52000)


def test_failed_line_rolls_back_the_whole_receipt(db, stocked, admin, monkeypatch):
    cement, rebar = stocked["cement"], stocked["rebar"]
    # the repriced line comes first so its price history row is pending when the next line fails
    po = make_po(db, stocked["supplier"], [(rebar, 3, 85000), (cement, 5, 50000)], user_id=admin.id)
    real_apply = crud_purchase_order.apply_movement
    calls = []

    def fail_on_second(*args, **kwargs):
        calls.append(args)
        if len(calls) == 2:
            raise RuntimeError("disk full")
        return real_apply(*args, **kwargs)

    monkeypatch.setattr(crud_purchase_order, "apply_movement", fail_on_second)

    with pytest.raises(RuntimeError):
        crud_purchase_order.receive_purchase_order(db, po.id, None, admin.id)

    assert db.get(Product, rebar.id).stock == 0
    assert db.get(Product, rebar.id).buy_price == 80000
    assert db.get(Product, cement.id).stock == 10
    assert _movements(db, po.id) == []
    assert db.query(PriceHistory).count() == 0
    reloaded = db.get(PurchaseOrder, po.id)
    assert reloaded.status == "DRAFT"
    assert reloaded.received_at is None
    assert [i.received_qty for i in reloaded.items] == [0, 0]


def test_cancel_only_open_orders(db, stocked, admin):
    crud_purchase_order.receive_purchase_order(db, stocked["po"].id, None, admin.id)
    with pytest.raises(InvalidStateError):
        crud_purchase_order.cancel_purchase_order(db, stocked["po"].id, admin.id)


def test_receive_notifies_admins(db, stocked, admin):
    crud_purchase_order.receive_purchase_order(db, stocked["po"].id, None, admin.id)

    notes = db.query(Notification).filter(Notification.user_id == admin.id).all()
    assert len(notes) == 1
    assert notes[0].type == NotificationType.PO_RECEIVED.value
    assert stocked["po"].po_number in notes[0].message
    assert "Rp 505.000" in notes[0].message
    # admin has a phone number, so the message counts as dispatched
    assert notes[0].status == "SENT"


def test_notification_failure_keeps_the_receipt(db, stocked, admin, monkeypatch, caplog):
    def broken(*args, **kwargs):
        raise RuntimeError("gateway down")

    monkeypatch.setattr(crud_notification, "notify_admins", broken)

    po = crud_purchase_order.receive_purchase_order(db, stocked["po"].id, None, admin.id)

    assert po.status == "RECEIVED"
    assert db.get(Product, stocked["cement"].id).stock == 15
    assert len(_movements(db, po.id)) == 2
    assert db.query(Notification).count() == 0
    assert "gateway down" in caplog.text

# =============================================================================
# API
# =============================================================================

def test_receive_endpoint_roles_and_repeat(client, db, stocked, operator_headers, viewer_headers):
    po_id = stocked["po"].id

    r = client.put(f"/api/purchase-orders/{po_id}/receive", headers=viewer_headers)
    assert r.status_code == 403

    r = client.put(f"/api/purchase-orders/{po_id}/receive", headers=operator_headers)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["status"] == "RECEIVED"
    assert body["supplier"]["name"] == stocked["supplier"].name

    r = client.put(f"/api/purchase-orders/{po_id}/receive", headers=operator_headers)
    assert r.status_code == 400
    assert r.json()["success"] is False


def test_receive_endpoint_with_override_body(client, db, stocked, admin_headers):
    po = stocked["po"]
    cement_item = next(i for i in po.items if i.product_id == stocked["cement"].id)

    r = client.put(f"/api/purchase-orders/{po.id}/receive", headers=admin_headers,
                   json={"items": [{"item_id": cement_item.id, "received_qty": 2}]})
    assert r.status_code == 200, r.text
    assert db.get(Product, stocked["cement"].id).stock == 12


def test_cancel_requires_admin(client, stocked, operator_headers, admin_headers):
    po_id = stocked["po"].id
    assert client.put(f"/api/purchase-orders/{po_id}/cancel", headers=operator_headers).status_code == 403
    r = client.put(f"/api/purchase-orders/{po_id}/cancel", headers=admin_headers)
    assert r.status_code == 200
    assert r.json()["status"] == "CANCELLED"


def test_create_and_list_via_api(client, db, operator_headers):
    supplier = make_supplier(db)
    product = make_product(db, "Cat Avian 5kg", sku="CAT-005")

    r = client.post("/api/purchase-orders/", headers=operator_headers, json={
        "supplier_id": supplier.id,
        "items": [{"product_id": product.id, "quantity": 4, "price": 120000}],
    })
    assert r.status_code == 201, r.text
    assert r.json()["total_amount"] == 480000

    r = client.get("/api/purchase-orders/?status=DRAFT", headers=operator_headers)
    assert r.status_code == 200
    page = r.json()
    assert page["pagination"]["total"] == 1
    assert page["data"][0]["po_number"].startswith("PO-")


def test_create_requires_at_least_one_item(client, db, operator_headers):
    supplier = make_supplier(db)
    r = client.post("/api/purchase-orders/", headers=operator_headers,
                    json={"supplier_id": supplier.id, "items": []})
    assert r.status_code == 422
