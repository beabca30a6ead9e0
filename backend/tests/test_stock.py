import pytest

from conftest import make_category, make_product
from material_store.core.exceptions import BusinessRuleError, InvalidStateError, NotFoundError
from material_store.crud import crud_stock
from material_store.models.base import AuditLog, Product, StockMovement


def test_in_and_out_movements(db, operator):
    product = make_product(db, stock=5)

    incoming = crud_stock.add_movement(db, product.id, 7, "IN", notes="Retur", user_id=operator.id)
    assert (incoming.previous_stock, incoming.new_stock) == (5, 12)

    outgoing = crud_stock.add_movement(db, product.id, 2, "OUT", user_id=operator.id)
    assert (outgoing.previous_stock, outgoing.new_stock, outgoing.quantity) == (12, 10, 2)
    assert crud_stock.get_current_stock(db, product.id) == 10


def test_out_movement_cannot_go_negative(db):
    product = make_product(db, stock=1)
    with pytest.raises(BusinessRuleError):
        crud_stock.add_movement(db, product.id, 2, "OUT")
    assert db.get(Product, product.id).stock == 1
    assert db.query(StockMovement).count() == 0


def test_unknown_product(db):
    with pytest.raises(NotFoundError):
        crud_stock.get_current_stock(db, 404)


def test_adjustment_sets_absolute_stock_and_records_delta(db, admin):
    product = make_product(db, stock=20)

    movement = crud_stock.adjust_stock(db, product.id, 17, notes="Rusak kena hujan", user_id=admin.id)

    assert movement.type == "ADJUSTMENT"
    assert movement.reference_type == "MANUAL"
    assert movement.quantity == -3
    assert db.get(Product, product.id).stock == 17
    audit = db.query(AuditLog).filter(AuditLog.entity == "products").one()
    assert audit.old_data["stock"] == 20
    assert audit.new_data["stock"] == 17


def test_low_stock_listing(db):
    make_product(db, "A", sku="A", stock=1, min_stock=5)
    make_product(db, "B", sku="B", stock=5, min_stock=5)
    make_product(db, "C", sku="C", stock=0, min_stock=2)

    assert [p.name for p in crud_stock.check_low_stock(db)] == ["C", "A"]


def test_stock_history_filters_by_product_and_type(db):
    first = make_product(db, "A", sku="A", stock=10)
    second = make_product(db, "B", sku="B", stock=10)
    crud_stock.add_movement(db, first.id, 1, "OUT")
    crud_stock.add_movement(db, first.id, 3, "IN")
    crud_stock.add_movement(db, second.id, 2, "OUT")

    rows, total, _, _ = crud_stock.get_stock_history(db, product_id=first.id)
    assert total == 2
    rows, total, _, _ = crud_stock.get_stock_history(db, movement_type="OUT")
    assert total == 2
    assert {r.product_id for r in rows} == {first.id, second.id}

# =============================================================================
# STOCK OPNAME
# =============================================================================

def test_opname_books_differences_on_completion(db, admin):
    semen = make_category(db, "Semen")
    counted_less = make_product(db, "A", sku="A", stock=10, category_id=semen.id)
    unchanged = make_product(db, "B", sku="B", stock=4, category_id=semen.id)
    make_product(db, "Other", sku="O", stock=3)

    opname = crud_stock.create_opname(db, notes="Akhir bulan", category_id=semen.id, user_id=admin.id)
    assert opname.opname_number.startswith("OPN-")
    assert len(opname.items) == 2

    item = next(i for i in opname.items if i.product_id == counted_less.id)
    item = crud_stock.update_opname_item(db, opname.id, item.id, 7)
    assert item.difference == -3

    opname, adjustments = crud_stock.complete_opname(db, opname.id, admin.id)

    assert opname.status == "COMPLETED"
    assert opname.completed_at is not None
    assert len(adjustments) == 1
    assert adjustments[0].type == "OPNAME"
    assert adjustments[0].quantity == -3
    assert db.get(Product, counted_less.id).stock == 7
    assert db.get(Product, unchanged.id).stock == 4


def test_completed_opname_is_frozen(db, admin):
    product = make_product(db, stock=2)
    opname = crud_stock.create_opname(db, user_id=admin.id)
    crud_stock.complete_opname(db, opname.id, admin.id)

    with pytest.raises(InvalidStateError):
        crud_stock.update_opname_item(db, opname.id, opname.items[0].id, 5)
    with pytest.raises(InvalidStateError):
        crud_stock.complete_opname(db, opname.id, admin.id)
    assert db.get(Product, product.id).stock == 2


def test_two_opnames_in_the_same_second_get_distinct_numbers(db, admin):
    make_product(db, stock=1)
    first = crud_stock.create_opname(db, user_id=admin.id)
    second = crud_stock.create_opname(db, user_id=admin.id)
    assert first.opname_number != second.opname_number

# =============================================================================
# API
# =============================================================================

def test_adjust_endpoint_is_admin_only(client, db, admin_headers, operator_headers):
    product = make_product(db, stock=3)
    payload = {"product_id": product.id, "quantity": 9}

    assert client.post("/api/stock/adjust", json=payload, headers=operator_headers).status_code == 403
    r = client.post("/api/stock/adjust", json=payload, headers=admin_headers)
    assert r.status_code == 200, r.text
    assert r.json()["new_stock"] == 9


def test_stock_listing_endpoint(client, db, viewer_headers):
    make_product(db, "A", sku="A", stock=1, min_stock=5)
    make_product(db, "B", sku="B", stock=9, min_stock=5)

    r = client.get("/api/stock/?low_stock=true", headers=viewer_headers)
    assert r.status_code == 200
    assert [p["name"] for p in r.json()["data"]] == ["A"]

    r = client.get("/api/stock/movements", headers=viewer_headers)
    assert r.status_code == 200
    assert r.json()["pagination"]["total"] == 0
