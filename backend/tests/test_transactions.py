import re

import pytest

from conftest import add_product_unit, make_product, make_unit, make_unit_lembaga
from material_store.core.exceptions import BusinessRuleError, InvalidStateError, NotFoundError
from material_store.crud import crud_transaction
from material_store.models.base import (
    Notification, Product, Project, StockMovement, Transaction
)
from material_store.schemas.schemas import TransactionCreate, TransactionItemCreate


def _sale(product, quantity=2, price=55000, **kwargs):
    data = {"type": "CASH", "items": [TransactionItemCreate(product_id=product.id, quantity=quantity, price=price)]}
    data.update(kwargs)
    return TransactionCreate(**data)


def test_cash_sale_totals_and_stock(db, operator):
    product = make_product(db, stock=10)

    trx = crud_transaction.create_transaction(
        db, _sale(product, quantity=2, price=55000, discount=10000, tax=5000, paid_amount=120000), operator.id
    )

    assert re.match(r"^TRX-\d{8}-0001$", trx.transaction_number)
    assert trx.status == "COMPLETED"
    assert trx.paid_at is not None
    assert trx.subtotal == 110000
    assert trx.total == 105000
    assert trx.change_amount == 15000
    assert db.get(Product, product.id).stock == 8

    movement = db.query(StockMovement).filter(StockMovement.reference_type == "TRANSACTION").one()
    assert (movement.type, movement.quantity, movement.previous_stock, movement.new_stock) == ("OUT", 2, 10, 8)
    assert movement.reference_id == trx.id


def test_item_discount_reduces_line_subtotal(db, operator):
    product = make_product(db, stock=5)
    data = TransactionCreate(type="CASH", items=[
        TransactionItemCreate(product_id=product.id, quantity=3, price=1000, discount=500)
    ])
    trx = crud_transaction.create_transaction(db, data, operator.id)
    assert trx.items[0].subtotal == 2500
    assert trx.total == 2500
    assert trx.change_amount == 0


def test_insufficient_stock_rolls_everything_back(db, operator):
    ok = make_product(db, "Paku 5cm", sku="PKU-5", stock=100)
    short = make_product(db, "Semen", sku="SMN", stock=1)
    data = TransactionCreate(type="CASH", items=[
        TransactionItemCreate(product_id=ok.id, quantity=10, price=1000),
        TransactionItemCreate(product_id=short.id, quantity=5, price=55000),
    ])

    with pytest.raises(BusinessRuleError):
        crud_transaction.create_transaction(db, data, operator.id)

    assert db.query(Transaction).count() == 0
    assert db.query(StockMovement).count() == 0
    assert db.get(Product, ok.id).stock == 100
    assert db.get(Product, short.id).stock == 1


def test_sale_in_larger_unit_deducts_base_quantity(db, operator):
    pcs = make_unit(db, "Pieces", "pcs")
    box = make_unit(db, "Dus", "dus")
    product = make_product(db, "Keramik", sku="KRM", stock=30, unit_id=pcs.id)
    add_product_unit(db, product, pcs, 1, is_base=True)
    add_product_unit(db, product, box, 12)

    data = TransactionCreate(type="CASH", items=[
        TransactionItemCreate(product_id=product.id, quantity=2, price=300000, unit_id=box.id)
    ])
    crud_transaction.create_transaction(db, data, operator.id)

    assert db.get(Product, product.id).stock == 6


def test_bon_stays_pending_and_notifies_admins(db, admin, operator):
    product = make_product(db, stock=10)
    trx = crud_transaction.create_transaction(
        db, _sale(product, type="BON", customer_name="Ust. Ahmad"), operator.id
    )

    assert trx.status == "PENDING"
    assert trx.paid_at is None
    note = db.query(Notification).filter(Notification.user_id == admin.id).one()
    assert note.type == "TRANSACTION_BON"
    assert "Ust. Ahmad" in note.message


def test_pay_bon_in_instalments(db, admin, operator):
    product = make_product(db, stock=10)
    trx = crud_transaction.create_transaction(db, _sale(product, quantity=2, price=50000, type="BON"), operator.id)

    trx = crud_transaction.pay_bon(db, trx.id, 40000, operator.id)
    assert trx.status == "PENDING"
    assert trx.paid_amount == 40000

    trx = crud_transaction.pay_bon(db, trx.id, 70000, operator.id)
    assert trx.status == "COMPLETED"
    assert trx.paid_at is not None
    assert trx.change_amount == 10000

    with pytest.raises(InvalidStateError):
        crud_transaction.pay_bon(db, trx.id, 1000, operator.id)


def test_pay_bon_rejects_cash_sales(db, operator):
    product = make_product(db, stock=10)
    trx = crud_transaction.create_transaction(db, _sale(product), operator.id)
    with pytest.raises(BusinessRuleError):
        crud_transaction.pay_bon(db, trx.id, 1000, operator.id)


def test_project_spending_follows_sale_and_cancel(db, admin):
    product = make_product(db, stock=10)
    project = Project(name="Renovasi Masjid", budget=1000000)
    db.add(project)
    db.commit()

    trx = crud_transaction.create_transaction(
        db, _sale(product, quantity=3, price=50000, type="ANGGARAN", project_id=project.id), admin.id
    )
    assert db.get(Project, project.id).spent == 150000

    trx = crud_transaction.cancel_transaction(db, trx.id, admin.id)
    assert trx.status == "CANCELLED"
    assert db.get(Project, project.id).spent == 0
    assert db.get(Product, product.id).stock == 10
    assert db.query(StockMovement).filter(StockMovement.type == "IN").count() == 1

    with pytest.raises(InvalidStateError):
        crud_transaction.cancel_transaction(db, trx.id, admin.id)


def test_unknown_project_is_rejected(db, operator):
    product = make_product(db, stock=10)
    with pytest.raises(NotFoundError):
        crud_transaction.create_transaction(db, _sale(product, project_id=42), operator.id)


def test_transactions_by_unit_lembaga(client, db, operator, operator_headers):
    unit = make_unit_lembaga(db, "Dapur Umum")
    other = make_unit_lembaga(db, "Pondok Putri")
    product = make_product(db, stock=20)
    crud_transaction.create_transaction(db, _sale(product, type="ANGGARAN", unit_lembaga_id=unit.id), operator.id)
    crud_transaction.create_transaction(db, _sale(product, type="ANGGARAN", unit_lembaga_id=other.id), operator.id)

    r = client.get(f"/api/transactions/unit-lembaga/{unit.id}", headers=operator_headers)
    assert r.status_code == 200
    body = r.json()
    assert body["pagination"]["total"] == 1
    assert body["data"][0]["unit_lembaga_id"] == unit.id

    assert client.get("/api/transactions/unit-lembaga/999", headers=operator_headers).status_code == 404


def test_checkout_endpoint(client, db, operator_headers, viewer_headers):
    product = make_product(db, stock=4)
    payload = {"type": "CASH", "paid_amount": 200000,
               "items": [{"product_id": product.id, "quantity": 3, "price": 55000}]}

    assert client.post("/api/transactions/", json=payload, headers=viewer_headers).status_code == 403

    r = client.post("/api/transactions/", json=payload, headers=operator_headers)
    assert r.status_code == 201, r.text
    assert r.json()["change_amount"] == 35000

    r = client.post("/api/transactions/", json=payload, headers=operator_headers)
    assert r.status_code == 400
    assert "Insufficient stock" in r.json()["message"]


def test_invalid_transaction_type_is_a_validation_error(client, db, operator_headers):
    product = make_product(db, stock=4)
    r = client.post("/api/transactions/", headers=operator_headers, json={
        "type": "KREDIT", "items": [{"product_id": product.id, "quantity": 1, "price": 1}]
    })
    assert r.status_code == 422
