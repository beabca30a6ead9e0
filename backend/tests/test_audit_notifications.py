import pytest

from conftest import make_po, make_product, make_supplier
from material_store.core.exceptions import InvalidStateError
from material_store.crud import crud_audit, crud_catalog, crud_notification, crud_purchase_order
from material_store.models.base import AuditLog, Brand, Notification, Product, PurchaseOrder


# =============================================================================
# AUDIT LOG
# =============================================================================

def test_create_and_update_are_audited(db, admin):
    brand = crud_catalog.create_brand(db, {"name": "Tiga Roda"}, admin.id)
    crud_catalog.update_brand(db, brand.id, {"name": "Tiga Roda Baru"}, admin.id)

    logs = db.query(AuditLog).filter(AuditLog.entity == "brands").order_by(AuditLog.id).all()
    assert [l.action for l in logs] == ["CREATE", "UPDATE"]
    assert logs[0].old_data is None
    assert logs[0].new_data["name"] == "Tiga Roda"
    assert logs[1].old_data["name"] == "Tiga Roda"
    assert logs[1].user_id == admin.id


def test_snapshot_hides_password_hash(admin):
    data = crud_audit.snapshot(admin)
    assert data["username"] == "admin"
    assert "hashed_password" not in data


def test_rollback_restores_previous_values(db, admin):
    brand = crud_catalog.create_brand(db, {"name": "Tiga Roda"}, admin.id)
    crud_catalog.update_brand(db, brand.id, {"name": "Gresik"}, admin.id)
    update_log = db.query(AuditLog).filter(AuditLog.action == "UPDATE").one()

    restored = crud_audit.rollback(db, update_log.id, admin.id)

    assert restored.name == "Tiga Roda"
    assert db.get(Brand, brand.id).name == "Tiga Roda"
    rollback_log = db.query(AuditLog).filter(AuditLog.action == "ROLLBACK").one()
    assert rollback_log.old_data["name"] == "Gresik"


def test_rollback_reactivates_deleted_record(db, admin):
    brand = crud_catalog.create_brand(db, {"name": "Avian"}, admin.id)
    crud_catalog.delete_brand(db, brand.id, admin.id)
    delete_log = db.query(AuditLog).filter(AuditLog.action == "DELETE").one()

    crud_audit.rollback(db, delete_log.id, admin.id)

    assert db.get(Brand, brand.id).is_active is True


def test_received_po_cannot_be_rolled_back(db, admin):
    cement = make_product(db, "Semen", sku="SMN", stock=10)
    po = make_po(db, make_supplier(db), [(cement, 5, 50000)], user_id=admin.id)
    crud_purchase_order.receive_purchase_order(db, po.id, None, admin.id)
    receive_log = db.query(AuditLog).filter(AuditLog.entity == "purchase_orders", AuditLog.action == "UPDATE")\
        .order_by(AuditLog.id.desc()).first()

    with pytest.raises(InvalidStateError):
        crud_audit.rollback(db, receive_log.id, admin.id)
    with pytest.raises(InvalidStateError):
        crud_purchase_order.receive_purchase_order(db, po.id, None, admin.id)

    assert db.get(PurchaseOrder, po.id).status == "RECEIVED"
    assert db.get(Product, cement.id).stock == 15


def test_rollback_leaves_stock_and_buy_price_alone(db, admin):
    product = make_product(db, "Semen Baru", sku="SMN", stock=15, buy_price=52000)
    log = crud_audit.log_audit(db, admin.id, "UPDATE", "products", product.id,
                               old_data={"name": "Semen Lama", "stock": 10, "buy_price": 50000})

    crud_audit.rollback(db, log.id, admin.id)

    restored = db.get(Product, product.id)
    assert restored.name == "Semen Lama"
    assert (restored.stock, restored.buy_price) == (15, 52000)


def test_audit_endpoints(client, db, admin, admin_headers, operator_headers):
    crud_catalog.create_brand(db, {"name": "Tiga Roda"}, admin.id)
    create_log = db.query(AuditLog).one()

    assert client.get("/api/audit-logs/", headers=operator_headers).status_code == 403

    r = client.get("/api/audit-logs/?entity=brands", headers=admin_headers)
    assert r.status_code == 200
    assert r.json()["pagination"]["total"] == 1

    # a CREATE entry has nothing to go back to
    r = client.post(f"/api/audit-logs/{create_log.id}/rollback", headers=admin_headers)
    assert r.status_code == 400
    assert client.get("/api/audit-logs/999", headers=admin_headers).status_code == 404

# =============================================================================
# NOTIFICATIONS
# =============================================================================

def test_rupiah_format():
    assert crud_notification.format_rupiah(1250000) == "Rp 1.250.000"
    assert crud_notification.format_rupiah(0) == "Rp 0"


def test_low_stock_check_notifies_active_admins(db, admin, operator):
    make_product(db, "Semen", sku="SMN", stock=1, min_stock=10)
    make_product(db, "Pasir", sku="PSR", stock=50, min_stock=10)

    result = crud_notification.check_low_stock(db)

    assert result["count"] == 1
    assert result["notified_admins"] == 1
    note = db.query(Notification).one()
    assert note.user_id == admin.id
    assert note.type == "LOW_STOCK"
    assert "Semen (1/10)" in note.message


def test_low_stock_check_without_shortages(db, admin):
    make_product(db, stock=20, min_stock=10)
    assert crud_notification.check_low_stock(db) == {"count": 0, "products": [], "notified_admins": 0}
    assert db.query(Notification).count() == 0


def test_admin_without_phone_keeps_notification_pending(db, admin):
    admin.phone = None
    db.commit()
    notes = crud_notification.notify_admins(db, "Tes", "Pesan", "SYSTEM")
    assert notes[0].status == "PENDING"
    assert notes[0].sent_at is None


def test_notification_inbox(client, db, admin, admin_headers, operator_headers):
    make_product(db, stock=0, min_stock=5)
    r = client.post("/api/stock/low-stock/notify", headers=operator_headers)
    assert r.status_code == 200
    assert r.json()["notified_admins"] == 1

    inbox = client.get("/api/notifications/?unread_only=true", headers=admin_headers).json()
    assert inbox["pagination"]["total"] == 1
    note_id = inbox["data"][0]["id"]

    # someone else's notification is left untouched
    r = client.put("/api/notifications/read", json={"notification_ids": [note_id]}, headers=operator_headers)
    assert r.json()["message"].startswith("0 ")

    r = client.put("/api/notifications/read", json={"notification_ids": [note_id]}, headers=admin_headers)
    assert r.json()["message"].startswith("1 ")
    inbox = client.get("/api/notifications/?unread_only=true", headers=admin_headers).json()
    assert inbox["pagination"]["total"] == 0
