import pytest

from conftest import make_category, make_product, make_unit
from material_store.core.exceptions import BusinessRuleError, ConflictError, NotFoundError
from material_store.crud import crud_catalog, crud_product
from material_store.models.base import PriceHistory, Product
from material_store.schemas.schemas import ProductCreate, ProductUnitIn, ProductUpdate


# =============================================================================
# CATALOG
# =============================================================================

def test_category_tree(db):
    bahan = make_category(db, "Bahan Bangunan")
    semen = make_category(db, "Semen", parent_id=bahan.id)
    make_category(db, "Cat")
    make_product(db, category_id=semen.id)

    tree = crud_catalog.get_category_tree(db)

    assert [c["name"] for c in tree] == ["Bahan Bangunan", "Cat"]
    assert tree[0]["children"][0]["name"] == "Semen"
    assert tree[0]["children"][0]["product_count"] == 1


def test_category_rules(db):
    parent = make_category(db, "Bahan Bangunan")
    child = make_category(db, "Semen", parent_id=parent.id)

    with pytest.raises(BusinessRuleError):
        crud_catalog.update_category(db, child.id, {"parent_id": child.id})
    with pytest.raises(BusinessRuleError):
        crud_catalog.delete_category(db, parent.id)

    make_product(db, category_id=child.id)
    with pytest.raises(BusinessRuleError):
        crud_catalog.delete_category(db, child.id)


def test_duplicate_names_conflict(db):
    crud_catalog.create_brand(db, {"name": "Tiga Roda"})
    with pytest.raises(ConflictError):
        crud_catalog.create_brand(db, {"name": "tiga roda"})


def test_unit_in_use_cannot_be_deleted(db):
    sak = make_unit(db, "Sak", "sak")
    make_product(db, unit_id=sak.id)
    with pytest.raises(BusinessRuleError):
        crud_catalog.delete_unit(db, sak.id)


def test_catalog_endpoints(client, db, operator_headers, admin_headers):
    r = client.post("/api/brands", json={"name": "Holcim"}, headers=operator_headers)
    assert r.status_code == 201
    brand_id = r.json()["id"]
    assert client.post("/api/brands", json={"name": "HOLCIM"}, headers=operator_headers).status_code == 409
    assert client.delete(f"/api/brands/{brand_id}", headers=operator_headers).status_code == 403
    assert client.delete(f"/api/brands/{brand_id}", headers=admin_headers).status_code == 200
    assert client.get("/api/brands", headers=operator_headers).json() == []

    r = client.post("/api/suppliers", json={"name": "UD Sumber Rejeki", "phone": "0271555123"}, headers=operator_headers)
    assert r.status_code == 201
    r = client.get("/api/suppliers?search=rejeki", headers=operator_headers)
    assert r.json()["pagination"]["total"] == 1

    r = client.post("/api/categories", json={"name": "Semen"}, headers=operator_headers)
    assert r.status_code == 201
    assert r.json()["children"] == []

    r = client.post("/api/unit-lembaga", json={"name": "Dapur Umum"}, headers=admin_headers)
    assert r.status_code == 201
    assert [u["name"] for u in client.get("/api/unit-lembaga", headers=admin_headers).json()] == ["Dapur Umum"]

# =============================================================================
# PRODUCTS
# =============================================================================

def test_create_product_generates_category_barcode(db, admin):
    semen = make_category(db, "Semen")
    product = crud_product.create_product(db, ProductCreate(
        name="Semen Tiga Roda 50kg", sku="SMN-TR-50", category_id=semen.id, buy_price=60000, sell_price=65000
    ), admin.id)

    assert product.barcode.startswith("TMP-SEM-")
    assert product.created_by == admin.id


def test_create_product_with_units(db, admin):
    pcs = make_unit(db, "Pieces", "pcs")
    box = make_unit(db, "Dus", "dus")
    product = crud_product.create_product(db, ProductCreate(
        name="Keramik", sku="KRM", unit_id=pcs.id,
        units=[ProductUnitIn(unit_id=pcs.id, conversion_factor=1, is_base_unit=True),
               ProductUnitIn(unit_id=box.id, conversion_factor=12)]
    ), admin.id)

    assert sorted(u.conversion_factor for u in product.product_units) == [1, 12]
    assert product.barcode.startswith("TMP-GEN-")


def test_create_product_conflicts(db, admin):
    make_product(db, sku="SMN-001", barcode="8991234567890")

    with pytest.raises(ConflictError):
        crud_product.create_product(db, ProductCreate(name="Copy", sku="SMN-001"), admin.id)
    with pytest.raises(ConflictError):
        crud_product.create_product(db, ProductCreate(name="Copy", sku="SMN-002", barcode="8991234567890"), admin.id)
    with pytest.raises(BusinessRuleError):
        crud_product.create_product(db, ProductCreate(name="Copy", sku="SMN-003", barcode="TMP-bad"), admin.id)


def test_price_change_is_recorded(db, admin):
    product = make_product(db, buy_price=50000, sell_price=55000)

    crud_product.update_product(db, product.id, ProductUpdate(description="Sak 40kg"), admin.id)
    assert db.query(PriceHistory).count() == 0

    crud_product.update_product(db, product.id, ProductUpdate(sell_price=57000), admin.id)
    history = db.query(PriceHistory).one()
    assert (history.old_buy, history.new_buy, history.old_sell, history.new_sell) == (50000, 50000, 55000, 57000)

    rows, total, _, _ = crud_product.get_price_history(db, product.id)
    assert total == 1


def test_barcode_lookup(db):
    product = make_product(db, barcode="8991234567890")
    assert crud_product.get_by_barcode(db, " 8991234567890 ").id == product.id

    crud_product.delete_product(db, product.id)
    with pytest.raises(NotFoundError):
        crud_product.get_by_barcode(db, "8991234567890")


def test_bulk_generate_barcodes(db, admin):
    bare = make_product(db, "A", sku="A")
    labelled = make_product(db, "B", sku="B", barcode="89912345")

    result = crud_product.bulk_generate_barcodes(db, [bare.id, labelled.id, 999], admin.id)

    assert result["summary"] == {"total": 3, "success": 1, "skipped": 1, "error": 1}
    assert [r["status"] for r in result["results"]] == ["success", "skipped", "error"]
    assert db.get(Product, bare.id).barcode.startswith("TMP-GEN-")
    assert db.get(Product, labelled.id).barcode == "89912345"


def test_regenerate_barcode(db, admin):
    product = make_product(db, barcode="89912345")
    assert crud_product.regenerate_barcode(db, product.id, admin.id).barcode.startswith("TMP-GEN-")


def test_product_endpoints(client, db, operator_headers, viewer_headers, admin_headers):
    r = client.post("/api/products/", headers=operator_headers, json={
        "name": "Paku 5cm", "sku": "PKU-5", "buy_price": 15000, "sell_price": 18000, "min_stock": 5
    })
    assert r.status_code == 201, r.text
    product = r.json()
    assert product["barcode"].startswith("TMP-GEN-")

    r = client.get(f"/api/products/barcode/{product['barcode']}", headers=viewer_headers)
    assert r.status_code == 200
    assert r.json()["sku"] == "PKU-5"

    r = client.get("/api/products/barcode/validate?value=8991234567890", headers=viewer_headers)
    assert r.json()["format"] == "EAN-13"

    r = client.put(f"/api/products/{product['id']}", headers=operator_headers, json={"buy_price": 16000})
    assert r.status_code == 200
    assert len(r.json()["price_histories"]) == 1

    r = client.get(f"/api/products/{product['id']}/price-history", headers=viewer_headers)
    assert r.json()[0]["new_buy"] == 16000

    r = client.get("/api/products/?search=paku", headers=viewer_headers)
    assert r.json()["pagination"]["total"] == 1

    assert client.delete(f"/api/products/{product['id']}", headers=operator_headers).status_code == 403
    assert client.delete(f"/api/products/{product['id']}", headers=admin_headers).json()["is_active"] is False
    assert client.get("/api/products/", headers=viewer_headers).json()["pagination"]["total"] == 0


def test_image_upload(client, db, operator_headers):
    product = make_product(db)
    url = f"/api/products/{product.id}/images"

    r = client.post(url, headers=operator_headers, files={"file": ("nota.txt", b"hello", "text/plain")})
    assert r.status_code == 400

    r = client.post(url, headers=operator_headers, files={"file": ("depan.png", b"\x89PNG fake", "image/png")})
    assert r.status_code == 201, r.text
    first = r.json()
    assert first["is_primary"] is True
    assert first["file_path"].startswith("/uploads/products/")

    r = client.post(url + "?is_primary=true", headers=operator_headers,
                    files={"file": ("samping.jpg", b"\xff\xd8 fake", "image/jpeg")})
    second = r.json()

    images = client.get(url, headers=operator_headers).json()
    assert [i["id"] for i in images if i["is_primary"]] == [second["id"]]
    assert db.get(Product, product.id).image == second["file_path"]
