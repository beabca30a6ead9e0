import os
import tempfile

# Point the app at throwaway storage before anything imports the settings
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="material-store-uploads-"))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from material_store.core import security
from material_store.crud import crud_purchase_order
from material_store.db.session import Base, get_db
from material_store.main import app
from material_store.models.base import (
    Category, Product, ProductUnit, Supplier, Transaction, TransactionItem, Unit, UnitLembaga,
    User, UserRole
)
from material_store.schemas.schemas import POItemCreate, PurchaseOrderCreate

PASSWORD = "secret123"

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture(scope="session")
def password_hash():
    """bcrypt is slow on purpose; hash the shared test password only once."""
    return security.get_password_hash(PASSWORD)


@pytest.fixture()
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _make_user(db, password_hash, username, role, phone=None, is_active=True):
    user = User(
        username=username,
        email=f"{username}@example.com",
        full_name=username.title(),
        phone=phone,
        hashed_password=password_hash,
        role=role,
        is_active=is_active,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture()
def admin(db, password_hash):
    return _make_user(db, password_hash, "admin", UserRole.ADMIN.value, phone="081234567890")


@pytest.fixture()
def operator(db, password_hash):
    return _make_user(db, password_hash, "operator", UserRole.OPERATOR.value)


@pytest.fixture()
def viewer(db, password_hash):
    return _make_user(db, password_hash, "viewer", UserRole.VIEWER.value)


def auth_headers(user):
    return {"Authorization": f"Bearer {security.create_access_token(user.id, role=user.role)}"}


@pytest.fixture()
def admin_headers(admin):
    return auth_headers(admin)


@pytest.fixture()
def operator_headers(operator):
    return auth_headers(operator)


@pytest.fixture()
def viewer_headers(viewer):
    return auth_headers(viewer)


# =============================================================================
# FACTORIES
# =============================================================================

def make_supplier(db, name="CV Bangun Jaya"):
    supplier = Supplier(name=name, phone="0271123456", contact_name="Pak Slamet")
    db.add(supplier)
    db.commit()
    db.refresh(supplier)
    return supplier


def make_category(db, name="Semen", parent_id=None):
    category = Category(name=name, parent_id=parent_id)
    db.add(category)
    db.commit()
    db.refresh(category)
    return category


def make_unit(db, name="Pieces", abbreviation="pcs"):
    unit = Unit(name=name, abbreviation=abbreviation)
    db.add(unit)
    db.commit()
    db.refresh(unit)
    return unit


def make_unit_lembaga(db, name="Pondok Putra"):
    unit = UnitLembaga(name=name)
    db.add(unit)
    db.commit()
    db.refresh(unit)
    return unit


def make_product(db, name="Semen Gresik 40kg", sku=None, stock=0, buy_price=50000.0, sell_price=55000.0,
                 min_stock=0, max_stock=None, category_id=None, unit_id=None, barcode=None):
    product = Product(
        name=name,
        sku=sku or name.upper().replace(" ", "-")[:40],
        barcode=barcode,
        stock=stock,
        buy_price=buy_price,
        sell_price=sell_price,
        min_stock=min_stock,
        max_stock=max_stock,
        category_id=category_id,
        unit_id=unit_id,
    )
    db.add(product)
    db.commit()
    db.refresh(product)
    return product


def add_product_unit(db, product, unit, factor, is_base=False):
    conversion = ProductUnit(product_id=product.id, unit_id=unit.id, conversion_factor=factor, is_base_unit=is_base)
    db.add(conversion)
    db.commit()
    return conversion


def make_po(db, supplier, lines, user_id=None):
    """lines: iterable of (product, quantity, price)"""
    po_in = PurchaseOrderCreate(
        supplier_id=supplier.id,
        items=[POItemCreate(product_id=p.id, quantity=q, price=price) for p, q, price in lines],
    )
    return crud_purchase_order.create_purchase_order(db, po_in, user_id)


def make_sale(db, number, total, created_at, items=(), trx_type="CASH", status="COMPLETED",
              unit_lembaga_id=None, paid_amount=None):
    """Insert a finished transaction with a fixed timestamp, bypassing stock handling.

    items: iterable of (product, quantity, subtotal)
    """
    trx = Transaction(
        transaction_number=number,
        type=trx_type,
        status=status,
        subtotal=total,
        total=total,
        paid_amount=total if paid_amount is None else paid_amount,
        unit_lembaga_id=unit_lembaga_id,
        created_at=created_at,
    )
    for product, quantity, subtotal in items:
        trx.items.append(TransactionItem(
            product_id=product.id, quantity=quantity, price=subtotal / quantity, subtotal=subtotal
        ))
    db.add(trx)
    db.commit()
    db.refresh(trx)
    return trx
