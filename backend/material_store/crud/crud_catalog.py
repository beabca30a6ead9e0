from typing import Any, Dict, List, Optional, Type
from sqlalchemy import asc, func, or_
from sqlalchemy.orm import Session
from material_store.core import pagination
from material_store.core.exceptions import BusinessRuleError, ConflictError, NotFoundError
from material_store.crud.crud_audit import log_audit, snapshot
from material_store.db.session import Base
from material_store.models.base import (
    AuditAction, Brand, Category, Product, Supplier, Unit, UnitLembaga
)

# ============================================================
# SHARED HELPERS
# ============================================================

def _get(db: Session, model: Type[Base], record_id: int, label: str):
    record = db.query(model).filter(model.id == record_id).first()
    if not record:
        raise NotFoundError(f"{label} not found")
    return record


def _create(db: Session, model: Type[Base], data: Dict[str, Any], table: str, user_id: Optional[int]):
    record = model(**data)
    db.add(record)
    db.commit()
    db.refresh(record)
    log_audit(db, user_id, AuditAction.CREATE.value, table, record.id, None, snapshot(record))
    return record


def _update(db: Session, record, data: Dict[str, Any], table: str, user_id: Optional[int]):
    old_data = snapshot(record)
    for field, value in data.items():
        setattr(record, field, value)
    db.commit()
    db.refresh(record)
    log_audit(db, user_id, AuditAction.UPDATE.value, table, record.id, old_data, snapshot(record))
    return record


def _deactivate(db: Session, record, table: str, user_id: Optional[int]):
    old_data = snapshot(record)
    record.is_active = False
    db.commit()
    db.refresh(record)
    log_audit(db, user_id, AuditAction.DELETE.value, table, record.id, old_data)
    return record


def _ensure_unique_name(db: Session, model: Type[Base], name: str, exclude_id: Optional[int] = None):
    query = db.query(model).filter(func.lower(model.name) == name.lower())
    if exclude_id:
        query = query.filter(model.id != exclude_id)
    if query.first():
        raise ConflictError(f'"{name}" already exists')

# ============================================================
# CATEGORIES (tree)
# ============================================================

def _category_node(db: Session, category: Category, depth: int) -> Dict[str, Any]:
    product_count = db.query(func.count(Product.id)).filter(Product.category_id == category.id).scalar() or 0
    children = []
    if depth > 0:
        children = [_category_node(db, c, depth - 1) for c in category.children if c.is_active]
    return {
        "id": category.id,
        "name": category.name,
        "description": category.description,
        "parent_id": category.parent_id,
        "is_active": category.is_active,
        "product_count": product_count,
        "children": children,
    }


def get_category_tree(db: Session) -> List[Dict[str, Any]]:
    roots = db.query(Category).filter(Category.parent_id.is_(None), Category.is_active.is_(True))\
        .order_by(asc(Category.name)).all()
    return [_category_node(db, c, depth=2) for c in roots]


def get_category(db: Session, category_id: int) -> Dict[str, Any]:
    return _category_node(db, _get(db, Category, category_id, "Category"), depth=1)


def create_category(db: Session, data: Dict[str, Any], user_id: Optional[int] = None) -> Category:
    if data.get("parent_id"):
        _get(db, Category, data["parent_id"], "Parent category")
    return _create(db, Category, data, "categories", user_id)


def update_category(db: Session, category_id: int, data: Dict[str, Any], user_id: Optional[int] = None) -> Category:
    category = _get(db, Category, category_id, "Category")
    parent_id = data.get("parent_id")
    if parent_id:
        if parent_id == category_id:
            raise BusinessRuleError("A category cannot be its own parent")
        _get(db, Category, parent_id, "Parent category")
    return _update(db, category, data, "categories", user_id)


def delete_category(db: Session, category_id: int, user_id: Optional[int] = None) -> Category:
    category = _get(db, Category, category_id, "Category")
    if any(c.is_active for c in category.children):
        raise BusinessRuleError("Category still has active sub-categories")
    active_products = db.query(Product).filter(Product.category_id == category_id, Product.is_active.is_(True)).count()
    if active_products:
        raise BusinessRuleError(f"Category still has {active_products} active products")
    return _deactivate(db, category, "categories", user_id)

# ============================================================
# BRANDS
# ============================================================

def get_brands(db: Session, search: Optional[str] = None) -> List[Brand]:
    query = db.query(Brand).filter(Brand.is_active.is_(True))
    if search: query = query.filter(Brand.name.ilike(f"%{search}%"))
    return query.order_by(asc(Brand.name)).all()


def get_brand(db: Session, brand_id: int) -> Brand:
    return _get(db, Brand, brand_id, "Brand")


def create_brand(db: Session, data: Dict[str, Any], user_id: Optional[int] = None) -> Brand:
    _ensure_unique_name(db, Brand, data["name"])
    return _create(db, Brand, data, "brands", user_id)


def update_brand(db: Session, brand_id: int, data: Dict[str, Any], user_id: Optional[int] = None) -> Brand:
    brand = get_brand(db, brand_id)
    if data.get("name"):
        _ensure_unique_name(db, Brand, data["name"], exclude_id=brand_id)
    return _update(db, brand, data, "brands", user_id)


def delete_brand(db: Session, brand_id: int, user_id: Optional[int] = None) -> Brand:
    return _deactivate(db, get_brand(db, brand_id), "brands", user_id)

# ============================================================
# SUPPLIERS
# ============================================================

def get_suppliers(db: Session, page: int = 1, limit: int = None, search: Optional[str] = None):
    query = db.query(Supplier).filter(Supplier.is_active.is_(True))
    if search:
        like = f"%{search}%"
        query = query.filter(or_(Supplier.name.ilike(like), Supplier.contact_name.ilike(like), Supplier.phone.ilike(like)))
    return pagination.paginate(query.order_by(asc(Supplier.name)), page, limit)


def get_supplier(db: Session, supplier_id: int) -> Supplier:
    return _get(db, Supplier, supplier_id, "Supplier")


def create_supplier(db: Session, data: Dict[str, Any], user_id: Optional[int] = None) -> Supplier:
    return _create(db, Supplier, data, "suppliers", user_id)


def update_supplier(db: Session, supplier_id: int, data: Dict[str, Any], user_id: Optional[int] = None) -> Supplier:
    return _update(db, get_supplier(db, supplier_id), data, "suppliers", user_id)


def delete_supplier(db: Session, supplier_id: int, user_id: Optional[int] = None) -> Supplier:
    return _deactivate(db, get_supplier(db, supplier_id), "suppliers", user_id)

# ============================================================
# UNITS OF MEASURE & UNIT LEMBAGA
# ============================================================

def get_units(db: Session) -> List[Unit]:
    return db.query(Unit).filter(Unit.is_active.is_(True)).order_by(asc(Unit.name)).all()


def create_unit(db: Session, data: Dict[str, Any], user_id: Optional[int] = None) -> Unit:
    if not data.get("name") or not data.get("abbreviation"):
        raise BusinessRuleError("Name and abbreviation are required")
    _ensure_unique_name(db, Unit, data["name"])
    return _create(db, Unit, data, "units", user_id)


def update_unit(db: Session, unit_id: int, data: Dict[str, Any], user_id: Optional[int] = None) -> Unit:
    unit = _get(db, Unit, unit_id, "Unit")
    if data.get("name"):
        _ensure_unique_name(db, Unit, data["name"], exclude_id=unit_id)
    return _update(db, unit, data, "units", user_id)


def delete_unit(db: Session, unit_id: int, user_id: Optional[int] = None) -> Unit:
    unit = _get(db, Unit, unit_id, "Unit")
    in_use = db.query(Product).filter(Product.unit_id == unit_id, Product.is_active.is_(True)).count()
    if in_use:
        raise BusinessRuleError(f"Unit is still used by {in_use} products")
    return _deactivate(db, unit, "units", user_id)


def get_unit_lembaga_list(db: Session) -> List[UnitLembaga]:
    return db.query(UnitLembaga).filter(UnitLembaga.is_active.is_(True)).order_by(asc(UnitLembaga.name)).all()


def get_unit_lembaga(db: Session, unit_lembaga_id: int) -> UnitLembaga:
    return _get(db, UnitLembaga, unit_lembaga_id, "Unit lembaga")


def create_unit_lembaga(db: Session, data: Dict[str, Any], user_id: Optional[int] = None) -> UnitLembaga:
    _ensure_unique_name(db, UnitLembaga, data["name"])
    return _create(db, UnitLembaga, data, "unit_lembaga", user_id)


def update_unit_lembaga(db: Session, unit_lembaga_id: int, data: Dict[str, Any], user_id: Optional[int] = None) -> UnitLembaga:
    record = get_unit_lembaga(db, unit_lembaga_id)
    if data.get("name"):
        _ensure_unique_name(db, UnitLembaga, data["name"], exclude_id=unit_lembaga_id)
    return _update(db, record, data, "unit_lembaga", user_id)


def delete_unit_lembaga(db: Session, unit_lembaga_id: int, user_id: Optional[int] = None) -> UnitLembaga:
    return _deactivate(db, get_unit_lembaga(db, unit_lembaga_id), "unit_lembaga", user_id)
