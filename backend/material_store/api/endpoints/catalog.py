from typing import Any, List, Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from material_store.api import deps
from material_store.core import pagination
from material_store.crud import crud_catalog
from material_store.db.session import get_db
from material_store.models.base import User
from material_store.schemas.schemas import (
    BrandCreate, BrandOut, BrandUpdate, CategoryCreate, CategoryOut, CategoryUpdate,
    SupplierCreate, SupplierOut, SupplierPage, SupplierUpdate, UnitCreate, UnitLembagaCreate,
    UnitLembagaOut, UnitLembagaUpdate, UnitOut, UnitUpdate
)

router = APIRouter()

staff = deps.require_roles("ADMIN", "OPERATOR")
admin_only = deps.require_roles("ADMIN")

# ============================================================
# CATEGORIES
# ============================================================

@router.get("/categories", response_model=List[CategoryOut])
def list_categories(db: Session = Depends(get_db), current_user: User = Depends(deps.get_current_active_user)) -> Any:
    return crud_catalog.get_category_tree(db)


@router.get("/categories/{category_id}", response_model=CategoryOut)
def read_category(category_id: int, db: Session = Depends(get_db),
                  current_user: User = Depends(deps.get_current_active_user)) -> Any:
    return crud_catalog.get_category(db, category_id)


@router.post("/categories", response_model=CategoryOut, status_code=201)
def create_category(body: CategoryCreate, db: Session = Depends(get_db), current_user: User = Depends(staff)) -> Any:
    category = crud_catalog.create_category(db, body.model_dump(), current_user.id)
    return crud_catalog.get_category(db, category.id)


@router.put("/categories/{category_id}", response_model=CategoryOut)
def update_category(category_id: int, body: CategoryUpdate, db: Session = Depends(get_db),
                    current_user: User = Depends(staff)) -> Any:
    crud_catalog.update_category(db, category_id, body.model_dump(exclude_unset=True), current_user.id)
    return crud_catalog.get_category(db, category_id)


@router.delete("/categories/{category_id}", response_model=CategoryOut)
def delete_category(category_id: int, db: Session = Depends(get_db), current_user: User = Depends(admin_only)) -> Any:
    crud_catalog.delete_category(db, category_id, current_user.id)
    return crud_catalog.get_category(db, category_id)

# ============================================================
# BRANDS
# ============================================================

@router.get("/brands", response_model=List[BrandOut])
def list_brands(search: Optional[str] = None, db: Session = Depends(get_db),
                current_user: User = Depends(deps.get_current_active_user)) -> Any:
    return crud_catalog.get_brands(db, search)


@router.post("/brands", response_model=BrandOut, status_code=201)
def create_brand(body: BrandCreate, db: Session = Depends(get_db), current_user: User = Depends(staff)) -> Any:
    return crud_catalog.create_brand(db, body.model_dump(), current_user.id)


@router.put("/brands/{brand_id}", response_model=BrandOut)
def update_brand(brand_id: int, body: BrandUpdate, db: Session = Depends(get_db),
                 current_user: User = Depends(staff)) -> Any:
    return crud_catalog.update_brand(db, brand_id, body.model_dump(exclude_unset=True), current_user.id)


@router.delete("/brands/{brand_id}", response_model=BrandOut)
def delete_brand(brand_id: int, db: Session = Depends(get_db), current_user: User = Depends(admin_only)) -> Any:
    return crud_catalog.delete_brand(db, brand_id, current_user.id)

# ============================================================
# SUPPLIERS
# ============================================================

@router.get("/suppliers", response_model=SupplierPage)
def list_suppliers(page: int = 1, limit: int = 10, search: Optional[str] = None, db: Session = Depends(get_db),
                   current_user: User = Depends(deps.get_current_active_user)) -> Any:
    rows, total, page, limit = crud_catalog.get_suppliers(db, page, limit, search)
    return pagination.paginated(rows, total, page, limit)


@router.get("/suppliers/{supplier_id}", response_model=SupplierOut)
def read_supplier(supplier_id: int, db: Session = Depends(get_db),
                  current_user: User = Depends(deps.get_current_active_user)) -> Any:
    return crud_catalog.get_supplier(db, supplier_id)


@router.post("/suppliers", response_model=SupplierOut, status_code=201)
def create_supplier(body: SupplierCreate, db: Session = Depends(get_db), current_user: User = Depends(staff)) -> Any:
    return crud_catalog.create_supplier(db, body.model_dump(), current_user.id)


@router.put("/suppliers/{supplier_id}", response_model=SupplierOut)
def update_supplier(supplier_id: int, body: SupplierUpdate, db: Session = Depends(get_db),
                    current_user: User = Depends(staff)) -> Any:
    return crud_catalog.update_supplier(db, supplier_id, body.model_dump(exclude_unset=True), current_user.id)


@router.delete("/suppliers/{supplier_id}", response_model=SupplierOut)
def delete_supplier(supplier_id: int, db: Session = Depends(get_db), current_user: User = Depends(admin_only)) -> Any:
    return crud_catalog.delete_supplier(db, supplier_id, current_user.id)

# ============================================================
# UNITS & UNIT LEMBAGA
# ============================================================

@router.get("/units", response_model=List[UnitOut])
def list_units(db: Session = Depends(get_db), current_user: User = Depends(deps.get_current_active_user)) -> Any:
    return crud_catalog.get_units(db)


@router.post("/units", response_model=UnitOut, status_code=201)
def create_unit(body: UnitCreate, db: Session = Depends(get_db), current_user: User = Depends(staff)) -> Any:
    return crud_catalog.create_unit(db, body.model_dump(), current_user.id)


@router.put("/units/{unit_id}", response_model=UnitOut)
def update_unit(unit_id: int, body: UnitUpdate, db: Session = Depends(get_db),
                current_user: User = Depends(staff)) -> Any:
    return crud_catalog.update_unit(db, unit_id, body.model_dump(exclude_unset=True), current_user.id)


@router.delete("/units/{unit_id}", response_model=UnitOut)
def delete_unit(unit_id: int, db: Session = Depends(get_db), current_user: User = Depends(admin_only)) -> Any:
    return crud_catalog.delete_unit(db, unit_id, current_user.id)


@router.get("/unit-lembaga", response_model=List[UnitLembagaOut])
def list_unit_lembaga(db: Session = Depends(get_db), current_user: User = Depends(deps.get_current_active_user)) -> Any:
    return crud_catalog.get_unit_lembaga_list(db)


@router.post("/unit-lembaga", response_model=UnitLembagaOut, status_code=201)
def create_unit_lembaga(body: UnitLembagaCreate, db: Session = Depends(get_db),
                        current_user: User = Depends(staff)) -> Any:
    return crud_catalog.create_unit_lembaga(db, body.model_dump(), current_user.id)


@router.put("/unit-lembaga/{unit_lembaga_id}", response_model=UnitLembagaOut)
def update_unit_lembaga(unit_lembaga_id: int, body: UnitLembagaUpdate, db: Session = Depends(get_db),
                        current_user: User = Depends(staff)) -> Any:
    return crud_catalog.update_unit_lembaga(db, unit_lembaga_id, body.model_dump(exclude_unset=True), current_user.id)


@router.delete("/unit-lembaga/{unit_lembaga_id}", response_model=UnitLembagaOut)
def delete_unit_lembaga(unit_lembaga_id: int, db: Session = Depends(get_db),
                        current_user: User = Depends(admin_only)) -> Any:
    return crud_catalog.delete_unit_lembaga(db, unit_lembaga_id, current_user.id)
