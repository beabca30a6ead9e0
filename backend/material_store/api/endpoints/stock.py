from datetime import datetime
from typing import Any, List, Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from material_store.api import deps
from material_store.core import pagination
from material_store.crud import crud_notification, crud_stock
from material_store.db.session import get_db
from material_store.models.base import User
from material_store.schemas.schemas import (
    LowStockCheckOut, LowStockItem, ProductPage, StockAdjustmentIn, StockMovementOut,
    StockMovementPage, StockOpnameCompleteOut, StockOpnameItemOut, StockOpnameItemUpdate,
    StockOpnameOut
)

router = APIRouter()

staff = deps.require_roles("ADMIN", "OPERATOR")
admin_only = deps.require_roles("ADMIN")


@router.get("/", response_model=ProductPage)
def list_stock(
    page: int = 1,
    limit: int = 10,
    category_id: Optional[int] = None,
    low_stock: bool = False,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(deps.get_current_active_user)
) -> Any:
    rows, total, page, limit = crud_stock.list_stock(db, page, limit, category_id, low_stock, search)
    return pagination.paginated(rows, total, page, limit)


@router.get("/low-stock", response_model=List[LowStockItem])
def low_stock(db: Session = Depends(get_db), current_user: User = Depends(deps.get_current_active_user)) -> Any:
    return crud_stock.check_low_stock(db)


@router.post("/low-stock/notify", response_model=LowStockCheckOut)
def notify_low_stock(db: Session = Depends(get_db), current_user: User = Depends(staff)) -> Any:
    return crud_notification.check_low_stock(db)


@router.get("/movements", response_model=StockMovementPage)
def stock_history(
    page: int = 1,
    limit: int = 10,
    product_id: Optional[int] = None,
    type: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(deps.get_current_active_user)
) -> Any:
    rows, total, page, limit = crud_stock.get_stock_history(db, product_id, page, limit, type, start_date, end_date)
    return pagination.paginated(rows, total, page, limit)


@router.post("/adjust", response_model=StockMovementOut)
def adjust_stock(body: StockAdjustmentIn, db: Session = Depends(get_db), current_user: User = Depends(admin_only)) -> Any:
    return crud_stock.adjust_stock(db, body.product_id, body.quantity, body.unit_id, body.notes, current_user.id)

# ============================================================
# STOCK OPNAME
# ============================================================

@router.get("/opnames/", response_model=List[StockOpnameOut])
def list_opnames(page: int = 1, limit: int = 10, status: Optional[str] = None, db: Session = Depends(get_db),
                 current_user: User = Depends(deps.get_current_active_user)) -> Any:
    rows, _, _, _ = crud_stock.get_opnames(db, page, limit, status)
    return rows


@router.post("/opnames/", response_model=StockOpnameOut, status_code=201)
def create_opname(notes: Optional[str] = None, category_id: Optional[int] = None, db: Session = Depends(get_db),
                  current_user: User = Depends(staff)) -> Any:
    return crud_stock.create_opname(db, notes, category_id, current_user.id)


@router.get("/opnames/{opname_id}", response_model=StockOpnameOut)
def read_opname(opname_id: int, db: Session = Depends(get_db),
                current_user: User = Depends(deps.get_current_active_user)) -> Any:
    return crud_stock.get_opname(db, opname_id)


@router.put("/opnames/{opname_id}/items/{item_id}", response_model=StockOpnameItemOut)
def update_opname_item(opname_id: int, item_id: int, body: StockOpnameItemUpdate, db: Session = Depends(get_db),
                       current_user: User = Depends(staff)) -> Any:
    return crud_stock.update_opname_item(db, opname_id, item_id, body.actual_stock)


@router.post("/opnames/{opname_id}/complete", response_model=StockOpnameCompleteOut)
def complete_opname(opname_id: int, db: Session = Depends(get_db), current_user: User = Depends(admin_only)) -> Any:
    opname, adjustments = crud_stock.complete_opname(db, opname_id, current_user.id)
    return {"opname": opname, "adjustments": adjustments}


@router.get("/{product_id}")
def current_stock(product_id: int, db: Session = Depends(get_db),
                  current_user: User = Depends(deps.get_current_active_user)) -> Any:
    return {"product_id": product_id, "stock": crud_stock.get_current_stock(db, product_id)}
