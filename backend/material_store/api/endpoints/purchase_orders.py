from datetime import datetime
from typing import Any, Optional
from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session
from material_store.api import deps
from material_store.core import pagination
from material_store.crud import crud_purchase_order
from material_store.db.session import get_db
from material_store.models.base import User
from material_store.schemas.schemas import (
    PurchaseOrderCreate, PurchaseOrderOut, PurchaseOrderPage, PurchaseOrderReceive, PurchaseOrderUpdate
)

router = APIRouter()

staff = deps.require_roles("ADMIN", "OPERATOR")
admin_only = deps.require_roles("ADMIN")


@router.get("/", response_model=PurchaseOrderPage)
def list_purchase_orders(
    page: int = 1,
    limit: int = 10,
    status: Optional[str] = None,
    supplier_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(deps.get_current_active_user)
) -> Any:
    rows, total, page, limit = crud_purchase_order.get_purchase_orders(
        db, page, limit, status, supplier_id, start_date, end_date
    )
    return pagination.paginated(rows, total, page, limit)


@router.get("/{po_id}", response_model=PurchaseOrderOut)
def read_purchase_order(po_id: int, db: Session = Depends(get_db),
                        current_user: User = Depends(deps.get_current_active_user)) -> Any:
    return crud_purchase_order.get_purchase_order(db, po_id)


@router.post("/", response_model=PurchaseOrderOut, status_code=201)
def create_purchase_order(body: PurchaseOrderCreate, db: Session = Depends(get_db),
                          current_user: User = Depends(staff)) -> Any:
    return crud_purchase_order.create_purchase_order(db, body, current_user.id)


@router.put("/{po_id}", response_model=PurchaseOrderOut)
def update_purchase_order(po_id: int, body: PurchaseOrderUpdate, db: Session = Depends(get_db),
                          current_user: User = Depends(staff)) -> Any:
    return crud_purchase_order.update_purchase_order(db, po_id, body, current_user.id)


@router.put("/{po_id}/send", response_model=PurchaseOrderOut)
def send_purchase_order(po_id: int, db: Session = Depends(get_db), current_user: User = Depends(staff)) -> Any:
    return crud_purchase_order.send_purchase_order(db, po_id, current_user.id)


@router.put("/{po_id}/receive", response_model=PurchaseOrderOut)
def receive_purchase_order(
    po_id: int,
    body: Optional[PurchaseOrderReceive] = Body(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(staff)
) -> Any:
    received_items = body.items if body else None
    return crud_purchase_order.receive_purchase_order(db, po_id, received_items, current_user.id)


@router.put("/{po_id}/cancel", response_model=PurchaseOrderOut)
def cancel_purchase_order(po_id: int, db: Session = Depends(get_db), current_user: User = Depends(admin_only)) -> Any:
    return crud_purchase_order.cancel_purchase_order(db, po_id, current_user.id)
