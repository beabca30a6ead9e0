from datetime import datetime
from typing import Any, Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from material_store.api import deps
from material_store.core import pagination
from material_store.crud import crud_transaction
from material_store.db.session import get_db
from material_store.models.base import User
from material_store.schemas.schemas import BonPayment, TransactionCreate, TransactionOut, TransactionPage

router = APIRouter()

staff = deps.require_roles("ADMIN", "OPERATOR")
admin_only = deps.require_roles("ADMIN")


@router.get("/", response_model=TransactionPage)
def list_transactions(
    page: int = 1,
    limit: int = 10,
    type: Optional[str] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    project_id: Optional[int] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(deps.get_current_active_user)
) -> Any:
    rows, total, page, limit = crud_transaction.get_transactions(
        db, page, limit, type, status, search, start_date, end_date, project_id
    )
    return pagination.paginated(rows, total, page, limit)


@router.get("/unit-lembaga/{unit_lembaga_id}", response_model=TransactionPage)
def list_by_unit_lembaga(unit_lembaga_id: int, page: int = 1, limit: int = 10, db: Session = Depends(get_db),
                         current_user: User = Depends(deps.get_current_active_user)) -> Any:
    rows, total, page, limit = crud_transaction.get_by_unit_lembaga(db, unit_lembaga_id, page, limit)
    return pagination.paginated(rows, total, page, limit)


@router.get("/{transaction_id}", response_model=TransactionOut)
def read_transaction(transaction_id: int, db: Session = Depends(get_db),
                     current_user: User = Depends(deps.get_current_active_user)) -> Any:
    return crud_transaction.get_transaction(db, transaction_id)


@router.post("/", response_model=TransactionOut, status_code=201)
def create_transaction(body: TransactionCreate, db: Session = Depends(get_db), current_user: User = Depends(staff)) -> Any:
    return crud_transaction.create_transaction(db, body, current_user.id)


@router.put("/{transaction_id}/cancel", response_model=TransactionOut)
def cancel_transaction(transaction_id: int, db: Session = Depends(get_db),
                       current_user: User = Depends(admin_only)) -> Any:
    return crud_transaction.cancel_transaction(db, transaction_id, current_user.id)


@router.put("/{transaction_id}/pay", response_model=TransactionOut)
def pay_bon(transaction_id: int, body: BonPayment, db: Session = Depends(get_db),
            current_user: User = Depends(staff)) -> Any:
    return crud_transaction.pay_bon(db, transaction_id, body.amount, current_user.id)
