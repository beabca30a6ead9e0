from datetime import date
from typing import Any, Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from material_store.api import deps
from material_store.core import pagination
from material_store.crud import crud_audit
from material_store.db.session import get_db
from material_store.models.base import User
from material_store.schemas.schemas import AuditLogOut, AuditLogPage, MessageOut

router = APIRouter()

admin_only = deps.require_roles("ADMIN")


@router.get("/", response_model=AuditLogPage)
def list_audit_logs(
    page: int = 1,
    limit: int = 10,
    user_id: Optional[int] = None,
    entity: Optional[str] = None,
    action: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_only)
) -> Any:
    rows, total, page, limit = crud_audit.get_logs(db, page, limit, user_id, entity, action, start_date, end_date)
    return pagination.paginated(rows, total, page, limit)


@router.get("/{log_id}", response_model=AuditLogOut)
def read_audit_log(log_id: int, db: Session = Depends(get_db), current_user: User = Depends(admin_only)) -> Any:
    return crud_audit.get_log(db, log_id)


@router.post("/{log_id}/rollback", response_model=MessageOut)
def rollback(log_id: int, db: Session = Depends(get_db), current_user: User = Depends(admin_only)) -> Any:
    crud_audit.rollback(db, log_id, current_user.id)
    return {"message": "Record restored"}
