from typing import Any, Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from material_store.api import deps
from material_store.core import pagination
from material_store.crud import crud_user
from material_store.db.session import get_db
from material_store.models.base import User
from material_store.schemas.schemas import UserCreate, UserOut, UserPage, UserUpdate

router = APIRouter()

admin_only = deps.require_roles("ADMIN")


@router.get("/", response_model=UserPage)
def list_users(
    page: int = 1,
    limit: int = 10,
    search: Optional[str] = None,
    role: Optional[str] = None,
    is_active: Optional[bool] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_only)
) -> Any:
    rows, total, page, limit = crud_user.get_users(db, page, limit, search, role, is_active)
    return pagination.paginated(rows, total, page, limit)


@router.post("/", response_model=UserOut, status_code=201)
def create_user(
    user_in: UserCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_only)
) -> Any:
    return crud_user.create_user(db, user_in, current_user.id)


@router.get("/{user_id}", response_model=UserOut)
def read_user(user_id: int, db: Session = Depends(get_db), current_user: User = Depends(admin_only)) -> Any:
    return crud_user.get_user(db, user_id)


@router.put("/{user_id}", response_model=UserOut)
def update_user(
    user_id: int,
    user_in: UserUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_only)
) -> Any:
    return crud_user.update_user(db, user_id, user_in, current_user.id)


@router.delete("/{user_id}", response_model=UserOut)
def deactivate_user(user_id: int, db: Session = Depends(get_db), current_user: User = Depends(admin_only)) -> Any:
    return crud_user.deactivate_user(db, user_id, current_user.id)
