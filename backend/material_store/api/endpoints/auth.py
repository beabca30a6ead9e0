from typing import Any
from fastapi import APIRouter, Depends, Request
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session
from material_store.api import deps
from material_store.crud import crud_user
from material_store.db.session import get_db
from material_store.models.base import User
from material_store.schemas.schemas import (
    MessageOut, PasswordChange, RefreshTokenIn, Token, UserOut
)

router = APIRouter()


def _client(request: Request):
    host = request.client.host if request.client else None
    return host, request.headers.get("user-agent")


@router.post("/login", response_model=Token)
def login_access_token(
    request: Request,
    db: Session = Depends(get_db),
    form_data: OAuth2PasswordRequestForm = Depends()
) -> Any:
    user = crud_user.authenticate(db, form_data.username, form_data.password)
    ip_address, user_agent = _client(request)
    return crud_user.issue_tokens(db, user, ip_address, user_agent)


@router.post("/refresh", response_model=Token)
def refresh_token(body: RefreshTokenIn, db: Session = Depends(get_db)) -> Any:
    return crud_user.refresh_access_token(db, body.refresh_token)


@router.post("/logout", response_model=MessageOut)
def logout(
    body: RefreshTokenIn,
    db: Session = Depends(get_db),
    current_user: User = Depends(deps.get_current_active_user)
) -> Any:
    crud_user.logout(db, body.refresh_token, current_user.id)
    return {"message": "Logged out"}


@router.get("/me", response_model=UserOut)
def read_user_me(current_user: User = Depends(deps.get_current_active_user)) -> Any:
    return current_user


@router.put("/me/password", response_model=MessageOut)
def change_password(
    body: PasswordChange,
    db: Session = Depends(get_db),
    current_user: User = Depends(deps.get_current_active_user)
) -> Any:
    crud_user.change_password(db, current_user, body)
    return {"message": "Password changed"}
