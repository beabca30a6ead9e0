from typing import Callable
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, ExpiredSignatureError
from pydantic import ValidationError
from sqlalchemy.orm import Session
from material_store.core import security
from material_store.core.exceptions import AuthError, PermissionDeniedError
from material_store.db.session import get_db
from material_store.models.base import User
from material_store.schemas.schemas import TokenPayload

reusable_oauth2 = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


def get_current_user(db: Session = Depends(get_db), token: str = Depends(reusable_oauth2)) -> User:
    try:
        token_data = TokenPayload(**security.decode_access_token(token))
    except ExpiredSignatureError:
        raise AuthError("Token has expired")
    except (JWTError, ValidationError):
        raise AuthError("Could not validate credentials")
    if token_data.sub is None:
        raise AuthError("Could not validate credentials")

    user = db.query(User).filter(User.id == token_data.sub).first()
    if not user:
        raise AuthError("User not found")
    return user


def get_current_active_user(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_active:
        raise PermissionDeniedError("Account is inactive")
    return current_user


def require_roles(*roles: str) -> Callable[..., User]:
    """Dependency factory that only lets the given roles through."""
    def checker(current_user: User = Depends(get_current_active_user)) -> User:
        if current_user.role not in roles:
            raise PermissionDeniedError("You do not have permission to perform this action")
        return current_user
    return checker
