from datetime import timedelta
from typing import Optional
from sqlalchemy import or_, asc
from sqlalchemy.orm import Session
from material_store.core import pagination, security
from material_store.core.config import settings
from material_store.core.exceptions import (
    AuthError, BusinessRuleError, ConflictError, NotFoundError, PermissionDeniedError
)
from material_store.crud.crud_audit import log_audit, snapshot
from material_store.models.base import AuditAction, RefreshToken, User, UserRole, now_local
from material_store.schemas.schemas import PasswordChange, UserCreate, UserUpdate

ROLES = {r.value for r in UserRole}

# ============================================================
# AUTHENTICATION
# ============================================================

def authenticate(db: Session, login: str, password: str) -> User:
    """Match on username or email; both failure modes share one message."""
    user = db.query(User).filter(or_(User.username == login, User.email == login)).first()
    if not user or not security.verify_password(password, user.hashed_password):
        raise AuthError("Incorrect username or password")
    if not user.is_active:
        raise PermissionDeniedError("Account is inactive, please contact an administrator")
    return user


def issue_tokens(db: Session, user: User, ip_address: Optional[str] = None,
                 user_agent: Optional[str] = None) -> dict:
    access_token = security.create_access_token(
        user.id, role=user.role, expires_delta=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    refresh = RefreshToken(
        token=security.generate_refresh_token(),
        user_id=user.id,
        expires_at=now_local() + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)
    )
    db.add(refresh)
    db.commit()
    log_audit(db, user.id, AuditAction.LOGIN.value, "users", user.id,
              ip_address=ip_address, user_agent=user_agent)
    return {"access_token": access_token, "refresh_token": refresh.token, "token_type": "bearer"}


def refresh_access_token(db: Session, token: str) -> dict:
    stored = db.query(RefreshToken).filter(RefreshToken.token == token).first()
    if not stored:
        raise AuthError("Invalid refresh token")
    if stored.revoked:
        raise AuthError("Refresh token has been revoked")
    if now_local() > stored.expires_at:
        stored.revoked = True
        db.commit()
        raise AuthError("Refresh token has expired, please log in again")
    if not stored.user.is_active:
        raise PermissionDeniedError("Account is inactive, please contact an administrator")

    access_token = security.create_access_token(stored.user.id, role=stored.user.role)
    return {"access_token": access_token, "token_type": "bearer"}


def logout(db: Session, token: Optional[str], user_id: Optional[int] = None) -> None:
    if not token:
        return
    stored = db.query(RefreshToken).filter(RefreshToken.token == token).first()
    if stored and not stored.revoked:
        stored.revoked = True
        db.commit()
        log_audit(db, user_id or stored.user_id, AuditAction.LOGOUT.value, "users", stored.user_id)

# ============================================================
# USER MANAGEMENT
# ============================================================

def get_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError("User not found")
    return user


def get_users(db: Session, page: int = 1, limit: int = None, search: Optional[str] = None,
              role: Optional[str] = None, is_active: Optional[bool] = None):
    query = db.query(User)
    if search:
        like = f"%{search}%"
        query = query.filter(or_(User.username.ilike(like), User.full_name.ilike(like), User.email.ilike(like)))
    if role: query = query.filter(User.role == role)
    if is_active is not None: query = query.filter(User.is_active.is_(is_active))
    return pagination.paginate(query.order_by(asc(User.username)), page, limit)


def create_user(db: Session, user_in: UserCreate, actor_id: Optional[int] = None) -> User:
    if user_in.role not in ROLES:
        raise BusinessRuleError(f"Role must be one of: {', '.join(sorted(ROLES))}")
    existing = db.query(User).filter(or_(User.username == user_in.username, User.email == user_in.email)).first()
    if existing:
        raise ConflictError("A user with that username or email already exists")

    db_user = User(
        username=user_in.username,
        email=user_in.email,
        full_name=user_in.full_name,
        phone=user_in.phone,
        hashed_password=security.get_password_hash(user_in.password),
        role=user_in.role
    )
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    log_audit(db, actor_id, AuditAction.CREATE.value, "users", db_user.id, None, snapshot(db_user))
    return db_user


def update_user(db: Session, user_id: int, user_in: UserUpdate, actor_id: int) -> User:
    db_user = get_user(db, user_id)
    update_data = user_in.model_dump(exclude_unset=True)
    if "role" in update_data and update_data["role"] not in ROLES:
        raise BusinessRuleError(f"Role must be one of: {', '.join(sorted(ROLES))}")

    old_data = snapshot(db_user)
    for field, value in update_data.items():
        setattr(db_user, field, value)
    db.commit()
    db.refresh(db_user)
    log_audit(db, actor_id, AuditAction.UPDATE.value, "users", user_id, old_data, snapshot(db_user))
    return db_user


def deactivate_user(db: Session, user_id: int, actor_id: int) -> User:
    if user_id == actor_id:
        raise BusinessRuleError("You cannot deactivate your own account")
    db_user = get_user(db, user_id)
    old_data = snapshot(db_user)
    db_user.is_active = False
    db.query(RefreshToken).filter(RefreshToken.user_id == user_id).update({"revoked": True})
    db.commit()
    db.refresh(db_user)
    log_audit(db, actor_id, AuditAction.DELETE.value, "users", user_id, old_data)
    return db_user


def change_password(db: Session, user: User, data: PasswordChange) -> None:
    if not security.verify_password(data.current_password, user.hashed_password):
        raise BusinessRuleError("Current password is incorrect")
    user.hashed_password = security.get_password_hash(data.new_password)
    db.commit()
    log_audit(db, user.id, AuditAction.UPDATE.value, "users", user.id, None, {"password": "changed"})
