from typing import Any, Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from material_store.api import deps
from material_store.core import pagination
from material_store.crud import crud_notification
from material_store.db.session import get_db
from material_store.models.base import User
from material_store.schemas.schemas import MessageOut, NotificationMarkRead, NotificationPage

router = APIRouter()


@router.get("/", response_model=NotificationPage)
def list_notifications(
    page: int = 1,
    limit: int = 10,
    type: Optional[str] = None,
    unread_only: bool = False,
    db: Session = Depends(get_db),
    current_user: User = Depends(deps.get_current_active_user)
) -> Any:
    rows, total, page, limit = crud_notification.get_user_notifications(
        db, current_user.id, page, limit, type, unread_only
    )
    return pagination.paginated(rows, total, page, limit)


@router.put("/read", response_model=MessageOut)
def mark_read(body: NotificationMarkRead, db: Session = Depends(get_db),
              current_user: User = Depends(deps.get_current_active_user)) -> Any:
    updated = crud_notification.mark_notifications_read(db, body.notification_ids, current_user.id)
    return {"message": f"{updated} notifications marked as read"}
