import logging
from datetime import datetime
from typing import List, Optional
from sqlalchemy import asc, desc
from sqlalchemy.orm import Session
from material_store.core import pagination
from material_store.models.base import (
    Notification, NotificationStatus, NotificationType, User, UserRole, Product, now_local
)

logger = logging.getLogger(__name__)


def create_notification(db: Session, user_id: int, title: str, message: Optional[str] = None,
                        notif_type: Optional[str] = None, status: str = NotificationStatus.PENDING.value,
                        sent_at: Optional[datetime] = None) -> Notification:
    notif = Notification(user_id=user_id, title=title, message=message, type=notif_type,
                         status=status, sent_at=sent_at)
    db.add(notif)
    return notif


def dispatch_message(user: User, title: str, message: str) -> bool:
    """Hand a message to the outbound messaging gateway.

    The gateway itself lives outside this service; only users with a phone
    number on file can be reached.
    """
    if not user.phone:
        return False
    logger.info("[WA] %s -> %s (%s): %s", title, user.full_name or user.username, user.phone, message)
    return True


def notify_admins(db: Session, title: str, message: str, notif_type: str) -> List[Notification]:
    """Create an in-app notification for every active admin and commit."""
    admins = db.query(User).filter(User.role == UserRole.ADMIN.value, User.is_active.is_(True)).all()
    created = []
    for admin in admins:
        delivered = dispatch_message(admin, title, message)
        created.append(create_notification(
            db, admin.id, title, message, notif_type,
            status=NotificationStatus.SENT.value if delivered else NotificationStatus.PENDING.value,
            sent_at=now_local() if delivered else None
        ))
    db.commit()
    return created


def format_rupiah(amount: float) -> str:
    return "Rp " + f"{amount:,.0f}".replace(",", ".")


def get_user_notifications(db: Session, user_id: int, page: int = 1, limit: int = None,
                           notif_type: Optional[str] = None, unread_only: bool = False):
    query = db.query(Notification).filter(Notification.user_id == user_id)
    if notif_type: query = query.filter(Notification.type == notif_type)
    if unread_only: query = query.filter(Notification.is_read.is_(False))
    query = query.order_by(asc(Notification.is_read), desc(Notification.created_at), desc(Notification.id))
    return pagination.paginate(query, page, limit)


def mark_notifications_read(db: Session, notification_ids: List[int], user_id: int) -> int:
    updated = db.query(Notification).filter(
        Notification.id.in_(notification_ids), Notification.user_id == user_id
    ).update({"is_read": True, "read_at": now_local()}, synchronize_session=False)
    db.commit()
    return updated


def check_low_stock(db: Session):
    """Alert admins about every active product below its minimum stock."""
    products = db.query(Product).filter(
        Product.is_active.is_(True), Product.stock < Product.min_stock
    ).order_by(asc(Product.stock)).all()

    if not products:
        return {"count": 0, "products": [], "notified_admins": 0}

    lines = ", ".join(f"{p.name} ({p.stock}/{p.min_stock})" for p in products[:10])
    notifications = notify_admins(
        db,
        "Low stock warning",
        f"{len(products)} products are below their minimum stock: {lines}",
        NotificationType.LOW_STOCK.value
    )
    return {"count": len(products), "products": products, "notified_admins": len(notifications)}
