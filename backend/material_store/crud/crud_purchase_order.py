import logging
from datetime import datetime
from typing import Dict, List, Optional
from sqlalchemy import desc
from sqlalchemy.orm import Session, joinedload
from material_store.core import pagination
from material_store.core.exceptions import InvalidStateError, NotFoundError
from material_store.crud import crud_notification
from material_store.crud.crud_audit import log_audit, snapshot
from material_store.crud.crud_stock import apply_movement
from material_store.models.base import (
    AuditAction, MovementType, NotificationType, PriceHistory, Product, PurchaseOrder,
    PurchaseOrderItem, PurchaseOrderStatus, ReferenceType, Supplier, now_local
)
from material_store.schemas.schemas import PurchaseOrderCreate, PurchaseOrderUpdate, ReceivedItemIn

logger = logging.getLogger(__name__)

CLOSED_STATUSES = (PurchaseOrderStatus.RECEIVED.value, PurchaseOrderStatus.CANCELLED.value)

# ============================================================
# NUMBERING & LOOKUP
# ============================================================

def generate_po_number(db: Session, today: Optional[datetime] = None) -> str:
    """PO-YYYYMMDD-NNNN, sequence restarting every day."""
    prefix = f"PO-{(today or now_local()).strftime('%Y%m%d')}-"
    last = db.query(PurchaseOrder.po_number).filter(PurchaseOrder.po_number.like(f"{prefix}%"))\
        .order_by(desc(PurchaseOrder.po_number)).first()
    sequence = int(last[0].split("-")[-1]) + 1 if last else 1
    return f"{prefix}{sequence:04d}"


def get_purchase_order(db: Session, po_id: int) -> PurchaseOrder:
    po = db.query(PurchaseOrder).options(
        joinedload(PurchaseOrder.supplier),
        joinedload(PurchaseOrder.items).joinedload(PurchaseOrderItem.product)
    ).filter(PurchaseOrder.id == po_id).first()
    if not po:
        raise NotFoundError("Purchase order not found")
    return po


def get_purchase_orders(db: Session, page: int = 1, limit: int = None, status: Optional[str] = None,
                        supplier_id: Optional[int] = None, start_date: Optional[datetime] = None,
                        end_date: Optional[datetime] = None):
    query = db.query(PurchaseOrder).options(joinedload(PurchaseOrder.supplier))
    if status: query = query.filter(PurchaseOrder.status == status)
    if supplier_id: query = query.filter(PurchaseOrder.supplier_id == supplier_id)
    if start_date: query = query.filter(PurchaseOrder.order_date >= start_date)
    if end_date: query = query.filter(PurchaseOrder.order_date <= end_date)
    return pagination.paginate(query.order_by(desc(PurchaseOrder.created_at), desc(PurchaseOrder.id)), page, limit)

# ============================================================
# DRAFT LIFECYCLE
# ============================================================

def _build_items(db: Session, items) -> List[PurchaseOrderItem]:
    lines = []
    for item in items:
        if not db.query(Product.id).filter(Product.id == item.product_id).first():
            raise NotFoundError(f"Product {item.product_id} not found")
        lines.append(PurchaseOrderItem(
            product_id=item.product_id,
            quantity=item.quantity,
            price=item.price,
            subtotal=item.quantity * item.price
        ))
    return lines


def create_purchase_order(db: Session, po_in: PurchaseOrderCreate, user_id: Optional[int] = None) -> PurchaseOrder:
    if not db.query(Supplier.id).filter(Supplier.id == po_in.supplier_id).first():
        raise NotFoundError("Supplier not found")

    items = _build_items(db, po_in.items)
    po = PurchaseOrder(
        po_number=generate_po_number(db),
        supplier_id=po_in.supplier_id,
        status=PurchaseOrderStatus.DRAFT.value,
        notes=po_in.notes,
        order_date=po_in.order_date or now_local(),
        total_amount=sum(i.subtotal for i in items),
        created_by=user_id,
        updated_by=user_id
    )
    po.items = items
    db.add(po)
    db.commit()
    db.refresh(po)
    log_audit(db, user_id, AuditAction.CREATE.value, "purchase_orders", po.id, None, snapshot(po))
    logger.info("Purchase order %s created (%d items)", po.po_number, len(items))
    return po


def update_purchase_order(db: Session, po_id: int, po_in: PurchaseOrderUpdate,
                          user_id: Optional[int] = None) -> PurchaseOrder:
    po = get_purchase_order(db, po_id)
    if po.status != PurchaseOrderStatus.DRAFT.value:
        raise InvalidStateError("Only DRAFT purchase orders can be edited")

    old_data = snapshot(po)
    update_data = po_in.model_dump(exclude_unset=True, exclude={"items"})
    if "supplier_id" in update_data and \
            not db.query(Supplier.id).filter(Supplier.id == update_data["supplier_id"]).first():
        raise NotFoundError("Supplier not found")
    for field, value in update_data.items():
        setattr(po, field, value)

    if po_in.items is not None:
        po.items = _build_items(db, po_in.items)
        po.total_amount = sum(i.subtotal for i in po.items)
    po.updated_by = user_id

    db.commit()
    db.refresh(po)
    log_audit(db, user_id, AuditAction.UPDATE.value, "purchase_orders", po.id, old_data, snapshot(po))
    return po


def _transition(db: Session, po_id: int, allowed: tuple, target: str, user_id: Optional[int]) -> PurchaseOrder:
    po = get_purchase_order(db, po_id)
    if po.status not in allowed:
        raise InvalidStateError(f"Cannot change a {po.status} purchase order to {target}")
    old_data = snapshot(po)
    po.status = target
    po.updated_by = user_id
    db.commit()
    db.refresh(po)
    log_audit(db, user_id, AuditAction.UPDATE.value, "purchase_orders", po.id, old_data, snapshot(po))
    return po


def send_purchase_order(db: Session, po_id: int, user_id: Optional[int] = None) -> PurchaseOrder:
    return _transition(db, po_id, (PurchaseOrderStatus.DRAFT.value,), PurchaseOrderStatus.SENT.value, user_id)


def cancel_purchase_order(db: Session, po_id: int, user_id: Optional[int] = None) -> PurchaseOrder:
    return _transition(
        db, po_id,
        (PurchaseOrderStatus.DRAFT.value, PurchaseOrderStatus.SENT.value),
        PurchaseOrderStatus.CANCELLED.value, user_id
    )

# ============================================================
# RECEIVING
# ============================================================

def receive_purchase_order(db: Session, po_id: int, received_items: Optional[List[ReceivedItemIn]] = None,
                           user_id: Optional[int] = None) -> PurchaseOrder:
    """Book the goods of a DRAFT or SENT purchase order into stock.

    Every line adds its received quantity (the ordered quantity unless overridden
    per item id) to the product stock with an IN movement. A line priced
    differently from the product's current buy price appends a price history row
    and becomes the new buy price. Everything commits together; the admin
    notification afterwards is best-effort.

    Two concurrent receives of the same PO are only guarded by the status check.
    """
    po = get_purchase_order(db, po_id)
    if po.status in CLOSED_STATUSES:
        raise InvalidStateError(f"Purchase order is already {po.status}")

    overrides: Dict[int, int] = {r.item_id: r.received_qty for r in (received_items or [])}
    old_data = snapshot(po)

    try:
        for item in po.items:
            quantity = overrides.get(item.id, item.quantity)
            item.received_qty = quantity
            product = item.product

            apply_movement(
                db, product, quantity, MovementType.IN.value,
                reference_type=ReferenceType.PO.value, reference_id=po.id,
                notes=f"Receipt of PO {po.po_number}", user_id=user_id
            )

            if item.price != product.buy_price:
                db.add(PriceHistory(
                    product_id=product.id,
                    old_buy=product.buy_price, new_buy=item.price,
                    old_sell=product.sell_price, new_sell=product.sell_price,
                    changed_by=user_id
                ))
                product.buy_price = item.price

        po.status = PurchaseOrderStatus.RECEIVED.value
        po.received_at = now_local()
        po.updated_by = user_id
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(po)
    log_audit(db, user_id, AuditAction.UPDATE.value, "purchase_orders", po.id, old_data, snapshot(po))
    logger.info("Purchase order %s received", po.po_number)

    _notify_received(db, po)
    return po


def _notify_received(db: Session, po: PurchaseOrder) -> None:
    try:
        supplier = po.supplier.name if po.supplier else "-"
        crud_notification.notify_admins(
            db,
            "Purchase order received",
            f"PO {po.po_number} from {supplier} has been received. "
            f"Total: {crud_notification.format_rupiah(po.total_amount or 0)}",
            NotificationType.PO_RECEIVED.value
        )
    except Exception as e:
        db.rollback()
        logger.error("Failed to send PO received notification for %s: %s", po.po_number, e)
