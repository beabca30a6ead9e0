import logging
from datetime import datetime
from typing import Optional
from sqlalchemy import desc, or_
from sqlalchemy.orm import Session, joinedload
from material_store.core import pagination
from material_store.core.exceptions import BusinessRuleError, InvalidStateError, NotFoundError
from material_store.core.unit_converter import to_base_quantity
from material_store.crud import crud_notification
from material_store.crud.crud_audit import log_audit, snapshot
from material_store.crud.crud_stock import apply_movement
from material_store.models.base import (
    AuditAction, MovementType, NotificationType, Product, Project, ReferenceType, Transaction,
    TransactionItem, TransactionStatus, TransactionType, UnitLembaga, now_local
)
from material_store.schemas.schemas import TransactionCreate

logger = logging.getLogger(__name__)


def generate_transaction_number(db: Session, today: Optional[datetime] = None) -> str:
    prefix = f"TRX-{(today or now_local()).strftime('%Y%m%d')}-"
    last = db.query(Transaction.transaction_number)\
        .filter(Transaction.transaction_number.like(f"{prefix}%"))\
        .order_by(desc(Transaction.transaction_number)).first()
    sequence = int(last[0].split("-")[-1]) + 1 if last else 1
    return f"{prefix}{sequence:04d}"


def get_transaction(db: Session, transaction_id: int) -> Transaction:
    trx = db.query(Transaction).options(
        joinedload(Transaction.items).joinedload(TransactionItem.product)
    ).filter(Transaction.id == transaction_id).first()
    if not trx:
        raise NotFoundError("Transaction not found")
    return trx


def get_transactions(db: Session, page: int = 1, limit: int = None, trx_type: Optional[str] = None,
                     status: Optional[str] = None, search: Optional[str] = None,
                     start_date: Optional[datetime] = None, end_date: Optional[datetime] = None,
                     project_id: Optional[int] = None, unit_lembaga_id: Optional[int] = None):
    query = db.query(Transaction)
    if trx_type: query = query.filter(Transaction.type == trx_type)
    if status: query = query.filter(Transaction.status == status)
    if search:
        like = f"%{search}%"
        query = query.filter(or_(Transaction.transaction_number.ilike(like), Transaction.customer_name.ilike(like)))
    if start_date: query = query.filter(Transaction.created_at >= start_date)
    if end_date: query = query.filter(Transaction.created_at <= end_date)
    if project_id: query = query.filter(Transaction.project_id == project_id)
    if unit_lembaga_id: query = query.filter(Transaction.unit_lembaga_id == unit_lembaga_id)
    return pagination.paginate(query.order_by(desc(Transaction.created_at), desc(Transaction.id)), page, limit)


def get_by_unit_lembaga(db: Session, unit_lembaga_id: int, page: int = 1, limit: int = None):
    if not db.query(UnitLembaga.id).filter(UnitLembaga.id == unit_lembaga_id).first():
        raise NotFoundError("Unit lembaga not found")
    return get_transactions(db, page, limit, unit_lembaga_id=unit_lembaga_id)

# ============================================================
# CHECKOUT
# ============================================================

def create_transaction(db: Session, trx_in: TransactionCreate, user_id: Optional[int] = None) -> Transaction:
    """Record a sale / issue, deduct stock and charge the linked project, all in one commit."""
    project = None
    if trx_in.project_id:
        project = db.query(Project).filter(Project.id == trx_in.project_id).first()
        if not project:
            raise NotFoundError("Project not found")
    if trx_in.unit_lembaga_id and \
            not db.query(UnitLembaga.id).filter(UnitLembaga.id == trx_in.unit_lembaga_id).first():
        raise NotFoundError("Unit lembaga not found")

    is_bon = trx_in.type == TransactionType.BON.value
    trx = Transaction(
        transaction_number=generate_transaction_number(db),
        type=trx_in.type,
        status=TransactionStatus.PENDING.value if is_bon else TransactionStatus.COMPLETED.value,
        customer_name=trx_in.customer_name,
        customer_phone=trx_in.customer_phone,
        notes=trx_in.notes,
        discount=trx_in.discount,
        tax=trx_in.tax,
        paid_amount=trx_in.paid_amount,
        due_date=trx_in.due_date,
        project_id=trx_in.project_id,
        unit_lembaga_id=trx_in.unit_lembaga_id,
        created_by=user_id,
        updated_by=user_id
    )

    try:
        db.add(trx)
        db.flush()

        subtotal = 0.0
        for line in trx_in.items:
            product = db.query(Product).filter(Product.id == line.product_id).first()
            if not product or not product.is_active:
                raise NotFoundError(f"Product {line.product_id} not found")

            line_subtotal = line.quantity * line.price - line.discount
            subtotal += line_subtotal
            trx.items.append(TransactionItem(
                product_id=product.id, unit_id=line.unit_id, quantity=line.quantity,
                price=line.price, discount=line.discount, subtotal=line_subtotal
            ))
            apply_movement(
                db, product, to_base_quantity(db, product.id, line.unit_id, line.quantity),
                MovementType.OUT.value, reference_type=ReferenceType.TRANSACTION.value,
                reference_id=trx.id, notes=f"Transaction {trx.transaction_number}", user_id=user_id
            )

        trx.subtotal = subtotal
        trx.total = subtotal - trx_in.discount + trx_in.tax
        trx.change_amount = max(0.0, trx_in.paid_amount - trx.total)
        if not is_bon:
            trx.paid_at = now_local()
        if project:
            project.spent = (project.spent or 0) + trx.total

        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(trx)
    log_audit(db, user_id, AuditAction.CREATE.value, "transactions", trx.id, None, snapshot(trx))

    if is_bon:
        _notify_bon(db, trx)
    return trx


def _notify_bon(db: Session, trx: Transaction) -> None:
    try:
        crud_notification.notify_admins(
            db,
            "New BON transaction",
            f"{trx.transaction_number} for {trx.customer_name or '-'}: "
            f"{crud_notification.format_rupiah(trx.total or 0)}",
            NotificationType.TRANSACTION_BON.value
        )
    except Exception as e:
        db.rollback()
        logger.error("Failed to send BON notification for %s: %s", trx.transaction_number, e)


def cancel_transaction(db: Session, transaction_id: int, user_id: Optional[int] = None) -> Transaction:
    trx = get_transaction(db, transaction_id)
    if trx.status == TransactionStatus.CANCELLED.value:
        raise InvalidStateError("Transaction is already cancelled")

    old_data = snapshot(trx)
    try:
        for item in trx.items:
            apply_movement(
                db, item.product, to_base_quantity(db, item.product_id, item.unit_id, item.quantity),
                MovementType.IN.value, reference_type=ReferenceType.TRANSACTION.value,
                reference_id=trx.id, notes=f"Cancellation of {trx.transaction_number}", user_id=user_id
            )
        if trx.project:
            trx.project.spent = max(0.0, (trx.project.spent or 0) - (trx.total or 0))
        trx.status = TransactionStatus.CANCELLED.value
        trx.updated_by = user_id
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(trx)
    log_audit(db, user_id, AuditAction.UPDATE.value, "transactions", trx.id, old_data, snapshot(trx))
    return trx


def pay_bon(db: Session, transaction_id: int, amount: float, user_id: Optional[int] = None) -> Transaction:
    """Register a (partial) payment against a pending BON."""
    trx = get_transaction(db, transaction_id)
    if trx.type != TransactionType.BON.value:
        raise BusinessRuleError("Only BON transactions can be paid off")
    if trx.status != TransactionStatus.PENDING.value:
        raise InvalidStateError(f"Transaction is already {trx.status}")

    old_data = snapshot(trx)
    trx.paid_amount = (trx.paid_amount or 0) + amount
    if trx.paid_amount >= trx.total:
        trx.change_amount = trx.paid_amount - trx.total
        trx.status = TransactionStatus.COMPLETED.value
        trx.paid_at = now_local()
    trx.updated_by = user_id
    db.commit()
    db.refresh(trx)
    log_audit(db, user_id, AuditAction.UPDATE.value, "transactions", trx.id, old_data, snapshot(trx))
    return trx
