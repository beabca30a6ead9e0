from datetime import date, datetime
from typing import Any, Dict, Optional
from fastapi.encoders import jsonable_encoder
from sqlalchemy import desc, inspect
from sqlalchemy.orm import Session, joinedload
from material_store.core import pagination
from material_store.core.exceptions import BusinessRuleError, InvalidStateError, NotFoundError
from material_store.models.base import (
    AuditLog, AuditAction, User, Category, Brand, Product, Supplier, Unit, UnitLembaga,
    Transaction, TransactionItem, PurchaseOrder, PurchaseOrderItem, PurchaseOrderStatus,
    StockOpname, StockOpnameItem, OpnameStatus, Project, ProjectMaterial, Notification
)

# Entities that can be restored from an audit log entry
ROLLBACK_MODELS = {
    "users": User,
    "categories": Category,
    "brands": Brand,
    "products": Product,
    "suppliers": Supplier,
    "units": Unit,
    "unit_lembaga": UnitLembaga,
    "transactions": Transaction,
    "transaction_items": TransactionItem,
    "purchase_orders": PurchaseOrder,
    "purchase_order_items": PurchaseOrderItem,
    "stock_opnames": StockOpname,
    "stock_opname_items": StockOpnameItem,
    "projects": Project,
    "project_materials": ProjectMaterial,
    "notifications": Notification,
}

PROTECTED_FIELDS = {"id", "created_at", "updated_at", "hashed_password"}

# Fields that only change together with a stock movement or price history row
LEDGER_FIELDS = {
    "products": {"stock", "buy_price"},
    "purchase_orders": {"status", "received_at"},
    "purchase_order_items": {"received_qty"},
    "stock_opnames": {"status", "completed_at"},
    "stock_opname_items": {"system_stock", "actual_stock", "difference"},
    "transactions": {"status"},
}


def _is_final(record: Any) -> bool:
    """Received POs and completed opnames have already moved stock."""
    if isinstance(record, PurchaseOrderItem):
        record = record.purchase_order
    elif isinstance(record, StockOpnameItem):
        record = record.opname
    if isinstance(record, PurchaseOrder):
        return record.status == PurchaseOrderStatus.RECEIVED.value
    if isinstance(record, StockOpname):
        return record.status == OpnameStatus.COMPLETED.value
    return False


def snapshot(obj: Any) -> Optional[Dict[str, Any]]:
    """Column values of a model instance as JSON-safe data."""
    if obj is None:
        return None
    mapper = inspect(obj).mapper
    data = {attr.key: getattr(obj, attr.key) for attr in mapper.column_attrs}
    data.pop("hashed_password", None)
    return jsonable_encoder(data)


def _coerce(column, value):
    # JSON snapshots carry dates as ISO strings
    if not isinstance(value, str):
        return value
    try:
        python_type = column.type.python_type
    except NotImplementedError:
        return value
    if python_type is datetime:
        return datetime.fromisoformat(value)
    if python_type is date:
        return date.fromisoformat(value[:10])
    return value


def log_audit(db: Session, user_id: Optional[int], action: str, entity: str,
              entity_id: Optional[int], old_data: Optional[Dict] = None, new_data: Optional[Dict] = None,
              ip_address: Optional[str] = None, user_agent: Optional[str] = None) -> AuditLog:
    audit = AuditLog(
        user_id=user_id,
        action=action,
        entity=entity,
        entity_id=entity_id,
        old_data=jsonable_encoder(old_data) if old_data is not None else None,
        new_data=jsonable_encoder(new_data) if new_data is not None else None,
        ip_address=ip_address,
        user_agent=user_agent
    )
    db.add(audit)
    db.commit()
    return audit


def get_logs(db: Session, page: int = 1, limit: int = None, user_id: Optional[int] = None,
             entity: Optional[str] = None, action: Optional[str] = None,
             start_date: Optional[date] = None, end_date: Optional[date] = None):
    query = db.query(AuditLog).options(joinedload(AuditLog.user))
    if user_id: query = query.filter(AuditLog.user_id == user_id)
    if entity: query = query.filter(AuditLog.entity == entity)
    if action: query = query.filter(AuditLog.action == action)
    if start_date: query = query.filter(AuditLog.created_at >= start_date)
    if end_date: query = query.filter(AuditLog.created_at <= end_date)
    return pagination.paginate(query.order_by(desc(AuditLog.created_at), desc(AuditLog.id)), page, limit)


def get_log(db: Session, log_id: int) -> AuditLog:
    log = db.query(AuditLog).options(joinedload(AuditLog.user)).filter(AuditLog.id == log_id).first()
    if not log:
        raise NotFoundError("Audit log not found")
    return log


def rollback(db: Session, log_id: int, user_id: int):
    """Restore the old_data of an audit entry onto its record and log a ROLLBACK."""
    log = get_log(db, log_id)
    if not log.old_data:
        raise BusinessRuleError("This audit entry has no previous data to restore")
    if not log.entity_id:
        raise BusinessRuleError("This audit entry is not linked to a record")

    model = ROLLBACK_MODELS.get(log.entity)
    if model is None:
        raise BusinessRuleError(f'Entity "{log.entity}" cannot be rolled back')

    record = db.query(model).filter(model.id == log.entity_id).first()
    if not record:
        raise NotFoundError("The record to roll back no longer exists")
    if _is_final(record):
        raise InvalidStateError("Records whose stock has already been booked cannot be rolled back")

    current = snapshot(record)
    columns = {attr.key: attr.columns[0] for attr in inspect(model).column_attrs}
    skipped = PROTECTED_FIELDS | LEDGER_FIELDS.get(log.entity, set())
    for field, value in log.old_data.items():
        if field in skipped or field not in columns:
            continue
        setattr(record, field, _coerce(columns[field], value))
    db.commit()
    db.refresh(record)

    log_audit(db, user_id, AuditAction.ROLLBACK.value, log.entity, log.entity_id, current, snapshot(record))
    return record
