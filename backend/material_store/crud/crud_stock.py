from datetime import datetime
from typing import List, Optional, Tuple
from sqlalchemy import asc, desc
from sqlalchemy.orm import Session, joinedload
from material_store.core import pagination
from material_store.core.exceptions import BusinessRuleError, InvalidStateError, NotFoundError
from material_store.core.unit_converter import to_base_quantity
from material_store.crud.crud_audit import log_audit, snapshot
from material_store.models.base import (
    AuditAction, MovementType, OpnameStatus, Product, ReferenceType, StockMovement,
    StockOpname, StockOpnameItem, now_local
)

# ============================================================
# CURRENT STOCK
# ============================================================

def get_current_stock(db: Session, product_id: int) -> int:
    product = db.query(Product).filter(Product.id == product_id).first()
    if not product:
        raise NotFoundError("Product not found")
    return product.stock


def list_stock(db: Session, page: int = 1, limit: int = None, category_id: Optional[int] = None,
               low_stock: bool = False, search: Optional[str] = None):
    query = db.query(Product).options(joinedload(Product.category), joinedload(Product.unit))\
        .filter(Product.is_active.is_(True))
    if category_id: query = query.filter(Product.category_id == category_id)
    if low_stock: query = query.filter(Product.stock < Product.min_stock)
    if search: query = query.filter(Product.name.ilike(f"%{search}%"))
    return pagination.paginate(query.order_by(asc(Product.name)), page, limit)

# ============================================================
# MOVEMENTS
# ============================================================

def apply_movement(db: Session, product: Product, quantity: int, movement_type: str,
                   reference_type: Optional[str] = None, reference_id: Optional[int] = None,
                   notes: Optional[str] = None, user_id: Optional[int] = None) -> StockMovement:
    """Change a product's stock and append the matching ledger row. Does not commit.

    IN adds and OUT subtracts `quantity`; ADJUSTMENT and OPNAME take it as the
    new absolute level and record the delta.
    """
    previous_stock = product.stock or 0

    if movement_type == MovementType.IN.value:
        new_stock = previous_stock + quantity
        moved = quantity
    elif movement_type == MovementType.OUT.value:
        if previous_stock < quantity:
            raise BusinessRuleError(
                f'Insufficient stock for "{product.name}": available {previous_stock}, requested {quantity}'
            )
        new_stock = previous_stock - quantity
        moved = quantity
    elif movement_type in (MovementType.ADJUSTMENT.value, MovementType.OPNAME.value):
        if quantity < 0:
            raise BusinessRuleError("Stock cannot be negative")
        new_stock = quantity
        moved = quantity - previous_stock
    else:
        raise BusinessRuleError(f"Unknown movement type: {movement_type}")

    movement = StockMovement(
        product_id=product.id,
        type=movement_type,
        quantity=moved,
        previous_stock=previous_stock,
        new_stock=new_stock,
        reference_type=reference_type,
        reference_id=reference_id,
        notes=notes,
        created_by=user_id
    )
    db.add(movement)
    product.stock = new_stock
    return movement


def add_movement(db: Session, product_id: int, quantity: int, movement_type: str,
                 unit_id: Optional[int] = None, reference_type: Optional[str] = None,
                 reference_id: Optional[int] = None, notes: Optional[str] = None,
                 user_id: Optional[int] = None) -> StockMovement:
    product = db.query(Product).filter(Product.id == product_id).first()
    if not product:
        raise NotFoundError("Product not found")

    base_quantity = to_base_quantity(db, product_id, unit_id, quantity)
    try:
        movement = apply_movement(db, product, base_quantity, movement_type,
                                  reference_type, reference_id, notes, user_id)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(movement)
    return movement


def adjust_stock(db: Session, product_id: int, quantity: int, unit_id: Optional[int] = None,
                 notes: Optional[str] = None, user_id: Optional[int] = None) -> StockMovement:
    """Set a product's stock to an absolute level after a manual correction."""
    product = db.query(Product).filter(Product.id == product_id).first()
    if not product:
        raise NotFoundError("Product not found")
    old_data = snapshot(product)

    movement = add_movement(
        db, product_id, quantity, MovementType.ADJUSTMENT.value, unit_id=unit_id,
        reference_type=ReferenceType.MANUAL.value, notes=notes or "Manual stock adjustment",
        user_id=user_id
    )
    db.refresh(product)
    log_audit(db, user_id, AuditAction.UPDATE.value, "products", product_id, old_data, snapshot(product))
    return movement


def check_low_stock(db: Session) -> List[Product]:
    return db.query(Product).filter(
        Product.is_active.is_(True), Product.stock < Product.min_stock
    ).order_by(asc(Product.stock)).all()


def get_stock_history(db: Session, product_id: Optional[int] = None, page: int = 1, limit: int = None,
                      movement_type: Optional[str] = None, start_date: Optional[datetime] = None,
                      end_date: Optional[datetime] = None):
    query = db.query(StockMovement)
    if product_id: query = query.filter(StockMovement.product_id == product_id)
    if movement_type: query = query.filter(StockMovement.type == movement_type)
    if start_date: query = query.filter(StockMovement.created_at >= start_date)
    if end_date: query = query.filter(StockMovement.created_at <= end_date)
    return pagination.paginate(query.order_by(desc(StockMovement.created_at), desc(StockMovement.id)), page, limit)

# ============================================================
# STOCK OPNAME (physical count)
# ============================================================

def get_opname(db: Session, opname_id: int) -> StockOpname:
    opname = db.query(StockOpname).options(joinedload(StockOpname.items).joinedload(StockOpnameItem.product))\
        .filter(StockOpname.id == opname_id).first()
    if not opname:
        raise NotFoundError("Stock opname not found")
    return opname


def get_opnames(db: Session, page: int = 1, limit: int = None, status: Optional[str] = None):
    query = db.query(StockOpname)
    if status: query = query.filter(StockOpname.status == status)
    return pagination.paginate(query.order_by(desc(StockOpname.created_at), desc(StockOpname.id)), page, limit)


def create_opname(db: Session, notes: Optional[str] = None, category_id: Optional[int] = None,
                  user_id: Optional[int] = None) -> StockOpname:
    """Open a count session, snapshotting the system stock of every active product."""
    number = f"OPN-{now_local().strftime('%Y%m%d-%H%M%S')}"
    same_second = db.query(StockOpname).filter(StockOpname.opname_number.like(f"{number}%")).count()
    if same_second:
        number = f"{number}-{same_second + 1}"
    opname = StockOpname(
        opname_number=number,
        status=OpnameStatus.DRAFT.value,
        notes=notes,
        created_by=user_id
    )
    query = db.query(Product).filter(Product.is_active.is_(True))
    if category_id: query = query.filter(Product.category_id == category_id)
    for product in query.order_by(asc(Product.name)).all():
        opname.items.append(StockOpnameItem(
            product_id=product.id, system_stock=product.stock, actual_stock=product.stock, difference=0
        ))
    db.add(opname)
    db.commit()
    db.refresh(opname)
    log_audit(db, user_id, AuditAction.CREATE.value, "stock_opnames", opname.id, None, snapshot(opname))
    return opname


def update_opname_item(db: Session, opname_id: int, item_id: int, actual_stock: int) -> StockOpnameItem:
    opname = get_opname(db, opname_id)
    if opname.status == OpnameStatus.COMPLETED.value:
        raise InvalidStateError("Stock opname is already completed")
    item = next((i for i in opname.items if i.id == item_id), None)
    if not item:
        raise NotFoundError("Stock opname item not found")
    item.actual_stock = actual_stock
    item.difference = actual_stock - item.system_stock
    db.commit()
    db.refresh(item)
    return item


def complete_opname(db: Session, opname_id: int, user_id: Optional[int] = None) -> Tuple[StockOpname, List[StockMovement]]:
    """Book every counted difference as an OPNAME movement in one transaction."""
    opname = get_opname(db, opname_id)
    if opname.status == OpnameStatus.COMPLETED.value:
        raise InvalidStateError("Stock opname is already completed")

    adjustments = []
    try:
        for item in opname.items:
            if item.actual_stock == item.system_stock:
                continue
            adjustments.append(apply_movement(
                db, item.product, item.actual_stock, MovementType.OPNAME.value,
                reference_type=ReferenceType.OPNAME.value, reference_id=opname.id,
                notes=f"Stock opname {opname.opname_number}", user_id=user_id
            ))
        opname.status = OpnameStatus.COMPLETED.value
        opname.completed_at = now_local()
        opname.updated_by = user_id
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(opname)
    log_audit(db, user_id, AuditAction.UPDATE.value, "stock_opnames", opname.id, None,
              {"status": opname.status, "adjustments": len(adjustments)})
    return opname, adjustments
