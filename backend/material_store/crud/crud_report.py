import calendar
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import asc, desc, func
from sqlalchemy.orm import Session, joinedload
from material_store.core.numbers import round_half_up
from material_store.models.base import (
    Product, Project, ProjectStatus, PurchaseOrder, PurchaseOrderStatus, Transaction,
    TransactionItem, TransactionStatus, TransactionType, UnitLembaga, now_local
)

TYPE_LABELS = {
    TransactionType.CASH.value: "Tunai",
    TransactionType.BON.value: "Bon",
    TransactionType.ANGGARAN.value: "Anggaran",
}

TREND_MONTHS = 11
DASHBOARD_MONTHS = 6

# ============================================================
# HELPERS
# ============================================================

def month_start(value: datetime, shift: int = 0) -> datetime:
    """First instant of the month `shift` months away from `value`."""
    index = value.year * 12 + (value.month - 1) + shift
    return datetime(index // 12, index % 12 + 1, 1)


def months_before(value: datetime, months: int) -> datetime:
    """Same day and time `months` months earlier, clamped to the end of a shorter month."""
    first = month_start(value, -months)
    last_day = calendar.monthrange(first.year, first.month)[1]
    return value.replace(year=first.year, month=first.month, day=min(value.day, last_day))


def month_key(value: datetime) -> str:
    return value.strftime("%Y-%m")


def month_label(key: str) -> str:
    return datetime.strptime(key, "%Y-%m").strftime("%b %Y")


def change_percent(current: float, previous: float) -> int:
    if not previous:
        return 0
    return round_half_up((current - previous) / previous * 100)


def previous_window(start: datetime, end: datetime) -> Tuple[datetime, datetime]:
    """The window of equal length ending right before `start`."""
    return start - (end - start), start - timedelta(microseconds=1)


def _product_ref(product: Product) -> Dict[str, Any]:
    return {"id": product.id, "name": product.name, "sku": product.sku, "barcode": product.barcode}


def _sales_query(db: Session, start: Optional[datetime], end: Optional[datetime]):
    query = db.query(Transaction).filter(Transaction.status != TransactionStatus.CANCELLED.value)
    if start: query = query.filter(Transaction.created_at >= start)
    if end: query = query.filter(Transaction.created_at <= end)
    return query


def _period_totals(db: Session, start: datetime, end: datetime) -> Dict[str, Any]:
    total, count = _sales_query(db, start, end)\
        .with_entities(func.coalesce(func.sum(Transaction.total), 0), func.count(Transaction.id)).one()
    return {"total": float(total or 0), "count": int(count or 0)}


def monthly_buckets(transactions: List[Transaction]) -> Dict[str, Dict[str, Any]]:
    buckets: Dict[str, Dict[str, Any]] = {}
    for trx in transactions:
        key = month_key(trx.created_at)
        bucket = buckets.setdefault(key, {"month": key, "label": month_label(key), "total": 0.0, "count": 0})
        bucket["total"] += trx.total or 0
        bucket["count"] += 1
    return buckets


def top_products(db: Session, start: Optional[datetime], end: Optional[datetime], limit: int) -> List[Dict[str, Any]]:
    query = db.query(
        TransactionItem.product_id,
        func.sum(TransactionItem.quantity).label("total_quantity"),
        func.sum(TransactionItem.subtotal).label("total_value")
    ).join(Transaction, TransactionItem.transaction_id == Transaction.id)\
        .filter(Transaction.status != TransactionStatus.CANCELLED.value)
    if start: query = query.filter(Transaction.created_at >= start)
    if end: query = query.filter(Transaction.created_at <= end)
    rows = query.group_by(TransactionItem.product_id)\
        .order_by(desc("total_quantity"), asc(TransactionItem.product_id)).limit(limit).all()

    products = {p.id: p for p in db.query(Product).filter(Product.id.in_([r.product_id for r in rows])).all()}
    return [
        {
            "rank": rank,
            "product": _product_ref(products[r.product_id]),
            "total_quantity": int(r.total_quantity or 0),
            "total_value": float(r.total_value or 0),
        }
        for rank, r in enumerate(rows, start=1)
    ]


def expenditure_by_unit(db: Session, start: Optional[datetime], end: Optional[datetime],
                        trx_type: Optional[str] = None) -> List[Dict[str, Any]]:
    query = db.query(
        UnitLembaga.id, UnitLembaga.name, func.coalesce(func.sum(Transaction.total), 0).label("total")
    ).join(Transaction, Transaction.unit_lembaga_id == UnitLembaga.id)\
        .filter(Transaction.status != TransactionStatus.CANCELLED.value)
    if start: query = query.filter(Transaction.created_at >= start)
    if end: query = query.filter(Transaction.created_at <= end)
    if trx_type: query = query.filter(Transaction.type == trx_type)
    rows = query.group_by(UnitLembaga.id, UnitLembaga.name).order_by(desc("total")).all()
    return [{"unit_lembaga_id": r.id, "unit_lembaga_name": r.name, "total": float(r.total or 0)} for r in rows]

# ============================================================
# STOCK REPORT
# ============================================================

def get_stock_report(db: Session, category_id: Optional[int] = None, low_stock_only: bool = False) -> Dict[str, Any]:
    query = db.query(Product).options(
        joinedload(Product.category), joinedload(Product.brand), joinedload(Product.unit)
    ).filter(Product.is_active.is_(True))
    if category_id: query = query.filter(Product.category_id == category_id)
    if low_stock_only: query = query.filter(Product.stock < Product.min_stock)

    items = []
    for p in query.order_by(asc(Product.name)).all():
        stock = p.stock or 0
        items.append({
            "id": p.id,
            "name": p.name,
            "sku": p.sku,
            "category": p.category.name if p.category else "-",
            "brand": p.brand.name if p.brand else "-",
            "unit": p.unit.abbreviation if p.unit else None,
            "stock": stock,
            "min_stock": p.min_stock or 0,
            "max_stock": p.max_stock,
            "buy_price": p.buy_price or 0,
            "sell_price": p.sell_price or 0,
            "stock_value": stock * (p.buy_price or 0),
            "is_low_stock": stock < (p.min_stock or 0),
            "is_over_stock": p.max_stock is not None and stock > p.max_stock,
        })

    return {
        "items": items,
        "summary": {
            "total_items": len(items),
            "total_stock_value": sum(i["stock_value"] for i in items),
            "low_stock_count": sum(1 for i in items if i["is_low_stock"]),
        },
    }

# ============================================================
# FINANCIAL REPORT
# ============================================================

def get_financial_report(db: Session, start_date: Optional[datetime] = None, end_date: Optional[datetime] = None,
                         trx_type: Optional[str] = None) -> Dict[str, Any]:
    po_query = db.query(
        func.coalesce(func.sum(PurchaseOrder.total_amount), 0), func.count(PurchaseOrder.id)
    ).filter(PurchaseOrder.status == PurchaseOrderStatus.RECEIVED.value)
    if start_date: po_query = po_query.filter(PurchaseOrder.received_at >= start_date)
    if end_date: po_query = po_query.filter(PurchaseOrder.received_at <= end_date)
    po_total, po_count = po_query.one()

    sales = _sales_query(db, start_date, end_date)
    if trx_type: sales = sales.filter(Transaction.type == trx_type)
    totals_by_type = dict(
        sales.with_entities(Transaction.type, func.coalesce(func.sum(Transaction.total), 0))
        .group_by(Transaction.type).all()
    )
    types = [trx_type] if trx_type else list(TYPE_LABELS)
    by_type = [
        {"type": t, "label": TYPE_LABELS.get(t, t), "total": float(totals_by_type.get(t, 0) or 0)}
        for t in types
    ]

    # outstanding BON is a current balance, not bound to the period
    pending = db.query(Transaction).filter(
        Transaction.type == TransactionType.BON.value,
        Transaction.status == TransactionStatus.PENDING.value
    ).order_by(asc(Transaction.due_date), asc(Transaction.created_at)).all()
    bon_items = [
        {
            "id": t.id,
            "transaction_number": t.transaction_number,
            "customer_name": t.customer_name,
            "total": t.total or 0,
            "paid_amount": t.paid_amount or 0,
            "remaining": (t.total or 0) - (t.paid_amount or 0),
            "due_date": t.due_date,
            "created_at": t.created_at,
        }
        for t in pending
    ]

    return {
        "period": {"start_date": start_date, "end_date": end_date},
        "purchases": {"total_amount": float(po_total or 0), "count": int(po_count or 0)},
        "expenditure_by_type": by_type,
        "expenditure_by_unit": expenditure_by_unit(db, start_date, end_date, trx_type),
        "total_expenditure": sum(t["total"] for t in by_type),
        "outstanding_bon": {
            "count": len(bon_items),
            "total_outstanding": sum(b["remaining"] for b in bon_items),
            "items": bon_items,
        },
    }

# ============================================================
# TREND REPORT
# ============================================================

def get_trend_report(db: Session, start_date: Optional[datetime] = None,
                     end_date: Optional[datetime] = None) -> Dict[str, Any]:
    """Monthly totals, best sellers, unit lembaga ranking and a period-over-period change."""
    end = end_date or now_local()
    start = start_date or months_before(end, TREND_MONTHS)

    transactions = _sales_query(db, start, end).all()
    buckets = monthly_buckets(transactions)

    current = {"total": float(sum(t.total or 0 for t in transactions)), "count": len(transactions)}
    previous = _period_totals(db, *previous_window(start, end))

    return {
        "period": {"start_date": start, "end_date": end},
        "monthly_trend": [buckets[k] for k in sorted(buckets)],
        "top_products": top_products(db, start, end, limit=10),
        "top_units": expenditure_by_unit(db, start, end),
        "period_comparison": {
            "current": current,
            "previous": previous,
            "change_percent": change_percent(current["total"], previous["total"]),
            "direction": "up" if current["total"] >= previous["total"] else "down",
        },
    }

# ============================================================
# DASHBOARD
# ============================================================

def get_dashboard_summary(db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or now_local()
    this_month = month_start(now)

    active = db.query(Product).filter(Product.is_active.is_(True))
    total_products = active.count()
    stock_value = active.with_entities(
        func.coalesce(func.sum(Product.stock * Product.buy_price), 0)
    ).scalar()

    low_stock = active.filter(Product.stock < Product.min_stock)
    low_stock_count = low_stock.count()
    low_stock_items = low_stock.order_by(asc(Product.stock)).limit(10).all()

    active_pos = db.query(func.count(PurchaseOrder.id)).filter(
        PurchaseOrder.status.in_([PurchaseOrderStatus.DRAFT.value, PurchaseOrderStatus.SENT.value])
    ).scalar()
    active_projects = db.query(func.count(Project.id)).filter(
        Project.is_active.is_(True),
        Project.status.in_([ProjectStatus.PLANNING.value, ProjectStatus.IN_PROGRESS.value])
    ).scalar()

    chart_start = month_start(now, -(DASHBOARD_MONTHS - 1))
    buckets = monthly_buckets(_sales_query(db, chart_start, now).all())
    trend = []
    for shift in range(DASHBOARD_MONTHS):
        key = month_key(month_start(chart_start, shift))
        trend.append(buckets.get(key, {"month": key, "label": month_label(key), "total": 0.0, "count": 0}))

    return {
        "total_products": total_products,
        "total_stock_value": float(stock_value or 0),
        "monthly_transaction": _period_totals(db, this_month, now),
        "low_stock_count": low_stock_count,
        "low_stock_items": low_stock_items,
        "active_pos": active_pos or 0,
        "active_projects": active_projects or 0,
        "charts": {
            "transaction_trend": trend,
            "top_products": top_products(db, this_month, now, limit=5),
        },
    }
