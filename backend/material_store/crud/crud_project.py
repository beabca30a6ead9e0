from typing import Any, Dict, Optional
from sqlalchemy import desc, func, or_
from sqlalchemy.orm import Session, joinedload
from material_store.core import pagination
from material_store.core.numbers import round_half_up
from material_store.core.exceptions import NotFoundError
from material_store.crud.crud_audit import log_audit, snapshot
from material_store.models.base import (
    AuditAction, Product, Project, ProjectMaterial, ProjectStatus, Transaction
)
from material_store.schemas.schemas import (
    MaterialUsageUpdate, ProjectCreate, ProjectMaterialCreate, ProjectUpdate
)


def percent(part: float, whole: float) -> int:
    return round_half_up(part / whole * 100) if whole else 0


def _product_ref(product: Product) -> Dict[str, Any]:
    return {"id": product.id, "name": product.name, "sku": product.sku, "barcode": product.barcode}


def project_view(project: Project) -> Dict[str, Any]:
    """Project columns plus derived progress and remaining budget."""
    data = {c.name: getattr(project, c.name) for c in Project.__table__.columns}
    data["progress_percent"] = percent(project.spent or 0, project.budget or 0)
    data["budget_remaining"] = (project.budget or 0) - (project.spent or 0)
    data["materials"] = project.materials
    return data

# ============================================================
# PROJECT CRUD
# ============================================================

def get_projects(db: Session, page: int = 1, limit: int = None, status: Optional[str] = None,
                 search: Optional[str] = None, is_active: Optional[bool] = True):
    query = db.query(Project)
    if status: query = query.filter(Project.status == status)
    if is_active is not None: query = query.filter(Project.is_active.is_(is_active))
    if search:
        like = f"%{search}%"
        query = query.filter(or_(Project.name.ilike(like), Project.description.ilike(like)))
    return pagination.paginate(query.order_by(desc(Project.created_at), desc(Project.id)), page, limit)


def get_project(db: Session, project_id: int) -> Project:
    project = db.query(Project).options(
        joinedload(Project.materials).joinedload(ProjectMaterial.product)
    ).filter(Project.id == project_id).first()
    if not project:
        raise NotFoundError("Project not found")
    return project


def get_project_detail(db: Session, project_id: int) -> Dict[str, Any]:
    project = get_project(db, project_id)
    materials = project.materials
    total_estimated_cost = sum(m.estimated_qty * (m.unit_price or 0) for m in materials)
    total_used_cost = sum(m.used_qty * (m.unit_price or 0) for m in materials)
    transaction_count = db.query(func.count(Transaction.id)).filter(Transaction.project_id == project_id).scalar()

    data = project_view(project)
    data["summary"] = {
        "budget": project.budget or 0,
        "spent": project.spent or 0,
        "budget_remaining": data["budget_remaining"],
        "total_estimated_cost": total_estimated_cost,
        "total_used_cost": total_used_cost,
        "total_estimated_qty": sum(m.estimated_qty for m in materials),
        "total_used_qty": sum(m.used_qty for m in materials),
        "progress_percent": data["progress_percent"],
        "material_count": len(materials),
        "transaction_count": transaction_count or 0,
    }
    return data


def _material(db: Session, project_id: int, material_in: ProjectMaterialCreate) -> ProjectMaterial:
    product = db.query(Product).filter(Product.id == material_in.product_id).first()
    if not product:
        raise NotFoundError(f"Product {material_in.product_id} not found")
    unit_price = material_in.unit_price if material_in.unit_price is not None else product.sell_price
    return ProjectMaterial(
        project_id=project_id,
        product_id=product.id,
        estimated_qty=material_in.estimated_qty,
        used_qty=0,
        unit_price=unit_price or 0,
        notes=material_in.notes
    )


def create_project(db: Session, project_in: ProjectCreate, user_id: Optional[int] = None) -> Project:
    project = Project(
        **project_in.model_dump(exclude={"materials"}),
        spent=0.0,
        created_by=user_id,
        updated_by=user_id
    )
    db.add(project)
    db.flush()
    for material_in in project_in.materials or []:
        project.materials.append(_material(db, project.id, material_in))
    db.commit()
    db.refresh(project)
    log_audit(db, user_id, AuditAction.CREATE.value, "projects", project.id, None, snapshot(project))
    return project


def update_project(db: Session, project_id: int, project_in: ProjectUpdate, user_id: Optional[int] = None) -> Project:
    project = get_project(db, project_id)
    old_data = snapshot(project)
    for field, value in project_in.model_dump(exclude_unset=True).items():
        setattr(project, field, value)
    project.updated_by = user_id
    db.commit()
    db.refresh(project)
    log_audit(db, user_id, AuditAction.UPDATE.value, "projects", project.id, old_data, snapshot(project))
    return project


def delete_project(db: Session, project_id: int, user_id: Optional[int] = None) -> Project:
    project = get_project(db, project_id)
    old_data = snapshot(project)
    project.is_active = False
    if project.status in (ProjectStatus.PLANNING.value, ProjectStatus.IN_PROGRESS.value):
        project.status = ProjectStatus.CANCELLED.value
    project.updated_by = user_id
    db.commit()
    db.refresh(project)
    log_audit(db, user_id, AuditAction.DELETE.value, "projects", project.id, old_data)
    return project

# ============================================================
# MATERIALS
# ============================================================

def add_material(db: Session, project_id: int, material_in: ProjectMaterialCreate,
                 user_id: Optional[int] = None) -> ProjectMaterial:
    get_project(db, project_id)
    material = _material(db, project_id, material_in)
    db.add(material)
    db.commit()
    db.refresh(material)
    log_audit(db, user_id, AuditAction.CREATE.value, "project_materials", material.id, None, snapshot(material))
    return material


def update_material_usage(db: Session, project_id: int, material_id: int, usage: MaterialUsageUpdate,
                          user_id: Optional[int] = None) -> ProjectMaterial:
    material = db.query(ProjectMaterial).filter(
        ProjectMaterial.id == material_id, ProjectMaterial.project_id == project_id
    ).first()
    if not material:
        raise NotFoundError("Material not found in this project")
    old_data = snapshot(material)
    material.used_qty = usage.used_qty
    db.commit()
    db.refresh(material)
    log_audit(db, user_id, AuditAction.UPDATE.value, "project_materials", material.id, old_data, snapshot(material))
    return material

# ============================================================
# PROGRESS & MATERIAL REPORTS
# ============================================================

def get_progress_summary(db: Session, project_id: int) -> Dict[str, Any]:
    project = get_project(db, project_id)

    materials = []
    total_estimated_cost = 0.0
    total_used_cost = 0.0
    total_estimated_qty = 0
    total_used_qty = 0
    for m in project.materials:
        unit_price = m.unit_price or 0
        estimated_cost = m.estimated_qty * unit_price
        used_cost = m.used_qty * unit_price
        total_estimated_cost += estimated_cost
        total_used_cost += used_cost
        total_estimated_qty += m.estimated_qty
        total_used_qty += m.used_qty
        materials.append({
            "id": m.id,
            "product": _product_ref(m.product),
            "estimated_qty": m.estimated_qty,
            "used_qty": m.used_qty,
            "remaining": max(0, m.estimated_qty - m.used_qty),
            "unit_price": unit_price,
            "estimated_cost": estimated_cost,
            "used_cost": used_cost,
            "percent_used": percent(m.used_qty, m.estimated_qty),
        })

    budget = project.budget or 0
    spent = project.spent or 0
    return {
        "project_id": project.id,
        "project_name": project.name,
        "status": project.status,
        "budget": budget,
        "spent": spent,
        "budget_remaining": budget - spent,
        "budget_used_percent": percent(spent, budget),
        "total_estimated_cost": total_estimated_cost,
        "total_used_cost": total_used_cost,
        "overall_material_percent": percent(total_used_qty, total_estimated_qty),
        "materials": materials,
    }


def get_material_report(db: Session, project_id: int) -> Dict[str, Any]:
    """Remaining needs per material checked against the current store stock."""
    project = get_project(db, project_id)

    lines = []
    insufficient = []
    for m in project.materials:
        product = m.product
        unit_price = m.unit_price or 0
        remaining = max(0, m.estimated_qty - m.used_qty)
        stock = product.stock or 0
        sufficient = stock >= remaining
        shortfall = 0 if sufficient else remaining - stock
        lines.append({
            "material_id": m.id,
            "product": _product_ref(product),
            "estimated_qty": m.estimated_qty,
            "used_qty": m.used_qty,
            "remaining": remaining,
            "unit_price": unit_price,
            "estimated_cost": m.estimated_qty * unit_price,
            "used_cost": m.used_qty * unit_price,
            "remaining_cost": remaining * unit_price,
            "percent_used": percent(m.used_qty, m.estimated_qty),
            "current_stock": stock,
            "stock_sufficient": sufficient,
            "shortfall": shortfall,
            "notes": m.notes,
        })
        if not sufficient:
            insufficient.append({"product": product.name, "needed": remaining,
                                 "available": stock, "shortfall": shortfall})

    return {
        "project_id": project.id,
        "project_name": project.name,
        "status": project.status,
        "materials": lines,
        "summary": {
            "total_items": len(lines),
            "total_estimated_cost": sum(l["estimated_cost"] for l in lines),
            "total_used_cost": sum(l["used_cost"] for l in lines),
            "total_remaining_cost": sum(l["remaining_cost"] for l in lines),
            "insufficient_stock_count": len(insufficient),
            "insufficient_items": insufficient,
        },
    }
