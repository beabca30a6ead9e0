from typing import Any, Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from material_store.api import deps
from material_store.core import pagination
from material_store.crud import crud_project
from material_store.db.session import get_db
from material_store.models.base import User
from material_store.schemas.schemas import (
    MaterialReportOut, MaterialUsageUpdate, ProjectCreate, ProjectDetailOut, ProjectMaterialCreate,
    ProjectMaterialOut, ProjectOut, ProjectPage, ProjectProgressOut, ProjectUpdate
)

router = APIRouter()

staff = deps.require_roles("ADMIN", "OPERATOR")
admin_only = deps.require_roles("ADMIN")


@router.get("/", response_model=ProjectPage)
def list_projects(
    page: int = 1,
    limit: int = 10,
    status: Optional[str] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(deps.get_current_active_user)
) -> Any:
    rows, total, page, limit = crud_project.get_projects(db, page, limit, status, search)
    return pagination.paginated([crud_project.project_view(p) for p in rows], total, page, limit)


@router.get("/{project_id}", response_model=ProjectDetailOut)
def read_project(project_id: int, db: Session = Depends(get_db),
                 current_user: User = Depends(deps.get_current_active_user)) -> Any:
    return crud_project.get_project_detail(db, project_id)


@router.post("/", response_model=ProjectOut, status_code=201)
def create_project(body: ProjectCreate, db: Session = Depends(get_db), current_user: User = Depends(staff)) -> Any:
    return crud_project.project_view(crud_project.create_project(db, body, current_user.id))


@router.put("/{project_id}", response_model=ProjectOut)
def update_project(project_id: int, body: ProjectUpdate, db: Session = Depends(get_db),
                   current_user: User = Depends(staff)) -> Any:
    return crud_project.project_view(crud_project.update_project(db, project_id, body, current_user.id))


@router.delete("/{project_id}", response_model=ProjectOut)
def delete_project(project_id: int, db: Session = Depends(get_db), current_user: User = Depends(admin_only)) -> Any:
    return crud_project.project_view(crud_project.delete_project(db, project_id, current_user.id))


@router.post("/{project_id}/materials", response_model=ProjectMaterialOut, status_code=201)
def add_material(project_id: int, body: ProjectMaterialCreate, db: Session = Depends(get_db),
                 current_user: User = Depends(staff)) -> Any:
    return crud_project.add_material(db, project_id, body, current_user.id)


@router.put("/{project_id}/materials/{material_id}", response_model=ProjectMaterialOut)
def update_material_usage(project_id: int, material_id: int, body: MaterialUsageUpdate,
                          db: Session = Depends(get_db), current_user: User = Depends(staff)) -> Any:
    return crud_project.update_material_usage(db, project_id, material_id, body, current_user.id)


@router.get("/{project_id}/progress", response_model=ProjectProgressOut)
def progress_summary(project_id: int, db: Session = Depends(get_db),
                     current_user: User = Depends(deps.get_current_active_user)) -> Any:
    return crud_project.get_progress_summary(db, project_id)


@router.get("/{project_id}/material-report", response_model=MaterialReportOut)
def material_report(project_id: int, db: Session = Depends(get_db),
                    current_user: User = Depends(deps.get_current_active_user)) -> Any:
    return crud_project.get_material_report(db, project_id)
