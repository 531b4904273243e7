"""Import management endpoints"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session
from datetime import datetime

from app.api.deps import get_settings, get_transports
from app.models import ImportLog
from app.models.base import get_db
from app.services.import_service import ImportService
from app.services.registry import get_service_class

router = APIRouter(prefix="/api/imports", tags=["imports"])


class ImportTrigger(BaseModel):
    project: str
    cursor: Optional[int] = None
    max_pages: Optional[int] = None


class ImportLogResponse(BaseModel):
    id: int
    service: str
    project: str
    status: str
    imported: int
    total_estimate: Optional[int] = None
    cursor: int
    message: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


@router.post("/{service_id}/trigger")
def trigger_import(
    service_id: str,
    trigger: ImportTrigger,
    db: Session = Depends(get_db),
    app_settings=Depends(get_settings),
    transports=Depends(get_transports),
):
    """Manually import (or resume importing) a project"""
    try:
        get_service_class(service_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown service: {service_id}")

    import_service = ImportService(db, settings=app_settings, transports=transports)
    return import_service.import_project(
        service_id, trigger.project, cursor=trigger.cursor, max_pages=trigger.max_pages
    )


@router.get("/logs", response_model=List[ImportLogResponse])
def list_import_logs(
    limit: int = 100,
    service: str = None,
    project: str = None,
    db: Session = Depends(get_db),
):
    """List import logs"""
    query = db.query(ImportLog).order_by(ImportLog.created_at.desc(), ImportLog.id.desc())
    if service:
        query = query.filter(ImportLog.service == service)
    if project:
        query = query.filter(ImportLog.project == project)
    return query.limit(limit).all()
