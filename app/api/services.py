"""Tracker configuration, repository and webhook endpoints"""
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from datetime import datetime

from app.api.deps import get_configured_service, get_service, get_settings, get_store, get_transports
from app.scheduler import scheduler
from app.services.base import AbstractService
from app.services.errors import TransportError
from app.services.registry import build_services
from app.services.store import IssueStore
from app.services.transport import Transport

router = APIRouter(prefix="/api/services", tags=["services"])


class ServiceStatusResponse(BaseModel):
    id: str
    display_name: str
    syntax: str
    configured: bool
    user: Optional[str] = None
    error: Optional[str] = None


class ServiceConfigUpdate(BaseModel):
    url: Optional[str] = None
    user: Optional[str] = None
    token: Optional[str] = None


class ServiceConfigResponse(ServiceStatusResponse):
    saved: List[str] = []


class RepositoryResponse(BaseModel):
    full_name: str
    display_name: str
    hook_id: Optional[str] = None
    error: Optional[int] = None

    class Config:
        from_attributes = True


class WebhookCreate(BaseModel):
    project: str


class WebhookResponse(BaseModel):
    id: int
    service: str
    project: str
    hook_id: str
    created_at: datetime

    class Config:
        from_attributes = True


def _status(service: AbstractService) -> Dict:
    configured = service.is_configured()
    return {
        "id": service.ID,
        "display_name": service.DISPLAY_NAME,
        "syntax": service.SYNTAX,
        "configured": configured,
        "user": service.get_user_string() if configured else None,
        "error": service.config_error,
    }


def _reschedule_imports():
    # Jobs follow the registered webhooks
    if scheduler.scheduler.running:
        scheduler.schedule_all_projects()


@router.get("/", response_model=List[ServiceStatusResponse])
def list_services(
    store: IssueStore = Depends(get_store),
    app_settings=Depends(get_settings),
    transports: Dict[str, Transport] = Depends(get_transports),
):
    """List all trackers with their configuration state"""
    return [_status(service) for service in build_services(store, app_settings, transports)]


@router.put("/{service_id}/config", response_model=ServiceConfigResponse)
def update_config(
    service_id: str,
    values: ServiceConfigUpdate,
    service: AbstractService = Depends(get_service),
    store: IssueStore = Depends(get_store),
    app_settings=Depends(get_settings),
    transports: Dict[str, Transport] = Depends(get_transports),
):
    """Save the credentials of a tracker and check them"""
    saved = type(service).handle_authorization(store, values.dict())
    # Reload, the resolved service was built from the previous configuration
    updated = type(service).from_store(store, app_settings, transports.get(service_id))
    return {**_status(updated), "saved": saved}


@router.get("/{service_id}/organisations", response_model=List[str])
def list_organisations(service: AbstractService = Depends(get_configured_service)):
    """Groups, organisations or workspaces visible to the configured user"""
    try:
        return sorted(service.get_list_of_all_user_organisations())
    except TransportError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/{service_id}/repos", response_model=List[RepositoryResponse])
def list_repositories(organisation: str, service: AbstractService = Depends(get_configured_service)):
    """Repositories of an organisation, with the id of our webhook where one exists"""
    try:
        return service.get_list_of_all_repos_and_hooks(organisation)
    except TransportError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/{service_id}/webhooks", response_model=List[WebhookResponse])
def list_webhooks(service_id: str, service: AbstractService = Depends(get_service)):
    """Webhooks registered through this service"""
    return service.store.get_webhooks(service_id)


@router.post("/{service_id}/webhooks")
def create_webhook(hook: WebhookCreate, service: AbstractService = Depends(get_configured_service)):
    """Register our webhook on a repository"""
    body, status_code = service.create_webhook(hook.project)
    if status_code >= 300:
        raise HTTPException(status_code=status_code, detail=body)
    _reschedule_imports()
    return {"project": hook.project, "hook": body}


@router.delete("/{service_id}/webhooks/{hook_id}")
def delete_webhook(hook_id: str, project: str, service: AbstractService = Depends(get_configured_service)):
    """Remove our webhook from a repository"""
    body, status_code = service.delete_webhook(project, hook_id)
    if status_code >= 300:
        raise HTTPException(status_code=status_code, detail=body)
    _reschedule_imports()
    return {"message": "Webhook deleted successfully"}
