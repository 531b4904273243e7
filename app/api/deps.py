"""Shared router dependencies"""
from typing import Dict

from fastapi import Depends, HTTPException
from sqlalchemy.orm import Session

from app.config import settings
from app.models.base import get_db
from app.services.base import AbstractService
from app.services.errors import ConfigurationError
from app.services.registry import get_service_class
from app.services.store import IssueStore
from app.services.transport import Transport


def get_settings():
    return settings


def get_transports() -> Dict[str, Transport]:
    """Transport per service id; empty means every service builds its default one"""
    return {}


def get_store(db: Session = Depends(get_db)) -> IssueStore:
    return IssueStore(db)


def get_service(
    service_id: str,
    store: IssueStore = Depends(get_store),
    app_settings=Depends(get_settings),
    transports: Dict[str, Transport] = Depends(get_transports),
) -> AbstractService:
    try:
        service_class = get_service_class(service_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown service: {service_id}")
    return service_class.from_store(store, app_settings, transports.get(service_id))


def get_configured_service(service: AbstractService = Depends(get_service)) -> AbstractService:
    try:
        service.require_configured()
    except ConfigurationError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return service
