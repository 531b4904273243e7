"""Lookup of the configured tracker integrations"""

from typing import Dict, List, Optional, Type

from app.services.base import AbstractService
from app.services.bitbucket_service import Bitbucket
from app.services.github_service import GitHub
from app.services.gitlab_service import GitLab
from app.services.jira_service import Jira
from app.services.store import IssueStore
from app.services.transport import Transport

# Webhook routing asks the services in this order
SERVICE_CLASSES = (GitLab, GitHub, Jira, Bitbucket)


def get_service_class(service_id: str) -> Type[AbstractService]:
    for service_class in SERVICE_CLASSES:
        if service_class.ID == service_id:
            return service_class
    raise KeyError(f"Unknown service: {service_id}")


def build_service(
    service_id: str,
    store: IssueStore,
    settings,
    transport: Optional[Transport] = None,
) -> AbstractService:
    """Instantiate one service with the configuration currently stored"""
    return get_service_class(service_id).from_store(store, settings, transport)


def build_services(
    store: IssueStore,
    settings,
    transports: Optional[Dict[str, Transport]] = None,
) -> List[AbstractService]:
    transports = transports or {}
    return [
        service_class.from_store(store, settings, transports.get(service_class.ID))
        for service_class in SERVICE_CLASSES
    ]
