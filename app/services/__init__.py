"""Services"""

from app.services.base import AbstractService, ServiceConfig
from app.services.bitbucket_service import Bitbucket
from app.services.github_service import GitHub
from app.services.gitlab_service import GitLab
from app.services.import_service import ImportService
from app.services.jira_service import Jira
from app.services.registry import SERVICE_CLASSES, build_service, build_services, get_service_class

__all__ = [
    "AbstractService",
    "ServiceConfig",
    "GitLab",
    "GitHub",
    "Jira",
    "Bitbucket",
    "ImportService",
    "SERVICE_CLASSES",
    "build_service",
    "build_services",
    "get_service_class",
]
