"""Issue lookup endpoints"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from app.api.deps import get_service
from app.services.base import AbstractService
from app.services.errors import MappingError, TransportError
from app.services.issue import Issue

router = APIRouter(prefix="/api/issues", tags=["issues"])


class LabelResponse(BaseModel):
    name: str
    color: Optional[str] = None


class AssigneeResponse(BaseModel):
    name: str
    avatar_url: Optional[str] = None


class IssueResponse(BaseModel):
    service: str
    project: str
    number: str
    is_merge_request: bool
    key: str
    url: str
    summary: str
    description: Optional[str] = None
    status: str
    type: str
    parent: Optional[str] = None
    components: List[str] = []
    labels: List[LabelResponse] = []
    versions: List[str] = []
    duedate: Optional[str] = None
    updated: Optional[str] = None
    assignee: Optional[AssigneeResponse] = None


class IssueLinkResponse(BaseModel):
    service: str
    project: str
    issue_id: str


def _lookup(service: AbstractService, key: str, refresh: bool) -> Issue:
    try:
        issue = service.parse_issue_syntax(key)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if refresh or not issue.in_db or not service.is_issue_valid(issue):
        try:
            issue.get_from_service(service)
        except TransportError as e:
            raise HTTPException(status_code=e.status_code, detail=e.message)
        except MappingError as e:
            raise HTTPException(status_code=404, detail=str(e))
    return issue


@router.get("/{service_id}", response_model=IssueResponse)
def get_issue(key: str, refresh: bool = False, service: AbstractService = Depends(get_service)):
    """Get an issue by its syntax, e.g. ``group/project#12`` or ``group/project!3``"""
    issue = _lookup(service, key, refresh)
    return {**issue.to_dict(), "key": str(issue.key), "url": issue.get_issue_url(service)}


@router.get("/{service_id}/links", response_model=List[IssueLinkResponse])
def get_issue_links(key: str, service: AbstractService = Depends(get_service)):
    """Issues referenced by a merge/pull request"""
    try:
        issue_key = service.parse_issue_syntax(key).key
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    links = service.store.get_issue_issues(issue_key)
    return [
        {"service": ref_service, "project": ref_project, "issue_id": ref_issue_id}
        for ref_service, ref_project, ref_issue_id in links
    ]
