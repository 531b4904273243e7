"""GitLab issue and merge request integration"""
import gitlab
import logging
import time
from typing import Any, Dict, List, Optional, Set, Tuple
from urllib.parse import quote

import requests

from app.security import tokens_match
from app.services.base import AbstractService
from app.services.errors import MappingError, TransportError
from app.services.issue import Issue, IssueKey
from app.services.results import IssuePage
from app.services.transport import Transport, TransportResponse, decode_body
from app.services.webhook_router import WebhookRequest

logger = logging.getLogger(__name__)


class GitLabTransport(Transport):
    """Transport routing requests through python-gitlab's HTTP layer"""

    def __init__(self, url: str, access_token: Optional[str], timeout: float = 30.0):
        self.url = url
        self.gl = gitlab.Gitlab(url, private_token=access_token, timeout=timeout)

    @staticmethod
    def _should_retry(exc: Exception) -> bool:
        """Best-effort retry predicate for transient GitLab failures."""
        # python-gitlab exceptions often carry an HTTP response code
        rc = getattr(exc, "response_code", None)
        if rc in (429, 500, 502, 503, 504):
            return True
        # If we can't classify, don't retry to avoid hiding real issues.
        return False

    def _with_retries(self, fn, *, max_attempts: int = 3, base_delay_s: float = 0.5):
        """Run callable with small exponential backoff on transient errors."""
        attempt = 1
        while True:
            try:
                return fn()
            except gitlab.exceptions.GitlabError as e:
                if attempt >= max_attempts or not self._should_retry(e):
                    raise
                time.sleep(base_delay_s * (2 ** (attempt - 1)))
                attempt += 1

    def send_request(self, url, headers, body=None, method="GET"):
        try:
            response = self._with_retries(
                lambda: self.gl.http_request(
                    method.lower(),
                    url,
                    post_data=body,
                    extra_headers=dict(headers),
                )
            )
        except gitlab.exceptions.GitlabError as e:
            rc = getattr(e, "response_code", None) or 502
            raise TransportError(rc, f"HTTP {rc}: {e.error_message}", url=url) from e
        except requests.exceptions.Timeout as e:
            raise TransportError(504, "Request timed out", url=url) from e
        except requests.exceptions.RequestException as e:
            raise TransportError(502, f"Request failed: {e}", url=url) from e
        return TransportResponse(response.status_code, decode_body(response), response.headers)


class GitLab(AbstractService):
    """GitLab issues and merge requests"""

    ID = "gitlab"
    DISPLAY_NAME = "GitLab"
    SYNTAX = "gl"
    CONFIG_KEYS = {"url": "gitlab_url", "token": "gitlab_token"}
    WEBHOOK_HEADER = "X-Gitlab-Token"
    ALLOWED_EVENT_TYPES = ("issue", "merge_request")

    def _default_transport(self) -> Transport:
        return GitLabTransport(self.config.url or "", self.config.token, self.config.timeout)

    def _api_url(self, endpoint: str) -> str:
        return f"{self.config.url}/api/v4{endpoint}"

    def _auth_headers(self) -> Dict[str, str]:
        return {"PRIVATE-TOKEN": self.config.token or ""}

    @staticmethod
    def _encode(project: str) -> str:
        return quote(str(project), safe="")

    def is_configured(self) -> bool:
        if not self.config.url:
            self.config_error = "GitLab URL not set!"
            return False

        if not self.config.token:
            self.config_error = "Authentication token is missing!"
            return False

        try:
            self.user = self._get("/user")
        except TransportError as e:
            self.config_error = f"The GitLab authentication failed with message: {e.message}"
            return False

        self.config_error = None
        return True

    def get_user_string(self) -> str:
        if not self.user:
            return ""
        return f"{self.user.get('name')} ({self.user.get('web_url')})"

    def get_list_of_all_user_organisations(self) -> Set[str]:
        groups = self._get("/groups?per_page=100") or []
        return {group["full_path"] for group in groups}

    def _list_repositories(self, organisation: str) -> List[Tuple[str, str]]:
        projects = self._get(f"/groups/{self._encode(organisation)}/projects?per_page=100") or []
        return [(project["path_with_namespace"], project["name"]) for project in projects]

    def _list_hooks(self, full_name: str) -> List[Dict[str, Any]]:
        return self._get(f"/projects/{self._encode(full_name)}/hooks?per_page=100") or []

    def is_our_issue_hook(self, hook: Dict[str, Any]) -> bool:
        """See if this is a hook for issue events, that has been set by us"""
        if hook.get("url") != self.config.webhook_url:
            return False

        if not hook.get("enable_ssl_verification"):
            return False

        if hook.get("push_events"):
            return False

        if not hook.get("issues_events"):
            return False

        if not hook.get("merge_requests_events"):
            return False

        return True

    def _register_webhook(self, project: str, secret: str) -> TransportResponse:
        data = {
            "url": self.config.webhook_url,
            "enable_ssl_verification": True,
            "token": secret,
            "push_events": False,
            "issues_events": True,
            "merge_requests_events": True,
        }
        return self._make_request(f"/projects/{self._encode(project)}/hooks", data, "POST")

    def _unregister_webhook(self, project: str, hook_id: str) -> TransportResponse:
        return self._make_request(f"/projects/{self._encode(project)}/hooks/{hook_id}", method="DELETE")

    def get_issue_url(self, project_id, issue_id, is_merge_request=False) -> str:
        kind = "merge_requests" if is_merge_request else "issues"
        return f"{self.config.url}/{project_id}/{kind}/{issue_id}"

    def _item_number(self, info, required=True):
        iid = info.get("iid")
        if iid is None and required:
            raise MappingError("GitLab item has no iid")
        return str(iid) if iid is not None else None

    @staticmethod
    def _label_names(labels: List[Any]) -> List[str]:
        # Plain names, or label objects when requested with_labels_details
        return [label["name"] if isinstance(label, dict) else str(label) for label in labels or []]

    def _set_issue_data(self, issue: Issue, info: Dict[str, Any]):
        self._require_fields(info, info.get("title"), info.get("state"))
        labels = self._label_names(info.get("labels"))

        issue.summary = info["title"]
        issue.description = info.get("description") or ""
        issue.type = self.get_type_from_labels(labels)
        issue.status = info["state"]
        issue.set_updated(info.get("updated_at"))
        issue.set_labels(labels)
        for label in info.get("labels") or []:
            if isinstance(label, dict) and label.get("color"):
                issue.set_label_data(label["name"], label["color"])

        milestone = info.get("milestone")
        if milestone:
            issue.versions = [milestone["title"]]
        due_date = info.get("due_date") or (milestone or {}).get("due_date")
        if due_date:
            issue.set_duedate(due_date)

        assignee = info.get("assignee")
        if assignee:
            issue.set_assignee(assignee.get("name"), assignee.get("avatar_url"))

    def retrieve_issue(self, issue: Issue):
        notable = "merge_requests" if issue.is_merge_request else "issues"
        project = self._encode(issue.project)
        info = self._get(f"/projects/{project}/{notable}/{issue.number}")
        self._apply_issue_data(issue, info)

        if issue.is_merge_request:
            self._record_cross_references(issue)

        for label_data in self._get(f"/projects/{project}/labels?per_page=100") or []:
            issue.set_label_data(label_data.get("name"), label_data.get("color"))

    def retrieve_all_issues(self, project_key: str, cursor: int = 0) -> IssuePage:
        per_page = self.PER_PAGE
        page = self._page_number(cursor)
        project = self._encode(project_key)
        # GitLab defaults to state=opened; closed items must be imported too.
        query = f"state=all&page={page}&per_page={per_page}"

        self.estimator.reset()
        issues_response = self._make_request(f"/projects/{project}/issues?{query}")
        issues = issues_response.body or []
        self.estimator.add(issues_response.headers, len(issues))
        mrs_response = self._make_request(f"/projects/{project}/merge_requests?{query}")
        mrs = mrs_response.body or []
        self.estimator.add(mrs_response.headers, len(mrs))

        retrieved = self._import_items(project_key, issues, is_merge_request=False)
        retrieved += self._import_items(project_key, mrs, is_merge_request=True)

        return IssuePage(
            issues=retrieved,
            cursor=cursor + per_page,
            total_estimate=self.estimator.total,
            is_last_page=len(issues) < per_page and len(mrs) < per_page,
        )

    def _webhook_project(self, data: Dict[str, Any]) -> str:
        return self._dig(data, "project", "path_with_namespace")

    def _webhook_secret_matches(self, request: WebhookRequest, secret: str) -> bool:
        return tokens_match(request.header("X-Gitlab-Token"), secret)

    def _webhook_event_type(self, request: WebhookRequest, data: Dict[str, Any]) -> Optional[str]:
        return data.get("event_type") or data.get("object_kind")

    def _webhook_issue_key(self, data: Dict[str, Any], event_type: str) -> IssueKey:
        return IssueKey(
            self.ID,
            self._webhook_project(data),
            str(self._dig(data, "object_attributes", "iid")),
            event_type == "merge_request",
        )
