"""Jira issue integration"""

import logging
import re
from typing import Any, Dict, List, Optional, Set, Tuple
from urllib.parse import quote

from app.security import basic_auth_header, signature_matches
from app.services.base import AbstractService
from app.services.errors import MappingError, TransportError, ValidationError
from app.services.issue import Issue, IssueKey
from app.services.results import IssuePage, Repository
from app.services.transport import TransportResponse
from app.services.webhook_router import WebhookRequest

logger = logging.getLogger(__name__)

ALL_PROJECTS = "All projects"
ISSUE_FIELDS = "summary,description,status,issuetype,labels,updated,duedate,fixVersions,components,parent,assignee"
JIRA_KEY_RE = re.compile(r"^([A-Z][A-Z0-9_]*)-([1-9]\d*)$")


def split_issue_key(key: str) -> Tuple[str, str]:
    project, sep, number = (key or "").rpartition("-")
    if not sep or not project or not number.isdigit():
        raise ValueError(f"Invalid Jira issue key: {key!r}")
    return project, number


class Jira(AbstractService):
    """Jira issues. Jira has no merge requests and no organisations."""

    ID = "jira"
    DISPLAY_NAME = "Jira"
    SYNTAX = "jira"
    CONFIG_KEYS = {"url": "jira_url", "user": "jira_user", "token": "jira_token"}
    WEBHOOK_HEADER = "X-Atlassian-Webhook-Identifier"
    ALLOWED_EVENT_TYPES = ("jira:issue_created", "jira:issue_updated")

    BUG_LABELS = ("bug",)
    IMPROVEMENT_LABELS = ("improvement", "enhancement")
    STORY_LABELS = ("story", "new feature", "feature")

    _all_hooks: Optional[List[Dict[str, Any]]] = None

    def _api_url(self, endpoint: str) -> str:
        return f"{self.config.url}/rest/api/2{endpoint}"

    def _webhooks_url(self, hook_id: Optional[str] = None) -> str:
        url = f"{self.config.url}/rest/webhooks/1.0/webhook"
        return f"{url}/{hook_id}" if hook_id else url

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": basic_auth_header(self.config.user or "", self.config.token or "")}

    def _make_webhook_request(self, hook_id: Optional[str] = None, body=None, method="GET") -> TransportResponse:
        # The webhook API lives outside /rest/api/2
        url = self._webhooks_url(hook_id)
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        headers.update(self._auth_headers())
        try:
            return self.transport.send_request(url, headers, body, method)
        except TransportError as e:
            raise TransportError(e.status_code, f"Jira {method} webhook failed: {e.message}", url=url) from e

    def is_configured(self) -> bool:
        if not self.config.url:
            self.config_error = "Jira URL not set!"
            return False

        if not self.config.user or not self.config.token:
            self.config_error = "Jira user or API token is missing!"
            return False

        try:
            self.user = self._get("/myself")
        except TransportError as e:
            self.config_error = f"The Jira authentication failed with message: {e.message}"
            return False

        self.config_error = None
        return True

    def get_user_string(self) -> str:
        if not self.user:
            return ""
        return f"{self.user.get('displayName')} ({self.user.get('emailAddress') or self.user.get('name')})"

    def get_list_of_all_user_organisations(self) -> Set[str]:
        return {ALL_PROJECTS}

    def _list_repositories(self, organisation: str) -> List[Tuple[str, str]]:
        return [(project["key"], project["name"]) for project in self._get("/project") or []]

    def _list_hooks(self, full_name: str) -> List[Dict[str, Any]]:
        if self._all_hooks is None:
            self._all_hooks = self._make_webhook_request().body or []
        return [hook for hook in self._all_hooks if self._hook_project(hook) == full_name]

    def get_list_of_all_repos_and_hooks(self, organisation: str) -> List[Repository]:
        # Jira webhooks are global: fetch them once per listing, match them to projects by JQL filter
        self._all_hooks = None
        return super().get_list_of_all_repos_and_hooks(organisation)

    @staticmethod
    def _hook_project(hook: Dict[str, Any]) -> Optional[str]:
        jql = (hook.get("filters") or {}).get("issue-related-events-section") or ""
        match = re.search(r"project\s*=\s*\"?([A-Z][A-Z0-9_]*)\"?", jql)
        return match.group(1) if match else None

    @staticmethod
    def _hook_identifier(hook: Dict[str, Any]) -> Optional[str]:
        # Jira answers with the hook's REST URL: .../rest/webhooks/1.0/webhook/42
        link = hook.get("self") or ""
        hook_id = link.rstrip("/").rpartition("/")[2]
        return hook_id or None

    def is_our_issue_hook(self, hook: Dict[str, Any]) -> bool:
        if hook.get("url") != self.config.webhook_url:
            return False

        if not hook.get("enabled", True):
            return False

        events = set(hook.get("events") or [])
        return events == set(self.ALLOWED_EVENT_TYPES)

    def _register_webhook(self, project: str, secret: str) -> TransportResponse:
        data = {
            "name": f"IssueLinks {project}",
            "url": self.config.webhook_url,
            "events": list(self.ALLOWED_EVENT_TYPES),
            "filters": {"issue-related-events-section": f"project = {project}"},
            "excludeBody": False,
            "secret": secret,
        }
        return self._make_webhook_request(body=data, method="POST")

    def _unregister_webhook(self, project: str, hook_id: str) -> TransportResponse:
        return self._make_webhook_request(hook_id, method="DELETE")

    def get_issue_url(self, project_id, issue_id, is_merge_request=False) -> str:
        return f"{self.config.url}/browse/{project_id}-{issue_id}"

    def parse_issue_syntax(self, issue_syntax: str) -> Issue:
        """Accepts "ABC-123" as well as "ABC#123" """
        match = JIRA_KEY_RE.match(issue_syntax.strip())
        if not match:
            return super().parse_issue_syntax(issue_syntax)
        return Issue.get_instance(self.store, self.ID, match.group(1), match.group(2), False)

    def _item_number(self, info, required=True):
        try:
            return split_issue_key(info.get("key"))[1]
        except ValueError:
            if required:
                raise MappingError(f"Jira item has an invalid key: {info.get('key')!r}")
            return None

    def _set_issue_data(self, issue: Issue, info: Dict[str, Any]):
        fields = info.get("fields") or {}
        status = (fields.get("status") or {}).get("name")
        self._require_fields(info, fields.get("summary"), status)
        labels = list(fields.get("labels") or [])
        issue_type = (fields.get("issuetype") or {}).get("name")

        issue.summary = fields["summary"]
        issue.description = fields.get("description") or ""
        issue.type = self.get_type_from_labels(labels + ([issue_type] if issue_type else []))
        issue.status = status
        issue.set_updated(fields.get("updated"))
        issue.set_labels(labels)
        issue.components = [component["name"] for component in fields.get("components") or []]
        issue.parent = (fields.get("parent") or {}).get("key")

        versions = [version["name"] for version in fields.get("fixVersions") or []]
        if versions:
            issue.versions = versions
        if fields.get("duedate"):
            issue.set_duedate(fields["duedate"])

        assignee = fields.get("assignee")
        if assignee:
            avatar = (assignee.get("avatarUrls") or {}).get("48x48")
            issue.set_assignee(assignee.get("displayName"), avatar)

    def retrieve_issue(self, issue: Issue):
        info = self._get(f"/issue/{issue.project}-{issue.number}?fields={ISSUE_FIELDS}")
        self._apply_issue_data(issue, info)

    def retrieve_all_issues(self, project_key: str, cursor: int = 0) -> IssuePage:
        per_page = self.PER_PAGE
        jql = quote(f'project = "{project_key}" ORDER BY key ASC')
        response = self._make_request(
            f"/search?jql={jql}&startAt={cursor}&maxResults={per_page}&fields={ISSUE_FIELDS}"
        )
        body = response.body or {}
        items = body.get("issues") or []

        self.estimator.reset()
        next_cursor = cursor + len(items)
        total = self.estimator.add_exact(body.get("total"), next_cursor)

        # Search results may include moved issues of other projects
        retrieved = self._import_items(
            project_key,
            [item for item in items if str(item.get("key", "")).startswith(f"{project_key}-")],
            is_merge_request=False,
        )
        return IssuePage(
            issues=retrieved,
            cursor=next_cursor,
            total_estimate=total,
            # Jira may answer fewer than maxResults items before the end
            is_last_page=not items or next_cursor >= total,
        )

    def _webhook_project(self, data: Dict[str, Any]) -> str:
        project = (((data.get("issue") or {}).get("fields") or {}).get("project") or {}).get("key")
        if project:
            return project
        try:
            return split_issue_key(self._dig(data, "issue", "key"))[0]
        except ValueError as e:
            raise ValidationError(400, str(e)) from e

    def _webhook_secret_matches(self, request: WebhookRequest, secret: str) -> bool:
        return signature_matches(request.header("X-Hub-Signature"), request.body, secret)

    def _webhook_event_type(self, request: WebhookRequest, data: Dict[str, Any]) -> Optional[str]:
        return data.get("webhookEvent")

    def _webhook_issue_key(self, data: Dict[str, Any], event_type: str) -> IssueKey:
        try:
            project, number = split_issue_key(self._dig(data, "issue", "key"))
        except ValueError as e:
            raise ValidationError(400, str(e)) from e
        return IssueKey(self.ID, project, number, False)
