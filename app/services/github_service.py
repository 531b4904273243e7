"""GitHub issue and pull request integration"""

import logging
from typing import Any, Dict, List, Optional, Set, Tuple

from app.security import signature_matches
from app.services.base import AbstractService
from app.services.errors import MappingError, TransportError
from app.services.issue import Issue, IssueKey
from app.services.results import IssuePage, RequestResult
from app.services.transport import TransportResponse
from app.services.webhook_router import WebhookRequest

logger = logging.getLogger(__name__)

PUBLIC_API_URL = "https://api.github.com"


class GitHub(AbstractService):
    """GitHub (or GitHub Enterprise) issues and pull requests"""

    ID = "github"
    DISPLAY_NAME = "GitHub"
    SYNTAX = "gh"
    CONFIG_KEYS = {"url": "github_url", "token": "github_token"}
    WEBHOOK_HEADER = "X-GitHub-Event"
    ALLOWED_EVENT_TYPES = ("issues", "pull_request")
    HOOK_EVENTS = ("issues", "pull_request")

    def _api_url(self, endpoint: str) -> str:
        return f"{self.config.url or PUBLIC_API_URL}{endpoint}"

    def _auth_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    @property
    def web_url(self) -> str:
        """Web root for the API root (GitHub Enterprise serves the API under /api/v3)"""
        api_url = self.config.url or PUBLIC_API_URL
        if api_url == PUBLIC_API_URL:
            return "https://github.com"
        return api_url[: -len("/api/v3")] if api_url.endswith("/api/v3") else api_url

    def is_configured(self) -> bool:
        if not self.config.token:
            self.config_error = "Authentication token is missing!"
            return False

        try:
            self.user = self._get("/user")
        except TransportError as e:
            self.config_error = f"The GitHub authentication failed with message: {e.message}"
            return False

        self.config_error = None
        return True

    def get_user_string(self) -> str:
        if not self.user:
            return ""
        return f"{self.user.get('login')} ({self.user.get('html_url')})"

    def get_list_of_all_user_organisations(self) -> Set[str]:
        organisations = {org["login"] for org in self._get("/user/orgs?per_page=100") or []}
        if self.user and self.user.get("login"):
            organisations.add(self.user["login"])
        return organisations

    def _list_repositories(self, organisation: str) -> List[Tuple[str, str]]:
        if self.user and organisation == self.user.get("login"):
            endpoint = "/user/repos?affiliation=owner&per_page=100"
        else:
            endpoint = f"/orgs/{organisation}/repos?per_page=100"
        return [(repo["full_name"], repo["name"]) for repo in self._get(endpoint) or []]

    def _list_hooks(self, full_name: str) -> List[Dict[str, Any]]:
        return self._get(f"/repos/{full_name}/hooks?per_page=100") or []

    def is_our_issue_hook(self, hook: Dict[str, Any]) -> bool:
        config = hook.get("config") or {}
        if config.get("url") != self.config.webhook_url:
            return False

        if config.get("content_type") != "json":
            return False

        # GitHub reports insecure_ssl as "0" or 0
        if str(config.get("insecure_ssl", "1")) != "0":
            return False

        if not hook.get("active"):
            return False

        events = set(hook.get("events") or [])
        if "push" in events or "*" in events:
            return False

        return events.issuperset(self.HOOK_EVENTS)

    def _register_webhook(self, project: str, secret: str) -> TransportResponse:
        data = {
            "name": "web",
            "active": True,
            "events": list(self.HOOK_EVENTS),
            "config": {
                "url": self.config.webhook_url,
                "content_type": "json",
                "insecure_ssl": "0",
                "secret": secret,
            },
        }
        return self._make_request(f"/repos/{project}/hooks", data, "POST")

    def _unregister_webhook(self, project: str, hook_id: str) -> TransportResponse:
        return self._make_request(f"/repos/{project}/hooks/{hook_id}", method="DELETE")

    def get_issue_url(self, project_id, issue_id, is_merge_request=False) -> str:
        # GitHub redirects /issues/N to /pull/N for pull requests
        return f"{self.web_url}/{project_id}/issues/{issue_id}"

    def _item_number(self, info, required=True):
        number = info.get("number")
        if number is None and required:
            raise MappingError("GitHub item has no number")
        return str(number) if number is not None else None

    def _set_issue_data(self, issue: Issue, info: Dict[str, Any]):
        self._require_fields(info, info.get("title"), info.get("state"))
        labels = info.get("labels") or []
        names = [label["name"] for label in labels]

        issue.summary = info["title"]
        issue.description = info.get("body") or ""
        issue.type = self.get_type_from_labels(names)
        issue.status = "merged" if info.get("merged_at") else info["state"]
        issue.set_updated(info.get("updated_at"))
        issue.set_labels(names)
        for label in labels:
            if label.get("color"):
                issue.set_label_data(label["name"], f"#{label['color']}")

        milestone = info.get("milestone")
        if milestone:
            issue.versions = [milestone["title"]]
            if milestone.get("due_on"):
                issue.set_duedate(milestone["due_on"])

        assignee = info.get("assignee")
        if assignee:
            issue.set_assignee(assignee.get("login"), assignee.get("avatar_url"))

    def retrieve_issue(self, issue: Issue):
        kind = "pulls" if issue.is_merge_request else "issues"
        info = self._get(f"/repos/{issue.project}/{kind}/{issue.number}")
        self._apply_issue_data(issue, info)

        if issue.is_merge_request:
            self._record_cross_references(issue)

    def retrieve_all_issues(self, project_key: str, cursor: int = 0) -> IssuePage:
        per_page = self.PER_PAGE
        query = f"state=all&page={self._page_number(cursor)}&per_page={per_page}"

        self.estimator.reset()
        issues_response = self._make_request(f"/repos/{project_key}/issues?{query}")
        items = issues_response.body or []
        pulls_response = self._make_request(f"/repos/{project_key}/pulls?{query}")
        pulls = pulls_response.body or []

        # The issues endpoint lists pull requests too; they are imported from /pulls
        issues = [item for item in items if "pull_request" not in item]
        pulls_total = self.estimator.add(pulls_response.headers, len(pulls))
        issues_and_pulls = self.estimator.estimate_total(issues_response.headers, len(items))
        self.estimator.total += max(issues_and_pulls - pulls_total, len(issues))

        retrieved = self._import_items(project_key, issues, is_merge_request=False)
        retrieved += self._import_items(project_key, pulls, is_merge_request=True)

        return IssuePage(
            issues=retrieved,
            cursor=cursor + per_page,
            total_estimate=self.estimator.total,
            is_last_page=len(items) < per_page and len(pulls) < per_page,
        )

    def _webhook_project(self, data: Dict[str, Any]) -> str:
        return self._dig(data, "repository", "full_name")

    def _webhook_secret_matches(self, request: WebhookRequest, secret: str) -> bool:
        return signature_matches(request.header("X-Hub-Signature-256"), request.body, secret)

    def _webhook_event_type(self, request: WebhookRequest, data: Dict[str, Any]) -> Optional[str]:
        return request.header("X-GitHub-Event")

    def _webhook_issue_key(self, data: Dict[str, Any], event_type: str) -> IssueKey:
        is_pull_request = event_type == "pull_request"
        number = self._dig(data, "pull_request" if is_pull_request else "issue", "number")
        return IssueKey(self.ID, self._webhook_project(data), str(number), is_pull_request)

    def handle_webhook(self, request: WebhookRequest) -> RequestResult:
        # GitHub pings a hook right after it was created
        if request.header("X-GitHub-Event") == "ping":
            return RequestResult(200, "pong")
        return super().handle_webhook(request)
