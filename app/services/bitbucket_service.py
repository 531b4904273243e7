"""Bitbucket Cloud issue and pull request integration"""

import logging
from typing import Any, Dict, List, Optional, Set, Tuple
from urllib.parse import quote

from requests.structures import CaseInsensitiveDict

from app.security import basic_auth_header, signature_matches
from app.services.base import AbstractService
from app.services.errors import MappingError, TransportError
from app.services.issue import Issue, IssueKey
from app.services.results import IssuePage
from app.services.transport import TransportResponse
from app.services.webhook_router import WebhookRequest

logger = logging.getLogger(__name__)

PUBLIC_API_URL = "https://api.bitbucket.org/2.0"
ISSUE_EVENTS = ("issue:created", "issue:updated")
PULL_REQUEST_EVENTS = (
    "pullrequest:created",
    "pullrequest:updated",
    "pullrequest:fulfilled",
    "pullrequest:rejected",
)


class Bitbucket(AbstractService):
    """Bitbucket Cloud issues and pull requests, authenticated with an app password"""

    ID = "bitbucket"
    DISPLAY_NAME = "Bitbucket"
    SYNTAX = "bb"
    CONFIG_KEYS = {"url": "bitbucket_url", "user": "bitbucket_user", "token": "bitbucket_token"}
    WEBHOOK_HEADER = "X-Hook-UUID"
    ALLOWED_EVENT_TYPES = ISSUE_EVENTS + PULL_REQUEST_EVENTS

    # Bitbucket issues have a "kind" instead of labels
    BUG_LABELS = ("bug",)
    IMPROVEMENT_LABELS = ("enhancement",)
    STORY_LABELS = ("proposal",)

    # Largest pagelen the pull request listing accepts
    PER_PAGE = 50

    @classmethod
    def is_our_webhook(cls, headers) -> bool:
        return super().is_our_webhook(headers) and "X-Event-Key" in CaseInsensitiveDict(headers or {})

    def _api_url(self, endpoint: str) -> str:
        return f"{self.config.url or PUBLIC_API_URL}{endpoint}"

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": basic_auth_header(self.config.user or "", self.config.token or "")}

    def is_configured(self) -> bool:
        if not self.config.user or not self.config.token:
            self.config_error = "Bitbucket user or app password is missing!"
            return False

        try:
            self.user = self._get("/user")
        except TransportError as e:
            self.config_error = f"The Bitbucket authentication failed with message: {e.message}"
            return False

        self.config_error = None
        return True

    def get_user_string(self) -> str:
        if not self.user:
            return ""
        html = ((self.user.get("links") or {}).get("html") or {}).get("href")
        return f"{self.user.get('display_name')} ({html})"

    def get_list_of_all_user_organisations(self) -> Set[str]:
        permissions = self._get("/user/permissions/workspaces?pagelen=100") or {}
        return {item["workspace"]["slug"] for item in permissions.get("values") or []}

    def _list_repositories(self, organisation: str) -> List[Tuple[str, str]]:
        repos = self._get(f"/repositories/{organisation}?pagelen=100") or {}
        return [(repo["full_name"], repo["name"]) for repo in repos.get("values") or []]

    def _list_hooks(self, full_name: str) -> List[Dict[str, Any]]:
        hooks = self._get(f"/repositories/{full_name}/hooks?pagelen=100") or {}
        return hooks.get("values") or []

    @staticmethod
    def _hook_identifier(hook: Dict[str, Any]) -> Optional[str]:
        return hook.get("uuid")

    def is_our_issue_hook(self, hook: Dict[str, Any]) -> bool:
        if hook.get("url") != self.config.webhook_url:
            return False

        if hook.get("skip_cert_verification", True):
            return False

        if not hook.get("active"):
            return False

        events = set(hook.get("events") or [])
        if "repo:push" in events:
            return False

        return events.issuperset(self.ALLOWED_EVENT_TYPES)

    def _register_webhook(self, project: str, secret: str) -> TransportResponse:
        data = {
            "description": "IssueLinks",
            "url": self.config.webhook_url,
            "active": True,
            "skip_cert_verification": False,
            "secret": secret,
            "events": list(self.ALLOWED_EVENT_TYPES),
        }
        return self._make_request(f"/repositories/{project}/hooks", data, "POST")

    def _unregister_webhook(self, project: str, hook_id: str) -> TransportResponse:
        # Hook ids are UUIDs in braces
        return self._make_request(f"/repositories/{project}/hooks/{quote(hook_id, safe='')}", method="DELETE")

    def get_issue_url(self, project_id, issue_id, is_merge_request=False) -> str:
        kind = "pull-requests" if is_merge_request else "issues"
        return f"https://bitbucket.org/{project_id}/{kind}/{issue_id}"

    def _item_number(self, info, required=True):
        number = info.get("id")
        if number is None and required:
            raise MappingError("Bitbucket item has no id")
        return str(number) if number is not None else None

    def _set_issue_data(self, issue: Issue, info: Dict[str, Any]):
        self._require_fields(info, info.get("title"), info.get("state"))
        is_pull_request = info.get("type") == "pullrequest" or "source" in info

        issue.summary = info["title"]
        if is_pull_request:
            issue.description = info.get("description") or ""
            issue.status = str(info["state"]).lower()
            issue.type = self.get_type_from_labels([])
        else:
            issue.description = (info.get("content") or {}).get("raw") or ""
            issue.status = info["state"]
            issue.type = self.get_type_from_labels([info["kind"]] if info.get("kind") else [])
        issue.set_updated(info.get("updated_on"))

        component = (info.get("component") or {}).get("name")
        issue.components = [component] if component else []

        versions = [
            item["name"] for item in (info.get("milestone"), info.get("version")) if item and item.get("name")
        ]
        if versions:
            issue.versions = versions

        assignee = info.get("assignee")
        if assignee:
            avatar = ((assignee.get("links") or {}).get("avatar") or {}).get("href")
            issue.set_assignee(assignee.get("display_name"), avatar)

    def retrieve_issue(self, issue: Issue):
        kind = "pullrequests" if issue.is_merge_request else "issues"
        info = self._get(f"/repositories/{issue.project}/{kind}/{issue.number}")
        self._apply_issue_data(issue, info)

        if issue.is_merge_request:
            self._record_cross_references(issue)

    def _list_page(self, endpoint: str) -> Tuple[List[Dict[str, Any]], bool]:
        """Values of one page and whether a next page exists"""
        body = self._get(endpoint) or {}
        values = body.get("values") or []
        self.estimator.add_exact(body.get("size"), len(values))
        return values, bool(body.get("next"))

    def retrieve_all_issues(self, project_key: str, cursor: int = 0) -> IssuePage:
        per_page = self.PER_PAGE
        query = f"page={self._page_number(cursor)}&pagelen={per_page}"

        self.estimator.reset()
        try:
            issues, more_issues = self._list_page(f"/repositories/{project_key}/issues?{query}")
        except TransportError as e:
            if e.status_code != 404:
                raise
            # The repository has no issue tracker
            logger.info(f"Bitbucket repository {project_key} has no issue tracker")
            issues, more_issues = [], False
        states = "&".join(f"state={state}" for state in ("OPEN", "MERGED", "DECLINED", "SUPERSEDED"))
        try:
            pulls, more_pulls = self._list_page(f"/repositories/{project_key}/pullrequests?{states}&{query}")
        except TransportError as e:
            # Pages past the last one answer 404
            if e.status_code != 404 or cursor == 0:
                raise
            pulls, more_pulls = [], False

        retrieved = self._import_items(project_key, issues, is_merge_request=False)
        retrieved += self._import_items(project_key, pulls, is_merge_request=True)

        return IssuePage(
            issues=retrieved,
            cursor=cursor + per_page,
            total_estimate=self.estimator.total,
            is_last_page=not (more_issues or more_pulls),
        )

    def _webhook_project(self, data: Dict[str, Any]) -> str:
        return self._dig(data, "repository", "full_name")

    def _webhook_secret_matches(self, request: WebhookRequest, secret: str) -> bool:
        return signature_matches(request.header("X-Hub-Signature"), request.body, secret)

    def _webhook_event_type(self, request: WebhookRequest, data: Dict[str, Any]) -> Optional[str]:
        return request.header("X-Event-Key")

    def _webhook_issue_key(self, data: Dict[str, Any], event_type: str) -> IssueKey:
        is_pull_request = event_type in PULL_REQUEST_EVENTS
        number = self._dig(data, "pullrequest" if is_pull_request else "issue", "id")
        return IssueKey(self.ID, self._webhook_project(data), str(number), is_pull_request)
