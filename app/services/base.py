"""Common behaviour of all issue tracker services"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from requests.structures import CaseInsensitiveDict

from app.security import generate_webhook_secret
from app.services.crossref import CrossReference, CrossReferenceParser
from app.services.errors import ConfigurationError, MappingError, TransportError, ValidationError
from app.services.issue import Issue, IssueKey, IssueType, is_blank
from app.services.pagination import PER_PAGE, PaginationEstimator
from app.services.results import IssuePage, Repository, RequestResult
from app.services.store import IssueStore
from app.services.transport import RequestsTransport, Transport, TransportResponse
from app.services.webhook_router import WebhookRequest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceConfig:
    """Configuration of one backend, loaded once per unit of work"""

    url: Optional[str] = None
    token: Optional[str] = None
    user: Optional[str] = None
    webhook_url: str = ""
    timeout: float = 30.0


class AbstractService(ABC):
    """One remote issue tracker.

    Subclasses map the backend's REST API and webhook payloads onto the
    normalized :class:`Issue`.
    """

    ID = ""
    DISPLAY_NAME = ""
    # Prefix of the wiki syntax, e.g. "gl>group/project#12"
    SYNTAX = ""
    # Generic config field -> key/value store name
    CONFIG_KEYS: Dict[str, str] = {}
    PER_PAGE = PER_PAGE

    BUG_LABELS: Tuple[str, ...] = ("bug",)
    IMPROVEMENT_LABELS: Tuple[str, ...] = ("enhancement",)
    STORY_LABELS: Tuple[str, ...] = ("feature",)

    ALLOWED_EVENT_TYPES: Tuple[str, ...] = ()

    def __init__(self, config: ServiceConfig, store: IssueStore, transport: Optional[Transport] = None):
        self.config = config
        self.store = store
        self.transport = transport or self._default_transport()
        self.config_error: Optional[str] = None
        self.user: Optional[Dict[str, Any]] = None
        self.estimator = PaginationEstimator(self.PER_PAGE)
        self.cross_references = CrossReferenceParser(self.ID)

    # Configuration

    @classmethod
    def load_config(cls, store: IssueStore, settings) -> ServiceConfig:
        """Stored values win over environment settings"""
        values = {}
        for field_name, key in cls.CONFIG_KEYS.items():
            values[field_name] = store.get_key_value(key) or getattr(settings, key, None)
        url = values.get("url")
        return ServiceConfig(
            url=url.strip().rstrip("/") if url else None,
            token=values.get("token"),
            user=values.get("user"),
            webhook_url=settings.webhook_url,
            timeout=settings.http_timeout_seconds,
        )

    @classmethod
    def from_store(cls, store: IssueStore, settings, transport: Optional[Transport] = None) -> AbstractService:
        return cls(cls.load_config(store, settings), store, transport)

    @classmethod
    def handle_authorization(cls, store: IssueStore, values: Mapping[str, Optional[str]]) -> List[str]:
        """Save the non-empty configuration values, returns the saved field names"""
        saved = []
        for field_name, key in cls.CONFIG_KEYS.items():
            value = values.get(field_name)
            if value and value.strip():
                store.save_key_value_pair(key, value.strip())
                saved.append(field_name)
        return saved

    def _default_transport(self) -> Transport:
        return RequestsTransport(timeout=self.config.timeout)

    @abstractmethod
    def is_configured(self) -> bool:
        """Check credentials with a cheap authenticated call; sets ``config_error`` on failure"""

    def require_configured(self):
        """Raise ConfigurationError unless is_configured() succeeds"""
        if not self.is_configured():
            raise ConfigurationError(self.config_error or f"{self.DISPLAY_NAME} is not configured")

    @abstractmethod
    def get_user_string(self) -> str:
        """Authenticated user, available after a successful is_configured()"""

    # HTTP

    @abstractmethod
    def _api_url(self, endpoint: str) -> str:
        """Absolute URL of an API endpoint (endpoint with leading slash)"""

    @abstractmethod
    def _auth_headers(self) -> Dict[str, str]:
        """Credential headers sent with every request"""

    def _make_request(self, endpoint: str, body: Optional[Any] = None, method: str = "GET") -> TransportResponse:
        url = self._api_url(endpoint)
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        headers.update(self._auth_headers())
        try:
            return self.transport.send_request(url, headers, body, method)
        except TransportError as e:
            logger.warning(f"{self.DISPLAY_NAME} {method} {endpoint} failed: {e.message}")
            raise TransportError(
                e.status_code, f"{self.DISPLAY_NAME} {method} {endpoint} failed: {e.message}", url=url
            ) from e

    def _get(self, endpoint: str) -> Any:
        return self._make_request(endpoint).body

    # Organisations, repositories and hooks

    @abstractmethod
    def get_list_of_all_user_organisations(self) -> Set[str]:
        """Groups/organisations visible to the configured credential"""

    @abstractmethod
    def _list_repositories(self, organisation: str) -> List[Tuple[str, str]]:
        """(full_name, display_name) of each repository of the organisation"""

    @abstractmethod
    def _list_hooks(self, full_name: str) -> List[Dict[str, Any]]:
        """Webhooks configured on a repository"""

    @abstractmethod
    def is_our_issue_hook(self, hook: Dict[str, Any]) -> bool:
        """Whether the hook has exactly the configuration create_webhook() registers"""

    @staticmethod
    def _hook_identifier(hook: Dict[str, Any]) -> Optional[str]:
        hook_id = hook.get("id")
        return str(hook_id) if hook_id is not None else None

    def get_list_of_all_repos_and_hooks(self, organisation: str) -> List[Repository]:
        repositories = []
        for full_name, display_name in self._list_repositories(organisation):
            error = None
            try:
                hooks = self._list_hooks(full_name)
            except TransportError as e:
                error = e.status_code
                hooks = []
            our_hook = next((hook for hook in hooks if self.is_our_issue_hook(hook)), None)
            repositories.append(
                Repository(
                    full_name=full_name,
                    display_name=display_name,
                    hook_id=self._hook_identifier(our_hook) if our_hook else None,
                    error=error,
                )
            )
        return repositories

    @abstractmethod
    def _register_webhook(self, project: str, secret: str) -> TransportResponse:
        """Create the remote hook for issue and merge/pull-request events"""

    @abstractmethod
    def _unregister_webhook(self, project: str, hook_id: str) -> TransportResponse:
        """Remove the remote hook"""

    def create_webhook(self, project: str) -> Tuple[Any, int]:
        secret = generate_webhook_secret()
        try:
            response = self._register_webhook(project, secret)
        except TransportError as e:
            return e.message, e.status_code
        hook_id = self._hook_identifier(response.body or {})
        if hook_id is None:
            return f"{self.DISPLAY_NAME} did not return a webhook id", 502
        # Only now the secret becomes valid for incoming deliveries
        self.store.save_webhook(self.ID, project, hook_id, secret)
        logger.info(f"Created {self.DISPLAY_NAME} webhook {hook_id} on {project}")
        return response.body, response.status_code

    def delete_webhook(self, project: str, hook_id: str) -> Tuple[Any, int]:
        try:
            response = self._unregister_webhook(project, str(hook_id))
        except TransportError as e:
            return e.message, e.status_code
        self.store.delete_webhook(self.ID, project, hook_id)
        logger.info(f"Deleted {self.DISPLAY_NAME} webhook {hook_id} on {project}")
        return response.body, response.status_code

    # Issues

    @staticmethod
    def is_issue_valid(issue: Issue) -> bool:
        return issue.is_valid()

    @staticmethod
    def get_project_issue_separator(is_merge_request: bool) -> str:
        return IssueKey.separator(is_merge_request)

    @abstractmethod
    def get_issue_url(self, project_id: str, issue_id: Any, is_merge_request: bool = False) -> str:
        """User-facing URL of an issue or merge/pull request"""

    def parse_issue_syntax(self, issue_syntax: str) -> Issue:
        key = IssueKey.parse(self.ID, issue_syntax)
        return Issue.get_instance(self.store, key.service, key.project, key.number, key.is_merge_request)

    def get_type_from_labels(self, labels: Iterable[str]) -> IssueType:
        names = {str(label).lower() for label in labels}
        if names.intersection(self.BUG_LABELS):
            return IssueType.BUG
        if names.intersection(self.IMPROVEMENT_LABELS):
            return IssueType.IMPROVEMENT
        if names.intersection(self.STORY_LABELS):
            return IssueType.STORY
        return IssueType.UNKNOWN

    def _require_fields(self, data: Dict[str, Any], summary: Any, status: Any):
        if is_blank(summary) or is_blank(status):
            number = self._item_number(data, required=False)
            raise MappingError(f"{self.DISPLAY_NAME} item {number} has no summary or status")

    @abstractmethod
    def _set_issue_data(self, issue: Issue, info: Dict[str, Any]):
        """Copy the backend's fields onto the issue"""

    def _apply_issue_data(self, issue: Issue, info: Dict[str, Any]):
        """_set_issue_data() that leaves the issue untouched when the record cannot be mapped"""
        previous = dict(vars(issue))
        try:
            self._set_issue_data(issue, info)
        except MappingError:
            vars(issue).update(previous)
            raise
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            vars(issue).update(previous)
            raise MappingError(f"{self.DISPLAY_NAME} issue {issue.key} has a malformed field: {e!r}") from e

    @abstractmethod
    def _item_number(self, info: Dict[str, Any], required: bool = True) -> Optional[str]:
        """Number of an item within its project"""

    @abstractmethod
    def retrieve_issue(self, issue: Issue):
        """Fetch one issue/merge request and normalize it onto ``issue``"""

    @abstractmethod
    def retrieve_all_issues(self, project_key: str, cursor: int = 0) -> IssuePage:
        """Fetch, persist and return the page of issues starting at ``cursor``"""

    def get_total_issues_being_imported(self) -> int:
        """Estimate from the last retrieve_all_issues() call, not an exact count"""
        return self.estimator.total

    def _page_number(self, cursor: int) -> int:
        return cursor // self.PER_PAGE + 1

    def _record_cross_references(self, issue: Issue) -> List[CrossReference]:
        text = f"{issue.summary} {issue.description or ''}"
        references = self.cross_references.parse(issue.project, text)
        self.store.save_issue_issues(issue, references)
        return references

    def _import_items(self, project_key: str, items: Iterable[Dict[str, Any]], is_merge_request: bool) -> List[Issue]:
        """Map and persist a page of items, skipping the ones that cannot be mapped"""
        imported = []
        for data in items:
            try:
                number = self._item_number(data)
                issue = Issue.get_instance(self.store, self.ID, project_key, number, is_merge_request)
                self._apply_issue_data(issue, data)
                issue.save_to_db()
            except MappingError as e:
                logger.warning(f"Skipping item of {self.DISPLAY_NAME} project {project_key}: {e}")
                logger.debug(f"Skipped item data: {data}")
                continue
            if is_merge_request:
                self._record_cross_references(issue)
            imported.append(issue)
        return imported

    # Webhooks

    # Header whose presence identifies deliveries of this backend
    WEBHOOK_HEADER = ""

    @classmethod
    def is_our_webhook(cls, headers: Mapping[str, str]) -> bool:
        return bool(cls.WEBHOOK_HEADER) and cls.WEBHOOK_HEADER in CaseInsensitiveDict(headers or {})

    @abstractmethod
    def _webhook_project(self, data: Dict[str, Any]) -> str:
        """Project the delivery refers to"""

    @abstractmethod
    def _webhook_secret_matches(self, request: WebhookRequest, secret: str) -> bool:
        """Whether the delivery was made with this secret"""

    @abstractmethod
    def _webhook_event_type(self, request: WebhookRequest, data: Dict[str, Any]) -> Optional[str]:
        """Backend event type of the delivery"""

    @abstractmethod
    def _webhook_issue_key(self, data: Dict[str, Any], event_type: str) -> IssueKey:
        """Issue affected by the delivery"""

    def validate_webhook(self, request: WebhookRequest) -> Union[bool, RequestResult]:
        try:
            data = request.json()
            project = self._webhook_project(data)
        except ValidationError as e:
            return e.to_result()

        secrets = self.store.get_webhook_secrets(self.ID, project)
        if not any(self._webhook_secret_matches(request, secret) for secret in secrets):
            return RequestResult(403, "Token does not match!")
        return True

    def handle_webhook(self, request: WebhookRequest) -> RequestResult:
        try:
            data = request.json()
            event_type = self._webhook_event_type(request, data)
            if event_type not in self.ALLOWED_EVENT_TYPES:
                return RequestResult(406, f"Invalid event type: {event_type}")
            key = self._webhook_issue_key(data, event_type)
        except ValidationError as e:
            return e.to_result()

        issue = Issue.get_instance(self.store, key.service, key.project, key.number, key.is_merge_request)
        try:
            issue.get_from_service(self)
        except TransportError as e:
            logger.error(f"Failed to refresh {self.DISPLAY_NAME} issue {key}: {e.message}")
            return RequestResult(502, f"Failed to retrieve {key}: {e.message}")
        except MappingError as e:
            logger.error(f"Failed to refresh {self.DISPLAY_NAME} issue {key}: {e}")
            return RequestResult(422, str(e))
        return RequestResult(200, "OK.")

    @staticmethod
    def _dig(data: Dict[str, Any], *path: str) -> Any:
        """data[path[0]][path[1]]..., raising a 400 ValidationError when missing"""
        value: Any = data
        for name in path:
            if not isinstance(value, dict) or value.get(name) is None:
                raise ValidationError(400, f"Webhook body lacks {'.'.join(path)}")
            value = value[name]
        return value

    def __repr__(self):
        return f"<{type(self).__name__}(url={self.config.url!r})>"
