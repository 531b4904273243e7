"""Canonical issue model shared by all tracker integrations"""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional

from app.services.errors import MappingError

if TYPE_CHECKING:
    from app.services.base import AbstractService
    from app.services.store import IssueStore

logger = logging.getLogger(__name__)

_TZ_WITHOUT_COLON_RE = re.compile(r"([+-]\d{2})(\d{2})$")


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse ISO8601 timestamps from any backend into UTC tz-naive datetimes."""
    if not value:
        return None
    # Jira sends offsets as +0000
    text = _TZ_WITHOUT_COLON_RE.sub(r"\1:\2", value.replace("Z", "+00:00"))
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_date(value: Optional[str]) -> Optional[date]:
    """Parse a due date ("2025-01-31" or a full timestamp)."""
    if not value:
        return None
    return date.fromisoformat(value[:10])


class IssueType(str, enum.Enum):
    """Issue type derived from labels"""
    BUG = "bug"
    IMPROVEMENT = "improvement"
    STORY = "story"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class IssueKey:
    """Identity of an issue within a backend and project.

    The textual form is ``project#number`` for issues and ``project!number``
    for merge/pull requests.
    """

    service: str
    project: str
    number: str
    is_merge_request: bool = False

    @staticmethod
    def separator(is_merge_request: bool) -> str:
        return "!" if is_merge_request else "#"

    @classmethod
    def parse(cls, service: str, text: str) -> IssueKey:
        # Detect "!" before "#"
        is_merge_request = "!" in text
        project, sep, number = text.strip().rpartition(cls.separator(is_merge_request))
        if not sep or not project or not number.isdigit():
            raise ValueError(f"Invalid issue syntax: {text!r}")
        return cls(service, project, number, is_merge_request)

    def __str__(self) -> str:
        return f"{self.project}{self.separator(self.is_merge_request)}{self.number}"


@dataclass(frozen=True)
class Label:
    name: str
    color: Optional[str] = None


@dataclass(frozen=True)
class Assignee:
    name: str
    avatar_url: Optional[str] = None


def is_blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


class Issue:
    """Normalized issue or merge/pull request.

    Instances are created through :meth:`get_instance`, which keeps one
    instance per key for the lifetime of the store and hydrates it from the
    local database. :meth:`get_from_service` refreshes the fields from the
    remote backend and persists them.
    """

    def __init__(self, key: IssueKey, store: Optional[IssueStore] = None):
        self.key = key
        self._store = store
        self.summary = ""
        self.description = ""
        self.status = ""
        self.type = IssueType.UNKNOWN
        self.parent: Optional[str] = None
        self.components: List[str] = []
        self.labels: List[Label] = []
        self.versions: List[str] = []
        self.duedate: Optional[date] = None
        self.updated: Optional[datetime] = None
        self.assignee: Optional[Assignee] = None
        self.in_db = False

    @classmethod
    def get_instance(
        cls,
        store: IssueStore,
        service: str,
        project: str,
        number: Any,
        is_merge_request: bool = False,
    ) -> Issue:
        """Get the issue for this key, loading it from the database the first time"""
        key = IssueKey(service, str(project), str(number), bool(is_merge_request))
        issue = store.issue_cache.get(key)
        if issue is None:
            issue = cls(key, store)
            issue.get_from_db()
            store.issue_cache[key] = issue
        return issue

    @property
    def service(self) -> str:
        return self.key.service

    @property
    def project(self) -> str:
        return self.key.project

    @property
    def number(self) -> str:
        return self.key.number

    @property
    def is_merge_request(self) -> bool:
        return self.key.is_merge_request

    def is_valid(self) -> bool:
        return not is_blank(self.summary) and not is_blank(self.status)

    def set_labels(self, names: Iterable[str]):
        """Replace the labels, keeping colours we already know for a name"""
        known = {label.name: label.color for label in self.labels}
        self.labels = [Label(name, known.get(name)) for name in names]

    def set_label_data(self, name: str, color: Optional[str]):
        self.labels = [Label(label.name, color) if label.name == name else label for label in self.labels]

    def set_assignee(self, name: str, avatar_url: Optional[str] = None):
        self.assignee = Assignee(name, avatar_url)

    def set_updated(self, value: Optional[str]):
        self.updated = parse_datetime(value)

    def set_duedate(self, value: Optional[str]):
        self.duedate = parse_date(value)

    def get_issue_url(self, service: AbstractService) -> str:
        return service.get_issue_url(self.project, self.number, self.is_merge_request)

    def get_from_db(self) -> bool:
        """Hydrate from the local store; returns False if the issue is not cached"""
        if self._store is None:
            return False
        row = self._store.get_issue_row(self.key)
        if row is None:
            return False
        self.summary = row.summary or ""
        self.description = row.description or ""
        self.status = row.status or ""
        self.type = IssueType(row.type) if row.type else IssueType.UNKNOWN
        self.parent = row.parent
        self.components = list(row.components or [])
        self.labels = [Label(item["name"], item.get("color")) for item in (row.labels or [])]
        self.versions = list(row.versions or [])
        self.duedate = row.duedate
        self.updated = row.updated
        self.assignee = Assignee(row.assignee_name, row.assignee_avatar_url) if row.assignee_name else None
        self.in_db = True
        return True

    def save_to_db(self):
        """Persist the complete record in one commit"""
        if not self.is_valid():
            raise MappingError(f"Issue {self.service}:{self.key} is missing summary or status")
        if self._store is None:
            raise RuntimeError(f"Issue {self.service}:{self.key} is not bound to a store")
        self._store.save_issue(self)
        self.in_db = True

    def get_from_service(self, service: AbstractService):
        """Refresh all fields from the remote backend and persist them"""
        service.retrieve_issue(self)
        self.save_to_db()
        logger.info(f"Refreshed {self.service} issue {self.key}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service": self.service,
            "project": self.project,
            "number": self.number,
            "is_merge_request": self.is_merge_request,
            "summary": self.summary,
            "description": self.description,
            "status": self.status,
            "type": self.type.value,
            "parent": self.parent,
            "components": list(self.components),
            "labels": [{"name": label.name, "color": label.color} for label in self.labels],
            "versions": list(self.versions),
            "duedate": self.duedate.isoformat() if self.duedate else None,
            "updated": self.updated.isoformat() if self.updated else None,
            "assignee": (
                {"name": self.assignee.name, "avatar_url": self.assignee.avatar_url}
                if self.assignee
                else None
            ),
        }

    def __repr__(self):
        return f"<Issue({self.service}:{self.key}, status={self.status!r})>"
