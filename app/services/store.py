"""Persistence of configuration, webhook secrets and cached issues"""

import logging
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models import ImportLog, IssueLink, IssueRecord, KeyValue, Webhook
from app.models.import_log import ImportStatus

if TYPE_CHECKING:
    from app.services.crossref import CrossReference
    from app.services.issue import Issue, IssueKey

logger = logging.getLogger(__name__)


class IssueStore:
    """Store collaborator of the services, backed by one SQLAlchemy session.

    Every write is a single commit, so a reader never sees a half-written
    issue or a webhook secret without its hook id. Concurrent refreshes of the
    same issue resolve to last-writer-wins.
    """

    def __init__(self, db: Session):
        self.db = db
        # Issue identity map for this unit of work, see Issue.get_instance()
        self.issue_cache: Dict["IssueKey", "Issue"] = {}

    def clear_cache(self):
        self.issue_cache.clear()

    # Key/value configuration

    def get_key_value(self, name: str) -> Optional[str]:
        row = self.db.query(KeyValue).filter(KeyValue.name == name).first()
        return row.value if row is not None else None

    def save_key_value_pair(self, name: str, value: Optional[str]):
        row = self.db.query(KeyValue).filter(KeyValue.name == name).first()
        if row is None:
            row = KeyValue(name=name)
            self.db.add(row)
        row.value = value
        self.db.commit()

    # Webhooks

    def save_webhook(self, service: str, project: str, hook_id, secret: str):
        self.db.add(Webhook(service=service, project=project, hook_id=str(hook_id), secret=secret))
        self.db.commit()
        logger.info(f"Saved {service} webhook {hook_id} for {project}")

    def delete_webhook(self, service: str, project: str, hook_id) -> int:
        deleted = (
            self.db.query(Webhook)
            .filter(
                Webhook.service == service,
                Webhook.project == project,
                Webhook.hook_id == str(hook_id),
            )
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return deleted

    def get_webhook_secrets(self, service: str, project: str) -> List[str]:
        rows = (
            self.db.query(Webhook)
            .filter(Webhook.service == service, Webhook.project == project)
            .order_by(Webhook.id)
            .all()
        )
        return [row.secret for row in rows]

    def get_webhooks(self, service: Optional[str] = None) -> List[Webhook]:
        query = self.db.query(Webhook).order_by(Webhook.id)
        if service:
            query = query.filter(Webhook.service == service)
        return query.all()

    # Issues

    def _issue_query(self, model, key: "IssueKey"):
        return self.db.query(model).filter(
            model.service == key.service,
            model.project == key.project,
            model.issue_id == key.number,
            model.is_mergerequest == key.is_merge_request,
        )

    def get_issue_row(self, key: "IssueKey") -> Optional[IssueRecord]:
        return self._issue_query(IssueRecord, key).first()

    @staticmethod
    def _apply_issue(row: IssueRecord, issue: "Issue"):
        row.summary = issue.summary
        row.description = issue.description
        row.type = issue.type.value
        row.status = issue.status
        row.parent = issue.parent
        row.components = list(issue.components)
        row.labels = [{"name": label.name, "color": label.color} for label in issue.labels]
        row.versions = list(issue.versions)
        row.duedate = issue.duedate
        row.updated = issue.updated
        row.assignee_name = issue.assignee.name if issue.assignee else None
        row.assignee_avatar_url = issue.assignee.avatar_url if issue.assignee else None

    def save_issue(self, issue: "Issue"):
        key = issue.key
        row = self.get_issue_row(key)
        if row is None:
            row = IssueRecord(
                service=key.service,
                project=key.project,
                issue_id=key.number,
                is_mergerequest=key.is_merge_request,
            )
            self.db.add(row)
        self._apply_issue(row, issue)
        try:
            self.db.commit()
        except IntegrityError:
            # Another worker inserted the same issue first; overwrite its row.
            self.db.rollback()
            row = self.get_issue_row(key)
            if row is None:
                raise
            self._apply_issue(row, issue)
            self.db.commit()

    def save_issue_issues(self, issue: "Issue", references: Iterable["CrossReference"]):
        """Replace the issues referenced by ``issue``"""
        key = issue.key
        self._issue_query(IssueLink, key).delete(synchronize_session=False)
        seen = set()
        for ref in references:
            ident = (ref.service, ref.project, ref.issue_id)
            if ident in seen:
                continue
            seen.add(ident)
            self.db.add(
                IssueLink(
                    service=key.service,
                    project=key.project,
                    issue_id=key.number,
                    is_mergerequest=key.is_merge_request,
                    referenced_service=ref.service,
                    referenced_project=ref.project,
                    referenced_issue_id=ref.issue_id,
                )
            )
        self.db.commit()

    def get_issue_issues(self, key: "IssueKey") -> List[Tuple[str, str, str]]:
        rows = self._issue_query(IssueLink, key).order_by(IssueLink.id).all()
        return [(r.referenced_service, r.referenced_project, r.referenced_issue_id) for r in rows]

    # Import bookkeeping

    def add_import_log(
        self,
        service: str,
        project: str,
        status: ImportStatus,
        imported: int = 0,
        total_estimate: Optional[int] = None,
        cursor: int = 0,
        message: str = "",
    ) -> ImportLog:
        log = ImportLog(
            service=service,
            project=project,
            status=status,
            imported=imported,
            total_estimate=total_estimate,
            cursor=cursor,
            message=message,
        )
        self.db.add(log)
        self.db.commit()
        return log

    def get_last_import(self, service: str, project: str) -> Optional[ImportLog]:
        return (
            self.db.query(ImportLog)
            .filter(ImportLog.service == service, ImportLog.project == project)
            .order_by(ImportLog.id.desc())
            .first()
        )
