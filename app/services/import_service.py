"""Bulk import of a project's issues and merge/pull requests"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.config import settings as default_settings
from app.models.import_log import ImportStatus
from app.services.errors import ConfigurationError, IssueLinksError, TransportError
from app.services.registry import build_service
from app.services.store import IssueStore
from app.services.transport import Transport

logger = logging.getLogger(__name__)


class ImportService:
    """Page through a remote project and cache every issue locally.

    A run stops after ``max_pages`` pages and records where it stopped, so
    the next run (manual or scheduled) resumes from that cursor.
    """

    def __init__(self, db: Session, settings=None, transports: Optional[Dict[str, Transport]] = None):
        self.db = db
        self.settings = settings or default_settings
        self.transports = transports or {}
        self.store = IssueStore(db)

    def _resume_cursor(self, service_id: str, project: str) -> int:
        last = self.store.get_last_import(service_id, project)
        if last is not None and last.status in (ImportStatus.PARTIAL, ImportStatus.FAILED):
            return last.cursor or 0
        return 0

    def import_project(
        self,
        service_id: str,
        project: str,
        cursor: Optional[int] = None,
        max_pages: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Import issues of one project, returns a summary of the run"""
        try:
            service = build_service(service_id, self.store, self.settings, self.transports.get(service_id))
        except KeyError as e:
            raise ValueError(f"Unknown service: {service_id}") from e

        try:
            service.require_configured()
        except ConfigurationError as e:
            message = str(e)
            logger.info(f"Skipping import of {service_id} project {project}: {message}")
            self.store.add_import_log(service_id, project, ImportStatus.SKIPPED, message=message)
            return {"status": ImportStatus.SKIPPED.value, "message": message, "imported": 0}

        if cursor is None:
            cursor = self._resume_cursor(service_id, project)
        if max_pages is None:
            max_pages = self.settings.import_max_pages

        logger.info(f"Starting import of {service_id} project {project} at cursor {cursor}")
        imported = 0
        total_estimate = None
        pages = 0

        try:
            while True:
                page = service.retrieve_all_issues(project, cursor)
                imported += len(page.issues)
                total_estimate = page.total_estimate
                pages += 1
                # Free the identity map between pages
                self.store.clear_cache()

                if page.is_last_page:
                    cursor = 0
                    status = ImportStatus.SUCCESS
                    break
                cursor = page.cursor
                if pages >= max_pages:
                    status = ImportStatus.PARTIAL
                    break
        except IssueLinksError as e:
            message = e.message if isinstance(e, TransportError) else str(e)
            logger.error(f"Import of {service_id} project {project} failed: {message}")
            self.store.add_import_log(
                service_id,
                project,
                ImportStatus.FAILED,
                imported=imported,
                total_estimate=total_estimate,
                cursor=cursor,
                message=f"Import failed: {message}",
            )
            return {
                "status": ImportStatus.FAILED.value,
                "error": message,
                "imported": imported,
                "cursor": cursor,
            }

        message = f"Imported {imported} items in {pages} pages"
        logger.info(f"Import of {service_id} project {project} finished ({status.value}): {message}")
        self.store.add_import_log(
            service_id,
            project,
            status,
            imported=imported,
            total_estimate=total_estimate,
            cursor=cursor,
            message=message,
        )
        return {
            "status": status.value,
            "imported": imported,
            "total_estimate": total_estimate,
            "cursor": cursor,
        }
