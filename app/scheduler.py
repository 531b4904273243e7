"""Background scheduler for periodic issue imports"""

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.config import settings
from app.models import Webhook
from app.models.base import SessionLocal
from app.services.import_service import ImportService

logger = logging.getLogger(__name__)

JOB_PREFIX = "import_"


def job_id_for(service: str, project: str) -> str:
    return f"{JOB_PREFIX}{service}:{project}"


class ImportScheduler:
    """Re-imports every project that has a registered webhook.

    Webhooks keep the cache current; the periodic import catches deliveries
    that were lost while this service was down.
    """

    def __init__(self, session_factory=SessionLocal, interval_minutes: int = None):
        self.scheduler = BackgroundScheduler()
        self.session_factory = session_factory
        self.interval_minutes = interval_minutes or settings.import_interval_minutes
        # Best-effort in-memory index of jobs we created.
        # APScheduler itself is the source of truth (see get_job()).
        self.jobs = {}

    def start(self):
        """Start the scheduler"""
        self.scheduler.start()
        logger.info("Import scheduler started")
        self.schedule_all_projects()

    def stop(self):
        """Stop the scheduler"""
        self.scheduler.shutdown()
        logger.info("Import scheduler stopped")

    def schedule_all_projects(self):
        """Schedule an import job per project with a webhook, drop jobs of unhooked projects"""
        db = self.session_factory()
        try:
            wanted = {(hook.service, hook.project) for hook in db.query(Webhook).all()}
        finally:
            db.close()

        wanted_ids = {job_id_for(service, project) for service, project in wanted}
        for job_id in list(self.jobs.keys()):
            if job_id not in wanted_ids:
                self._remove_job(job_id)

        for service, project in sorted(wanted):
            self.schedule_project(service, project)

    def schedule_project(self, service: str, project: str):
        job_id = job_id_for(service, project)
        self.scheduler.add_job(
            func=self._import_job,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id=job_id,
            args=[service, project],
            replace_existing=True,
        )
        self.jobs[job_id] = True
        logger.info(f"Scheduled import of {service} project {project} every {self.interval_minutes} minutes")

    def _remove_job(self, job_id: str):
        if self.scheduler.get_job(job_id) is not None:
            self.scheduler.remove_job(job_id)
        self.jobs.pop(job_id, None)
        logger.info(f"Unscheduled {job_id}")

    def _import_job(self, service: str, project: str):
        """Job function importing one project"""
        db = self.session_factory()
        try:
            logger.info(f"Running scheduled import of {service} project {project}")
            result = ImportService(db).import_project(service, project)
            logger.info(f"Scheduled import of {service} project {project} completed: {result}")
        except Exception as e:
            logger.error(f"Scheduled import of {service} project {project} failed: {e}")
        finally:
            db.close()


# Global scheduler instance
scheduler = ImportScheduler()
