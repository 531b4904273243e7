"""Registered webhook model"""
from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint

from app.models.base import Base


class Webhook(Base):
    """A webhook this service registered on a remote project, with its shared secret"""

    __tablename__ = "webhooks"
    __table_args__ = (
        UniqueConstraint("service", "project", "hook_id", name="uq_webhooks_service_project_hook"),
    )

    id = Column(Integer, primary_key=True, index=True)
    service = Column(String, nullable=False, index=True)
    project = Column(String, nullable=False, index=True)
    hook_id = Column(String, nullable=False)
    secret = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<Webhook(service='{self.service}', project='{self.project}', hook_id='{self.hook_id}')>"
