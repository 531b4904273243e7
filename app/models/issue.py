"""Cached issue model"""
from sqlalchemy import JSON, Boolean, Column, Date, DateTime, Integer, String, Text, UniqueConstraint

from app.models.base import Base


class IssueRecord(Base):
    """Local copy of a remote issue or merge/pull request"""

    __tablename__ = "issues"
    __table_args__ = (
        UniqueConstraint(
            "service", "project", "issue_id", "is_mergerequest", name="uq_issues_service_project_issue"
        ),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Identity
    service = Column(String, nullable=False, index=True)
    project = Column(String, nullable=False, index=True)
    issue_id = Column(String, nullable=False)
    is_mergerequest = Column(Boolean, nullable=False, default=False)

    # Normalized fields
    summary = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    type = Column(String, nullable=False, default="unknown")
    status = Column(String, nullable=False)
    parent = Column(String, nullable=True)  # Jira parent key
    components = Column(JSON, nullable=False, default=list)
    labels = Column(JSON, nullable=False, default=list)  # [{"name": ..., "color": ...}]
    versions = Column(JSON, nullable=False, default=list)
    duedate = Column(Date, nullable=True)
    updated = Column(DateTime, nullable=True)
    assignee_name = Column(String, nullable=True)
    assignee_avatar_url = Column(String, nullable=True)

    def __repr__(self):
        sep = "!" if self.is_mergerequest else "#"
        return f"<IssueRecord({self.service}:{self.project}{sep}{self.issue_id})>"
