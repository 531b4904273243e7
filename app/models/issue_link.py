"""Issue cross-reference model"""
from sqlalchemy import Boolean, Column, Integer, String, UniqueConstraint

from app.models.base import Base


class IssueLink(Base):
    """An issue referenced from the text of a merge/pull request"""

    __tablename__ = "issue_issues"
    __table_args__ = (
        UniqueConstraint(
            "service",
            "project",
            "issue_id",
            "is_mergerequest",
            "referenced_service",
            "referenced_project",
            "referenced_issue_id",
            name="uq_issue_issues_reference",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Referencing issue
    service = Column(String, nullable=False, index=True)
    project = Column(String, nullable=False, index=True)
    issue_id = Column(String, nullable=False)
    is_mergerequest = Column(Boolean, nullable=False, default=False)

    # Referenced issue
    referenced_service = Column(String, nullable=False)
    referenced_project = Column(String, nullable=False, index=True)
    referenced_issue_id = Column(String, nullable=False)

    def __repr__(self):
        return (
            f"<IssueLink({self.service}:{self.project}/{self.issue_id} -> "
            f"{self.referenced_service}:{self.referenced_project}/{self.referenced_issue_id})>"
        )
