"""Database models"""

from app.models.base import Base
from app.models.import_log import ImportLog
from app.models.issue import IssueRecord
from app.models.issue_link import IssueLink
from app.models.key_value import KeyValue
from app.models.webhook import Webhook

__all__ = [
    "Base",
    "KeyValue",
    "Webhook",
    "IssueRecord",
    "IssueLink",
    "ImportLog",
]
