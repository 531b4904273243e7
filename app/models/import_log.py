"""Import log model"""
from sqlalchemy import Column, Integer, String, DateTime, Text, Enum
from datetime import datetime
import enum
from app.models.base import Base


class ImportStatus(str, enum.Enum):
    """Import status enumeration"""
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"


class ImportLog(Base):
    """Log of bulk issue imports"""

    __tablename__ = "import_logs"

    id = Column(Integer, primary_key=True, index=True)

    # Imported project
    service = Column(String, nullable=False, index=True)
    project = Column(String, nullable=False, index=True)

    # Import details
    status = Column(Enum(ImportStatus), nullable=False)
    imported = Column(Integer, nullable=False, default=0)
    total_estimate = Column(Integer, nullable=True)  # best-effort, never authoritative
    cursor = Column(Integer, nullable=False, default=0)  # where the next run resumes
    message = Column(Text, nullable=True)

    # Timestamp
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    def __repr__(self):
        return f"<ImportLog(service={self.service}, project={self.project}, status={self.status})>"
