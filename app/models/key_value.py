"""Key/value configuration model"""
from datetime import datetime

from sqlalchemy import Column, DateTime, String, Text

from app.models.base import Base


class KeyValue(Base):
    """Service configuration saved through the admin API (URLs, tokens, users)"""

    __tablename__ = "key_values"

    name = Column(String, primary_key=True)
    value = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        # Never echo the value, it is usually a credential.
        return f"<KeyValue(name='{self.name}')>"
