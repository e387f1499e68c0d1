"""
Key/value cache rows (product lists, discovered store currency)
"""
from sqlalchemy import Column, String, DateTime, JSON
from datetime import datetime
from trackprofit.models.base import Base


class AppCache(Base):
    __tablename__ = "app_cache"

    key = Column(String, primary_key=True)
    value = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, index=True)
