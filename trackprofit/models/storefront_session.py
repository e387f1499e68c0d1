"""
Storefront sessions

Access tokens issued by the storefront when a shop installs the app. The
install flow itself lives outside this service; rows are read to reach the
Admin API and deleted on uninstall.
"""
from sqlalchemy import Column, String, DateTime, Boolean
from datetime import datetime
from trackprofit.models.base import Base


class StorefrontSession(Base):
    __tablename__ = "storefront_sessions"

    id = Column(String, primary_key=True)
    shop = Column(String, index=True, nullable=False)
    state = Column(String, nullable=True)
    is_online = Column(Boolean, default=False)
    scope = Column(String, nullable=True)
    expires = Column(DateTime, nullable=True)
    access_token = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
