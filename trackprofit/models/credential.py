"""
Provider credentials

One row per (shop, provider). Secrets are opaque to everything except the
credential service, which hands adapters only what they need.
"""
from sqlalchemy import Column, Integer, String, DateTime, JSON, UniqueConstraint
from datetime import datetime, timedelta
from trackprofit.models.base import Base

PROVIDER_ADS = "ads"
PROVIDER_CARRIER = "carrier"
PROVIDERS = (PROVIDER_ADS, PROVIDER_CARRIER)


class ProviderCredential(Base):
    """
    Stored secrets for an external provider.

    ``cached_directory`` holds the provider-specific reference list: ad
    accounts for ``ads``, the tariff table for ``carrier``.
    """
    __tablename__ = "provider_credentials"
    __table_args__ = (
        UniqueConstraint("shop", "provider", name="uq_provider_credentials_shop_provider"),
    )

    id = Column(Integer, primary_key=True, index=True)
    shop = Column(String, index=True, nullable=False)
    provider = Column(String, nullable=False)

    secrets = Column(JSON, nullable=False, default=dict)

    expires_at = Column(DateTime, nullable=True)
    last_refreshed = Column(DateTime, nullable=True)

    cached_directory = Column(JSON, nullable=True)
    directory_refreshed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def is_expired(self, now: datetime = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or datetime.utcnow()) >= self.expires_at

    def directory_is_fresh(self, ttl_seconds: int, now: datetime = None) -> bool:
        if self.cached_directory is None or self.directory_refreshed_at is None:
            return False
        age = (now or datetime.utcnow()) - self.directory_refreshed_at
        return age < timedelta(seconds=ttl_seconds)

    def invalidate_directory(self):
        self.cached_directory = None
        self.directory_refreshed_at = None

    def to_status(self) -> dict:
        """Public view of the credential. Never includes secrets."""
        return {
            "provider": self.provider,
            "isConfigured": True,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "lastRefreshed": self.last_refreshed.isoformat() if self.last_refreshed else None,
            "isExpired": self.is_expired(),
        }
