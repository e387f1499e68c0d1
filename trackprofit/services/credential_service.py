"""
Credential Service

Owns provider secrets per shop. Adapters never read credential rows
directly; they are built here from the stored secrets.
"""
import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from trackprofit.config import get_settings
from trackprofit.connectors.facebook_ads_connector import AdAccount, FacebookAdsConnector
from trackprofit.connectors.shopify_connector import ShopifyConnector
from trackprofit.connectors.zrexpress_connector import TariffEntry, ZRExpressConnector
from trackprofit.errors import AuthFailed, Conflict, InvalidInput, NoDirectory, NotConfigured, NotFound
from trackprofit.models.base import store_unavailable
from trackprofit.models.credential import (
    PROVIDER_ADS,
    PROVIDER_CARRIER,
    PROVIDERS,
    ProviderCredential,
)
from trackprofit.models.storefront_session import StorefrontSession
from trackprofit.utils.logger import log

settings = get_settings()


@dataclass(frozen=True)
class CarrierKeys:
    token: str
    key: str


def _require_text(value: Optional[str], field: str) -> str:
    text = (value or "").strip()
    if not text:
        raise InvalidInput(f"{field} is required", field=field)
    return text


def validate_provider(provider: str) -> str:
    if provider not in PROVIDERS:
        raise InvalidInput(
            f"Unknown provider '{provider}'. Expected one of: {', '.join(PROVIDERS)}",
            field="provider",
        )
    return provider


class CredentialService:
    """Validate, store and hand out provider credentials."""

    # Overridable in tests
    ads_connector_class = FacebookAdsConnector
    carrier_connector_class = ZRExpressConnector
    storefront_connector_class = ShopifyConnector

    def __init__(self, db: Session):
        self.db = db

    # ── Reads ────────────────────────────────────────────

    def get(self, shop: str, provider: str) -> Optional[ProviderCredential]:
        try:
            return (
                self.db.query(ProviderCredential)
                .filter(ProviderCredential.shop == shop, ProviderCredential.provider == provider)
                .first()
            )
        except OperationalError as e:
            raise store_unavailable(e)

    def require(self, shop: str, provider: str) -> ProviderCredential:
        credential = self.get(shop, provider)
        if credential is None:
            raise NotConfigured(
                f"No {provider} credentials saved for {shop}", provider=provider
            )
        return credential

    def status(self, shop: str, provider: str) -> Dict[str, Any]:
        validate_provider(provider)
        credential = self.get(shop, provider)
        if credential is None:
            return {"provider": provider, "isConfigured": False}
        return credential.to_status()

    def shops_with(self, provider: str) -> List[str]:
        rows = (
            self.db.query(ProviderCredential.shop)
            .filter(ProviderCredential.provider == provider)
            .order_by(ProviderCredential.shop)
            .all()
        )
        return [row.shop for row in rows]

    # ── Narrow accessors for adapters ────────────────────

    def ads_access_token(self, shop: str) -> str:
        credential = self.require(shop, PROVIDER_ADS)
        if credential.is_expired():
            raise AuthFailed(
                "Facebook access token has expired - please reconnect", provider=PROVIDER_ADS
            )
        return credential.secrets["access_token"]

    def carrier_keys(self, shop: str) -> CarrierKeys:
        credential = self.require(shop, PROVIDER_CARRIER)
        return CarrierKeys(token=credential.secrets["token"], key=credential.secrets["key"])

    def ads_connector(self, shop: str) -> FacebookAdsConnector:
        return self.ads_connector_class(self.ads_access_token(shop))

    def carrier_connector(self, shop: str) -> ZRExpressConnector:
        keys = self.carrier_keys(shop)
        return self.carrier_connector_class(keys.token, keys.key)

    def storefront_connector(self, shop: str) -> ShopifyConnector:
        session = (
            self.db.query(StorefrontSession)
            .filter(StorefrontSession.shop == shop)
            .order_by(StorefrontSession.is_online.asc())
            .first()
        )
        if session is None or not session.access_token:
            raise NotConfigured(f"No storefront session for {shop}", provider="storefront")
        return self.storefront_connector_class(shop, session.access_token)

    # ── Writes ───────────────────────────────────────────

    def _upsert(self, shop: str, provider: str, secrets: Dict[str, Any], _retry: bool = True, **fields) -> ProviderCredential:
        """Insert or replace a credential. Any update drops the cached directory."""
        now = datetime.utcnow()
        credential = self.get(shop, provider)
        if credential is None:
            credential = ProviderCredential(shop=shop, provider=provider, created_at=now)
            self.db.add(credential)
        credential.secrets = secrets
        credential.invalidate_directory()
        credential.last_refreshed = now
        credential.updated_at = now
        for name, value in fields.items():
            setattr(credential, name, value)
        try:
            self.db.commit()
        except IntegrityError:
            # Concurrent first save for the same shop; the other writer won
            self.db.rollback()
            if not _retry:
                raise Conflict(f"Concurrent {provider} credential save for {shop}", provider=provider)
            return self._upsert(shop, provider, secrets, _retry=False, **fields)
        except OperationalError as e:
            self.db.rollback()
            raise store_unavailable(e)
        self.db.refresh(credential)
        return credential

    async def _fetch_directory_for_save(self, connector: FacebookAdsConnector) -> List[AdAccount]:
        attempts = settings.facebook_directory_attempts
        for attempt in range(1, attempts + 1):
            accounts = await connector.get_ad_accounts()
            if accounts:
                return accounts
            log.warning(f"No ad accounts returned (attempt {attempt}/{attempts})")
            if attempt < attempts:
                await asyncio.sleep(settings.facebook_directory_retry_delay)
        raise NoDirectory(provider=PROVIDER_ADS)

    async def save_ads_credentials(self, shop: str, access_token: Optional[str]) -> ProviderCredential:
        """
        Validate an ads token and store it with its ad-account directory.

        Nothing is written unless the token resolves and at least one ad
        account is listed.
        """
        token = _require_text(access_token, "accessToken")
        connector = self.ads_connector_class(token)
        await connector.validate_token()
        accounts = await self._fetch_directory_for_save(connector)

        now = datetime.utcnow()
        credential = self._upsert(
            shop,
            PROVIDER_ADS,
            {"access_token": token},
            expires_at=now + timedelta(days=settings.facebook_token_lifetime_days),
            cached_directory=[account.to_dict() for account in accounts],
            directory_refreshed_at=now,
        )
        log.info(f"Saved ads credentials for {shop} ({len(accounts)} ad accounts)")
        return credential

    async def save_ads_credentials_from_code(self, shop: str, code: Optional[str], redirect_uri: Optional[str]) -> ProviderCredential:
        """OAuth callback: exchange the code, then save like a pasted token."""
        code = _require_text(code, "code")
        redirect_uri = _require_text(redirect_uri, "redirect_uri")
        token = await self.ads_connector_class("").exchange_code(code, redirect_uri)
        return await self.save_ads_credentials(shop, token)

    async def save_carrier_credentials(self, shop: str, token: Optional[str], key: Optional[str]) -> ProviderCredential:
        token = _require_text(token, "token")
        key = _require_text(key, "key")
        await self.carrier_connector_class(token, key).validate_credentials()
        credential = self._upsert(shop, PROVIDER_CARRIER, {"token": token, "key": key})
        log.info(f"Saved carrier credentials for {shop}")
        return credential

    async def save(self, shop: str, provider: str, payload: Dict[str, Any]) -> ProviderCredential:
        validate_provider(provider)
        if provider == PROVIDER_ADS:
            return await self.save_ads_credentials(shop, payload.get("accessToken"))
        return await self.save_carrier_credentials(shop, payload.get("token"), payload.get("key"))

    async def test(self, shop: str, provider: str) -> Dict[str, Any]:
        """Revalidate stored secrets against the provider."""
        validate_provider(provider)
        if provider == PROVIDER_ADS:
            await self.ads_connector(shop).validate_token()
        else:
            await self.carrier_connector(shop).validate_credentials()
        credential = self.require(shop, provider)
        credential.last_refreshed = datetime.utcnow()
        self.db.commit()
        return credential.to_status()

    def delete(self, shop: str, provider: str):
        validate_provider(provider)
        credential = self.get(shop, provider)
        if credential is None:
            raise NotFound(f"No {provider} credentials saved for {shop}", provider=provider)
        self.db.delete(credential)
        self.db.commit()
        log.info(f"Deleted {provider} credentials for {shop}")

    # ── Cached directories ───────────────────────────────

    async def get_ad_accounts(self, shop: str, force_refresh: bool = False) -> List[Dict[str, Any]]:
        """Ad-account directory, served from the credential row while fresh."""
        credential = self.require(shop, PROVIDER_ADS)
        if not force_refresh and credential.directory_is_fresh(settings.directory_cache_ttl_seconds):
            return credential.cached_directory

        accounts = await self.ads_connector(shop).get_ad_accounts()
        credential.cached_directory = [account.to_dict() for account in accounts]
        credential.directory_refreshed_at = datetime.utcnow()
        self.db.commit()
        return credential.cached_directory

    async def get_tariff(self, shop: str, force_refresh: bool = False) -> List[TariffEntry]:
        """Carrier tariff table, served from the credential row while fresh."""
        credential = self.require(shop, PROVIDER_CARRIER)
        if not force_refresh and credential.directory_is_fresh(settings.tariff_cache_ttl_seconds):
            return [TariffEntry.from_dict(row) for row in credential.cached_directory]

        entries = await self.carrier_connector(shop).get_tariff()
        credential.cached_directory = [entry.to_dict() for entry in entries]
        credential.directory_refreshed_at = datetime.utcnow()
        self.db.commit()
        log.info(f"Refreshed carrier tariff for {shop} ({len(entries)} wilayas)")
        return entries
