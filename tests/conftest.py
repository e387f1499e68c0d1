"""
Shared fixtures: a fresh in-memory database per test and in-process fakes
for the ads, carrier and storefront connectors.
"""
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from trackprofit import models  # noqa: F401
from trackprofit.connectors.facebook_ads_connector import AdAccount, AdMetrics, CampaignReport, DailyAdMetric
from trackprofit.connectors.zrexpress_connector import TariffEntry
from trackprofit.errors import AuthFailed
from trackprofit.models.base import Base
from trackprofit.models.credential import PROVIDER_ADS, PROVIDER_CARRIER, ProviderCredential
from trackprofit.models.storefront_session import StorefrontSession
from trackprofit.services.credential_service import CredentialService

SHOP = "test-shop.myshopify.com"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


# ────────────────────────────────────────────
# FAKE CONNECTORS
# ────────────────────────────────────────────


class FakeAdsConnector:
    """Stands in for FacebookAdsConnector; behaviour is set on the class."""

    accounts = []
    report = None
    token_error = None
    exchanged_token = "long-lived-token"
    calls = []

    def __init__(self, access_token, api_version=None):
        self.access_token = access_token

    async def validate_token(self):
        self.calls.append(("validate_token", self.access_token))
        if self.token_error is not None:
            raise self.token_error
        return {"id": "1", "name": "Owner"}

    async def get_ad_accounts(self):
        self.calls.append(("get_ad_accounts", self.access_token))
        return list(self.accounts)

    async def get_campaigns(self, account_id, since, until):
        self.calls.append(("get_campaigns", account_id, since, until))
        if self.token_error is not None:
            raise self.token_error
        return self.report

    async def exchange_code(self, code, redirect_uri):
        self.calls.append(("exchange_code", code, redirect_uri))
        return self.exchanged_token


class FakeCarrierConnector:
    """Stands in for ZRExpressConnector; behaviour is set on the class."""

    tariff = []
    statuses = []
    error = None
    parcels = []
    status_requests = []

    def __init__(self, token, key, base_url=None):
        self.token = token
        self.key = key

    async def validate_credentials(self):
        if self.error is not None:
            raise self.error
        return True

    async def get_tariff(self):
        if self.error is not None:
            raise self.error
        return list(self.tariff)

    async def create_parcel(self, parcel):
        if self.error is not None:
            raise self.error
        self.parcels.append(parcel)
        return {"Colis": [{"Tracking": parcel["Tracking"], "MessageRetour": "Good"}]}

    async def get_statuses(self, trackings):
        self.status_requests.append(list(trackings))
        if self.error is not None:
            raise self.error
        return list(self.statuses)


class FakeStorefrontConnector:
    """Stands in for ShopifyConnector; behaviour is set on the class."""

    unit_costs = {}
    orders = []
    products = []
    currency = "DZD"
    error = None
    cost_updates = []
    product_calls = 0

    def __init__(self, shop, access_token, api_version=None):
        self.shop = shop
        self.access_token = access_token

    async def get_variant_unit_cost(self, variant_id):
        if self.error is not None:
            raise self.error
        return self.unit_costs.get(variant_id)

    async def list_orders(self, start, end):
        return list(self.orders)

    async def list_products(self):
        type(self).product_calls += 1
        return list(self.products)

    async def get_shop_currency(self):
        if self.error is not None:
            raise self.error
        return self.currency

    async def update_variant_unit_cost(self, variant_id, cost):
        if self.error is not None:
            raise self.error
        self.cost_updates.append((variant_id, cost))
        return cost


def _fresh(base, **state):
    """Subclass with per-test mutable state."""
    return type(base.__name__, (base,), state)


@pytest.fixture
def fake_ads(monkeypatch):
    cls = _fresh(FakeAdsConnector, accounts=[], calls=[], report=None, token_error=None)
    monkeypatch.setattr(CredentialService, "ads_connector_class", cls)
    return cls


@pytest.fixture
def fake_carrier(monkeypatch):
    cls = _fresh(FakeCarrierConnector, tariff=[], statuses=[], error=None, parcels=[], status_requests=[])
    monkeypatch.setattr(CredentialService, "carrier_connector_class", cls)
    return cls


@pytest.fixture
def fake_storefront(monkeypatch):
    cls = _fresh(
        FakeStorefrontConnector,
        unit_costs={}, orders=[], products=[], error=None, cost_updates=[], product_calls=0,
    )
    monkeypatch.setattr(CredentialService, "storefront_connector_class", cls)
    return cls


@pytest.fixture
def no_retry_delay(monkeypatch):
    from trackprofit.services import credential_service

    monkeypatch.setattr(credential_service.settings, "facebook_directory_retry_delay", 0)


# ────────────────────────────────────────────
# SEED HELPERS
# ────────────────────────────────────────────


def seed_carrier_credentials(db, shop=SHOP, token="tok", key="key"):
    credential = ProviderCredential(
        shop=shop,
        provider=PROVIDER_CARRIER,
        secrets={"token": token, "key": key},
        last_refreshed=datetime.utcnow(),
    )
    db.add(credential)
    db.commit()
    return credential


def seed_ads_credentials(db, shop=SHOP, token="ads-token", expires_in_days=60):
    credential = ProviderCredential(
        shop=shop,
        provider=PROVIDER_ADS,
        secrets={"access_token": token},
        expires_at=datetime.utcnow() + timedelta(days=expires_in_days),
        last_refreshed=datetime.utcnow(),
    )
    db.add(credential)
    db.commit()
    return credential


def seed_storefront_session(db, shop=SHOP, token="shpat_test"):
    session = StorefrontSession(id=f"offline_{shop}", shop=shop, access_token=token, is_online=False)
    db.add(session)
    db.commit()
    return session


def tariff_entry(wilaya_id=16, name="Alger"):
    return TariffEntry(
        wilaya_id=wilaya_id,
        name=name,
        home_delivery_price=Decimal("400"),
        pickup_delivery_price=Decimal("300"),
        cancel_fee=Decimal("150"),
    )


def ad_account(account_id="123"):
    return AdAccount(id=f"act_{account_id}", account_id=account_id, name="Main", status="ACTIVE", currency="USD")


def campaign_report(total_spend="200", total_revenue="500", roas="2.5", daily=None):
    return CampaignReport(
        campaigns=[{
            "id": "c1", "name": "Summer", "objective": "OUTCOME_SALES", "status": "ACTIVE",
            "budget": "5000", "budgetType": "DAILY",
            "spend": Decimal(total_spend), "revenue": Decimal(total_revenue),
            "impressions": 1000, "purchases": 5, "costPerPurchase": Decimal("40"), "roas": Decimal(roas),
        }],
        metrics=AdMetrics(
            total_spend=Decimal(total_spend),
            total_revenue=Decimal(total_revenue),
            total_purchases=5,
            total_impressions=1000,
            roas=Decimal(roas),
        ),
        currency="USD",
        account_name="Main",
        daily_metrics=daily,
    )


def daily_spend(day, spend):
    return DailyAdMetric(date=day, spend=Decimal(spend))


@pytest.fixture
def seed():
    """Seed helpers as a namespace for tests."""
    class _Seed:
        carrier = staticmethod(seed_carrier_credentials)
        ads = staticmethod(seed_ads_credentials)
        storefront = staticmethod(seed_storefront_session)
    return _Seed


@pytest.fixture
def build():
    """Factories for connector result objects."""
    class _Build:
        tariff_entry = staticmethod(tariff_entry)
        ad_account = staticmethod(ad_account)
        campaign_report = staticmethod(campaign_report)
        daily_spend = staticmethod(daily_spend)
    return _Build


@pytest.fixture
def shopify_transport(monkeypatch):
    """Real ShopifyConnector with the library's GraphQL transport replaced.

    Set ``outcome`` on the returned class to an exception (raised) or a raw
    body (returned) for every execute call.
    """
    import contextlib

    import shopify

    from trackprofit.connectors.shopify_connector import ShopifyConnector

    class FakeGraphQL:
        outcome = None
        calls = []

        def execute(self, query, variables=None):
            type(self).calls.append(query)
            if isinstance(self.outcome, BaseException):
                raise self.outcome
            return self.outcome

    transport = type("FakeGraphQL", (FakeGraphQL,), {"outcome": None, "calls": []})
    monkeypatch.setattr(shopify.Session, "temp", classmethod(lambda cls, *a, **k: contextlib.nullcontext()))
    monkeypatch.setattr(shopify, "GraphQL", transport)
    monkeypatch.setattr(ShopifyConnector, "RETRY_BASE_DELAY", 0)
    monkeypatch.setattr(ShopifyConnector, "RETRY_MAX_DELAY", 0)
    monkeypatch.setattr(CredentialService, "storefront_connector_class", ShopifyConnector)
    return transport
