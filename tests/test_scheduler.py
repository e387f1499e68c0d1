"""
Background carrier refresh: every configured shop is refreshed and a
failing shop never stops the others.
"""
import asyncio
from datetime import datetime
from decimal import Decimal

from trackprofit.errors import AuthFailed
from trackprofit.models.shipment import STATUS_PREPARING, Shipment
from trackprofit.scheduler import refresh_carrier_shipments

from conftest import SHOP, seed_carrier_credentials

OTHER = "other-shop.myshopify.com"


def _shipment(db, shop, tracking):
    now = datetime(2024, 6, 1, 8, 0)
    db.add(Shipment(
        shop=shop, tracking=tracking, external_id="EXT", client="Amine",
        mobile_a="213555123456", address="Alger", wilaya_id=16, commune="Alger Centre",
        product_description="Mug", status_id=STATUS_PREPARING, status="En Préparation",
        total=Decimal("1000"), created_at=now, updated_at=now,
    ))
    db.commit()


def test_refreshes_each_configured_shop(db, session_factory, fake_carrier):
    seed_carrier_credentials(db)
    seed_carrier_credentials(db, shop=OTHER)
    _shipment(db, SHOP, "ZRA")
    _shipment(db, OTHER, "ZRB")
    fake_carrier.statuses = [
        {"Tracking": "ZRA", "IDSituation": 5, "Tarif_Livrée": "400"},
        {"Tracking": "ZRB", "IDSituation": 6, "Tarif_Annuler": "150"},
    ]

    results = asyncio.run(refresh_carrier_shipments(session_factory))

    assert results == {SHOP: 1, OTHER: 1}
    assert sorted(sum(fake_carrier.status_requests, [])) == ["ZRA", "ZRB"]


def test_failing_shop_is_reported_and_skipped(db, session_factory, fake_carrier):
    seed_carrier_credentials(db)
    _shipment(db, SHOP, "ZRA")
    fake_carrier.error = AuthFailed("key revoked", provider="carrier")

    results = asyncio.run(refresh_carrier_shipments(session_factory))

    assert results == {SHOP: "auth_failed"}


def test_no_configured_shops(session_factory, fake_carrier):
    assert asyncio.run(refresh_carrier_shipments(session_factory)) == {}
