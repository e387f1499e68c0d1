"""
Reconciliation service tests against a real (in-memory) store with fake
providers: ads scaling, provider failures surfaced in diagnostics, the
currency cache and the ledger deadline.
"""
import asyncio
from datetime import date, datetime
from decimal import Decimal

import pytest

from trackprofit.errors import AuthFailed, DeadlineExceeded, InvalidInput
from trackprofit.models.app_cache import AppCache
from trackprofit.models.shipment import STATUS_DELIVERED, Shipment
from trackprofit.services.cogs_service import COGSAttributionService, normalize_order
from trackprofit.services.reconciliation_service import (
    ProfitReconciliationService,
    parse_exchange_rate,
    scale_report,
)
from trackprofit.utils.cache import cache_key
from trackprofit.utils.dates import DateWindow

from conftest import SHOP, campaign_report, daily_spend, seed_ads_credentials, seed_storefront_session

WINDOW = DateWindow(date(2024, 6, 1), date(2024, 6, 3))


def _run(coro):
    """Run an async coroutine in a sync test."""
    return asyncio.run(coro)


def _seed_order(db, order_id="A", created_at="2024-06-01T09:00:00Z"):
    payload = {
        "id": order_id,
        "createdAt": created_at,
        "lineItems": [{"productId": "p1", "title": "Mug", "quantity": 1, "price": "1000", "unitCost": "250"}],
    }
    return _run(COGSAttributionService(db).observe_order(SHOP, normalize_order(payload)))


def _seed_delivered(db, order_id="A", updated_at=datetime(2024, 6, 2, 15, 0)):
    shipment = Shipment(
        shop=SHOP, tracking=f"ZR{order_id}", external_id="EXT", order_id=order_id,
        client="Amine", mobile_a="213555123456", address="Alger", wilaya_id=16,
        wilaya="Alger", commune="Alger Centre", product_description="Mug",
        status_id=STATUS_DELIVERED, status="Livrée",
        total=Decimal("1000"), delivery_fee=Decimal("400"), cancel_fee=Decimal("150"),
        total_cost=Decimal("300"), created_at=updated_at, updated_at=updated_at,
    )
    db.add(shipment)
    db.commit()
    return shipment


def _with_ads(db, fake_ads):
    seed_ads_credentials(db)
    fake_ads.report = campaign_report(
        total_spend="100",
        total_revenue="500",
        daily=[daily_spend(date(2024, 6, 1), "50"), daily_spend(date(2024, 6, 2), "50")],
    )


# ────────────────────────────────────────────
# FULL LEDGER
# ────────────────────────────────────────────


class TestCompute:

    def test_ledger_with_all_providers(self, db, fake_ads, fake_storefront):
        _seed_order(db)
        _seed_delivered(db)
        _with_ads(db, fake_ads)
        seed_storefront_session(db)

        result = _run(ProfitReconciliationService(db).compute(
            SHOP, WINDOW, exchange_rate=Decimal("2"), ad_account_id="act_123"
        ))

        day1, day2, day3 = result["perDay"]
        assert day1["date"] == "2024-06-01"
        assert day1["orderRevenue"] == 0.0
        assert day1["cogs"] == 250.0
        assert day1["adCosts"] == 100.0
        assert day2["orderRevenue"] == 1000.0
        assert day2["cogs"] == 0.0
        assert day2["shippingAndCancelFees"] == 400.0
        assert day3["netProfit"] == 0.0

        totals = result["totals"]
        assert totals["orderRevenue"] == 1000.0
        assert totals["cogs"] == 250.0
        assert totals["adCosts"] == 200.0
        assert totals["adRevenue"] == 1000.0
        assert totals["providerROAS"] == 2.5
        assert totals["netProfit"] == 150.0

        assert result["derived"]["MER"] == 5.0
        assert result["derived"]["deliveryRate"] == 1.0
        assert result["currency"] == "DZD"
        assert result["exchangeRate"] == 2.0
        assert result["adAccountId"] == "act_123"
        assert result["topSelling"]["productId"] == "p1"

        diagnostics = result["diagnostics"]
        assert diagnostics["providers"] == {"ads": "ok", "storefront": "ok"}
        assert diagnostics["shipmentsFound"] == 1
        assert diagnostics["shipmentsWithCostData"] == 1
        assert diagnostics["ordersWithCost"] == 1
        assert diagnostics["totalShippingFees"] == 400.0
        assert fake_ads.calls[-1] == ("get_campaigns", "act_123", WINDOW.start, WINDOW.end)

    def test_missing_providers_reported_not_raised(self, db, fake_ads, fake_storefront):
        _seed_order(db)

        result = _run(ProfitReconciliationService(db).compute(SHOP, WINDOW, ad_account_id="act_123"))

        diagnostics = result["diagnostics"]
        assert diagnostics["notConfigured"] == ["ads", "storefront"]
        assert diagnostics["providers"]["ads"] == "not_configured"
        assert result["totals"]["adCosts"] == 0.0
        assert result["totals"]["orderRevenue"] == 1000.0
        assert result["currency"] == "DZD"

    def test_ads_auth_failure_is_partial(self, db, fake_ads, fake_storefront):
        _with_ads(db, fake_ads)
        fake_ads.token_error = AuthFailed("expired", provider="ads")

        result = _run(ProfitReconciliationService(db).compute(SHOP, WINDOW, ad_account_id="act_123"))

        assert result["diagnostics"]["providers"]["ads"] == "auth_failed"
        assert "ads" in result["diagnostics"]["errors"]
        assert result["totals"]["adCosts"] == 0.0

    def test_no_ad_account_skips_ads(self, db, fake_ads, fake_storefront):
        _with_ads(db, fake_ads)

        result = _run(ProfitReconciliationService(db).compute(SHOP, WINDOW))

        assert result["diagnostics"]["providers"]["ads"] == "not_selected"
        assert fake_ads.calls == []

    def test_empty_window(self, db, fake_storefront):
        result = _run(ProfitReconciliationService(db).compute(SHOP, WINDOW))
        assert len(result["perDay"]) == 3
        assert result["totals"]["netProfit"] == 0.0
        assert result["derived"]["profitMargin"] == 0.0
        assert result["topSelling"] is None

    def test_other_shop_rows_ignored(self, db, fake_storefront):
        _seed_order(db)
        result = _run(ProfitReconciliationService(db).compute("other.myshopify.com", WINDOW))
        assert result["totals"]["orderCount"] == 0


# ────────────────────────────────────────────
# CURRENCY / DEADLINE
# ────────────────────────────────────────────


class TestProviders:

    def test_currency_cached_after_first_lookup(self, db, fake_storefront):
        seed_storefront_session(db)
        fake_storefront.currency = "EUR"
        service = ProfitReconciliationService(db)

        assert _run(service.compute(SHOP, WINDOW))["currency"] == "EUR"
        assert db.get(AppCache, cache_key("currency", SHOP)).value == "EUR"

        fake_storefront.error = AuthFailed("revoked", provider="storefront")
        assert _run(service.compute(SHOP, WINDOW))["currency"] == "EUR"

    def test_storefront_timeout_is_partial(self, db, shopify_transport):
        seed_storefront_session(db)
        _seed_order(db)
        shopify_transport.outcome = TimeoutError("read timed out")

        result = _run(ProfitReconciliationService(db).compute(SHOP, WINDOW))

        assert result["currency"] == "DZD"
        assert result["diagnostics"]["providers"]["storefront"] == "transient"
        assert "storefront" in result["diagnostics"]["errors"]
        assert result["totals"]["orderRevenue"] == 1000.0
        assert db.get(AppCache, cache_key("currency", SHOP)) is None

    def test_deadline_exceeded(self, db, fake_ads, fake_storefront):
        _with_ads(db, fake_ads)

        async def slow_campaigns(self, account_id, since, until):
            await asyncio.sleep(1)

        fake_ads.get_campaigns = slow_campaigns

        with pytest.raises(DeadlineExceeded) as exc:
            _run(ProfitReconciliationService(db).compute(SHOP, WINDOW, ad_account_id="act_123", deadline=0.05))
        assert exc.value.status_code == 504

    def test_non_positive_rate_rejected(self, db):
        with pytest.raises(InvalidInput):
            _run(ProfitReconciliationService(db).compute(SHOP, WINDOW, exchange_rate=Decimal("0")))


# ────────────────────────────────────────────
# EXCHANGE RATE / CAMPAIGNS
# ────────────────────────────────────────────


class TestExchangeRate:

    @pytest.mark.parametrize("raw,expected", [(None, "1"), ("", "1"), ("135.5", "135.5"), (2, "2")])
    def test_parse(self, raw, expected):
        assert parse_exchange_rate(raw) == Decimal(expected)

    @pytest.mark.parametrize("raw", ["0", "-3", "abc"])
    def test_rejects(self, raw):
        with pytest.raises(InvalidInput) as exc:
            parse_exchange_rate(raw)
        assert exc.value.field == "exchangeRate"

    def test_scale_report_keeps_roas(self):
        ads = scale_report(campaign_report(daily=[daily_spend(date(2024, 6, 1), "20")]), Decimal("10"))
        assert ads.total_spend == Decimal("2000")
        assert ads.total_revenue == Decimal("5000")
        assert ads.provider_roas == Decimal("2.5")
        assert ads.daily[0].spend == Decimal("200")

    def test_campaign_report(self, db, fake_ads):
        _with_ads(db, fake_ads)

        report = _run(ProfitReconciliationService(db).campaign_report(SHOP, "act_123", WINDOW, Decimal("2")))

        campaign = report["campaigns"][0]
        assert campaign["spend"] == 200.0
        assert campaign["budget"] == 100.0
        assert campaign["roas"] == 2.5
        assert report["metrics"]["totalSpend"] == 200.0
        assert [d["spend"] for d in report["dailyMetrics"]] == [100.0, 100.0]
