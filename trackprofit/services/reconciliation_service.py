"""
Profit Reconciliation Service

Loads one shop's shipments and COGS snapshots for a window, pulls ad spend
and the store currency from the providers, and hands everything to the pure
ledger in ``profit_ledger``.

A provider that is missing or failing never fails the ledger: its
contribution is zero and the reason is reported in ``diagnostics``.
"""
import asyncio
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, selectinload

from trackprofit.config import get_settings
from trackprofit.connectors.base_connector import AdapterResult, ResultStatus, capture
from trackprofit.connectors.facebook_ads_connector import CampaignReport
from trackprofit.errors import DeadlineExceeded, InvalidInput
from trackprofit.models.base import store_unavailable
from trackprofit.models.order_cogs import OrderCOGS
from trackprofit.models.shipment import Shipment
from trackprofit.services.credential_service import CredentialService
from trackprofit.services.profit_ledger import (
    AdSnapshot,
    DailySpend,
    ItemRecord,
    Ledger,
    OrderRecord,
    ShipmentRecord,
    build_ledger,
)
from trackprofit.utils.cache import _MISS, cache_key, get_cached, set_cached
from trackprofit.utils.dates import DateWindow
from trackprofit.utils.logger import log
from trackprofit.utils.money import ZERO, round2, to_decimal

settings = get_settings()

PROVIDER_STOREFRONT = "storefront"
PROVIDER_ADS = "ads"
NOT_SELECTED = "not_selected"


def parse_exchange_rate(value) -> Decimal:
    """Exchange rate from ad currency to store currency; must be > 0."""
    if value is None or value == "":
        return Decimal("1")
    rate = to_decimal(value, default=None)
    if rate is None or rate <= 0:
        raise InvalidInput("exchangeRate must be a positive number", field="exchangeRate")
    return rate


def scale_report(report: CampaignReport, rate: Decimal) -> AdSnapshot:
    """Convert an ads report into store currency. ROAS is a ratio and stays as reported."""
    daily = None
    if report.daily_metrics is not None:
        daily = [DailySpend(date=metric.date, spend=metric.spend * rate) for metric in report.daily_metrics]
    return AdSnapshot(
        total_spend=report.metrics.total_spend * rate,
        total_revenue=report.metrics.total_revenue * rate,
        total_purchases=report.metrics.total_purchases,
        total_impressions=report.metrics.total_impressions,
        provider_roas=report.metrics.roas,
        currency=report.currency,
        daily=daily,
    )


def _scaled_campaign(campaign: Dict[str, Any], rate: Decimal) -> Dict[str, Any]:
    row = dict(campaign)
    for key in ("spend", "revenue", "costPerPurchase"):
        row[key] = float(round2(to_decimal(row.get(key)) * rate))
    if row.get("budget") is not None:
        # Graph budgets are in the account currency's minor unit
        row["budget"] = float(round2(to_decimal(row["budget"]) / 100 * rate))
    row["roas"] = float(to_decimal(row.get("roas")))
    return row


def shipment_record(row: Shipment) -> ShipmentRecord:
    return ShipmentRecord(
        tracking=row.tracking,
        status_id=row.status_id or 0,
        status=row.status or "",
        updated_at=row.updated_at,
        total=to_decimal(row.total),
        delivery_fee=to_decimal(row.delivery_fee),
        cancel_fee=to_decimal(row.cancel_fee),
        total_cost=to_decimal(row.total_cost) if row.total_cost is not None else None,
        order_id=row.order_id,
    )


def order_record(row: OrderCOGS) -> OrderRecord:
    return OrderRecord(
        order_id=row.order_id,
        created_at=row.created_at,
        total_revenue=to_decimal(row.total_revenue),
        total_cost=to_decimal(row.total_cost),
        items=[
            ItemRecord(
                product_id=item.product_id,
                title=item.title,
                quantity=item.quantity or 0,
                total_revenue=to_decimal(item.total_revenue),
                total_cost=to_decimal(item.total_cost),
                profit=to_decimal(item.profit),
            )
            for item in row.items
        ],
    )


def build_diagnostics(
    shipments: List[ShipmentRecord],
    orders: List[OrderRecord],
    results: Dict[str, AdapterResult],
) -> Dict[str, Any]:
    delivered = [s for s in shipments if s.delivered]
    returned = [s for s in shipments if s.returned]
    providers = {name: result.status.value for name, result in results.items()}
    return {
        "ordersWithCost": sum(1 for o in orders if o.total_cost > 0),
        "totalCogsValue": float(sum((o.total_cost for o in orders), ZERO)),
        "shipmentsFound": len(shipments),
        "shipmentsWithCostData": sum(1 for s in shipments if s.total_cost is not None),
        "totalShippingFees": float(sum((s.delivery_fee for s in delivered), ZERO)),
        "totalCancelFees": float(sum((s.cancel_fee for s in returned), ZERO)),
        "providers": providers,
        "notConfigured": sorted(
            name for name, result in results.items() if result.status == ResultStatus.NOT_CONFIGURED
        ),
        "errors": {name: result.error for name, result in results.items() if result.error},
    }


def ledger_response(
    ledger: Ledger,
    currency: str,
    exchange_rate: Decimal,
    diagnostics: Dict[str, Any],
    ad_account_id: Optional[str] = None,
) -> Dict[str, Any]:
    return {
        "window": ledger.window.to_dict(),
        "perDay": [bucket.to_dict() for bucket in ledger.per_day],
        "totals": ledger.totals.to_dict(),
        "derived": ledger.derived.to_dict(),
        "topSelling": ledger.top_selling.to_dict() if ledger.top_selling else None,
        "mostProfitable": ledger.most_profitable.to_dict() if ledger.most_profitable else None,
        "currency": currency,
        "exchangeRate": float(exchange_rate),
        "adAccountId": ad_account_id,
        "diagnostics": diagnostics,
    }


class ProfitReconciliationService:
    """Compute the per-day profit ledger for one shop."""

    def __init__(self, db: Session, credentials: Optional[CredentialService] = None):
        self.db = db
        self.credentials = credentials or CredentialService(db)

    def load_snapshot(self, shop: str, window: DateWindow) -> Tuple[List[ShipmentRecord], List[OrderRecord]]:
        """Read shipments and orders in one transaction and detach them as records."""
        try:
            shipments = (
                self.db.query(Shipment)
                .filter(
                    Shipment.shop == shop,
                    Shipment.updated_at >= window.start_at,
                    Shipment.updated_at <= window.end_at,
                )
                .order_by(Shipment.updated_at, Shipment.id)
                .all()
            )
            orders = (
                self.db.query(OrderCOGS)
                .options(selectinload(OrderCOGS.items))
                .filter(
                    OrderCOGS.shop == shop,
                    OrderCOGS.created_at >= window.start_at,
                    OrderCOGS.created_at <= window.end_at,
                )
                .order_by(OrderCOGS.created_at, OrderCOGS.id)
                .all()
            )
            snapshot = [shipment_record(row) for row in shipments], [order_record(row) for row in orders]
        except OperationalError as e:
            self.db.rollback()
            raise store_unavailable(e)
        self.db.rollback()
        return snapshot

    async def _fetch_ads(self, shop: str, ad_account_id: str, window: DateWindow) -> CampaignReport:
        connector = self.credentials.ads_connector(shop)
        return await connector.get_campaigns(ad_account_id, window.start, window.end)

    async def _fetch_currency(self, shop: str) -> str:
        connector = self.credentials.storefront_connector(shop)
        return await connector.get_shop_currency()

    def _cached_currency(self, shop: str) -> Optional[str]:
        value = get_cached(self.db, cache_key("currency", shop))
        return None if value is _MISS else value

    async def compute(
        self,
        shop: str,
        window: DateWindow,
        exchange_rate: Decimal = Decimal("1"),
        ad_account_id: Optional[str] = None,
        deadline: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Build the ledger response.

        Raises DeadlineExceeded if the provider calls do not finish within
        ``deadline`` seconds; partial results are dropped.
        """
        if exchange_rate is None or exchange_rate <= 0:
            raise InvalidInput("exchangeRate must be a positive number", field="exchangeRate")
        deadline = deadline if deadline is not None else settings.ledger_timeout_seconds

        shipments, orders = self.load_snapshot(shop, window)

        cached_currency = self._cached_currency(shop)
        calls = {}
        if ad_account_id:
            calls[PROVIDER_ADS] = capture(self._fetch_ads(shop, ad_account_id, window))
        if cached_currency is None:
            calls[PROVIDER_STOREFRONT] = capture(self._fetch_currency(shop))

        try:
            outcomes = await asyncio.wait_for(asyncio.gather(*calls.values()), timeout=deadline)
        except asyncio.TimeoutError:
            log.error(f"Ledger for {shop} exceeded its {deadline}s deadline")
            raise DeadlineExceeded(f"Ledger computation exceeded {deadline}s")
        results: Dict[str, AdapterResult] = dict(zip(calls.keys(), outcomes))

        ads = None
        ad_result = results.get(PROVIDER_ADS)
        if ad_result is None:
            results[PROVIDER_ADS] = AdapterResult(status=ResultStatus.OK, data=None, error=None)
        elif ad_result.ok:
            ads = scale_report(ad_result.data, exchange_rate)
        else:
            log.warning(f"Ads contribution skipped for {shop}: {ad_result.status.value} {ad_result.error}")

        currency = cached_currency
        currency_result = results.get(PROVIDER_STOREFRONT)
        if currency_result is None:
            results[PROVIDER_STOREFRONT] = AdapterResult(status=ResultStatus.OK, data=cached_currency)
        elif currency_result.ok and currency_result.data:
            currency = currency_result.data
            set_cached(self.db, cache_key("currency", shop), currency)
        currency = currency or settings.default_currency

        ledger = build_ledger(window, shipments, orders, ads)
        diagnostics = build_diagnostics(shipments, orders, results)
        if not ad_account_id:
            diagnostics["providers"][PROVIDER_ADS] = NOT_SELECTED

        log.info(
            f"Ledger for {shop} {window.start}..{window.end}: "
            f"{len(shipments)} shipments, {len(orders)} orders, ads={diagnostics['providers'][PROVIDER_ADS]}"
        )
        return ledger_response(ledger, currency, exchange_rate, diagnostics, ad_account_id)

    async def campaign_report(
        self,
        shop: str,
        ad_account_id: str,
        window: DateWindow,
        exchange_rate: Decimal = Decimal("1"),
    ) -> Dict[str, Any]:
        """Campaign rows and totals for one ad account, in store currency."""
        if not ad_account_id:
            raise InvalidInput("adAccountId is required", field="adAccountId")
        report = await self._fetch_ads(shop, ad_account_id, window)
        ads = scale_report(report, exchange_rate)
        return {
            "window": window.to_dict(),
            "accountName": report.account_name,
            "adCurrency": report.currency,
            "exchangeRate": float(exchange_rate),
            "campaigns": [_scaled_campaign(row, exchange_rate) for row in report.campaigns],
            "metrics": {
                "totalSpend": float(round2(ads.total_spend)),
                "totalRevenue": float(round2(ads.total_revenue)),
                "totalPurchases": ads.total_purchases,
                "totalImpressions": ads.total_impressions,
                "roas": float(ads.provider_roas),
            },
            "dailyMetrics": [
                {"date": day.date.isoformat(), "spend": float(round2(day.spend))}
                for day in ads.daily or []
            ],
        }
