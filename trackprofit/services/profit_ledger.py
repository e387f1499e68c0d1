"""
Profit ledger computation.

Pure functions over plain records: no database or network access, so every
rule here can be tested with literal inputs.

Per-day rules
-------------
Shipments (bucketed by updated_at):
  delivered (statusId 5)      revenue += total, fees += deliveryFee, cogs += totalCost
  returned  (6 / "Retour...") fees += cancelFee
  every shipment              shipmentCount += 1

Orders (bucketed by created_at):
  orderCount += 1
  no delivered shipment for the order   revenue += order revenue, cogs += order cost
  delivered shipment S exists           cogs += order cost on the order's day,
                                        S.totalCost removed from S's day

Ads: spend * exchangeRate per day; aggregate ad figures live on the totals.

netProfit = orderRevenue - cogs - shippingAndCancelFees - adCosts
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from trackprofit.models.shipment import is_delivered, is_returned
from trackprofit.utils.dates import DateWindow
from trackprofit.utils.money import ZERO, round2, safe_div


@dataclass
class ShipmentRecord:
    tracking: str
    status_id: int
    status: str
    updated_at: datetime
    total: Decimal = ZERO
    delivery_fee: Decimal = ZERO
    cancel_fee: Decimal = ZERO
    total_cost: Optional[Decimal] = None
    order_id: Optional[str] = None

    @property
    def delivered(self) -> bool:
        return is_delivered(self.status_id)

    @property
    def returned(self) -> bool:
        return not self.delivered and is_returned(self.status_id, self.status)


@dataclass
class ItemRecord:
    product_id: Optional[str]
    title: Optional[str]
    quantity: int
    total_revenue: Decimal
    total_cost: Decimal
    profit: Decimal


@dataclass
class OrderRecord:
    order_id: str
    created_at: datetime
    total_revenue: Decimal
    total_cost: Decimal
    items: List[ItemRecord] = field(default_factory=list)


@dataclass
class DailySpend:
    date: date
    spend: Decimal


@dataclass
class AdSnapshot:
    """Ad figures already converted into the store currency."""
    total_spend: Decimal = ZERO
    total_revenue: Decimal = ZERO
    total_purchases: int = 0
    total_impressions: int = 0
    provider_roas: Decimal = ZERO
    currency: Optional[str] = None
    daily: Optional[List[DailySpend]] = None


@dataclass
class DayBucket:
    date: date
    order_revenue: Decimal = ZERO
    cogs: Decimal = ZERO
    shipping_and_cancel_fees: Decimal = ZERO
    ad_costs: Decimal = ZERO
    shipment_count: int = 0
    order_count: int = 0
    delivered_count: int = 0
    returned_count: int = 0

    @property
    def net_profit(self) -> Decimal:
        return self.order_revenue - self.cogs - self.shipping_and_cancel_fees - self.ad_costs

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "orderRevenue": float(self.order_revenue),
            "cogs": float(self.cogs),
            "shippingAndCancelFees": float(self.shipping_and_cancel_fees),
            "adCosts": float(self.ad_costs),
            "netProfit": float(self.net_profit),
            "shipmentCount": self.shipment_count,
            "orderCount": self.order_count,
            "deliveredCount": self.delivered_count,
            "returnedCount": self.returned_count,
        }


@dataclass
class LedgerTotals:
    order_revenue: Decimal = ZERO
    cogs: Decimal = ZERO
    shipping_and_cancel_fees: Decimal = ZERO
    ad_costs: Decimal = ZERO
    ad_revenue: Decimal = ZERO
    impressions: int = 0
    purchases: int = 0
    provider_roas: Decimal = ZERO
    shipment_count: int = 0
    order_count: int = 0
    delivered_count: int = 0
    returned_count: int = 0

    @property
    def net_profit(self) -> Decimal:
        return self.order_revenue - self.cogs - self.shipping_and_cancel_fees - self.ad_costs

    def to_dict(self) -> dict:
        return {
            "orderRevenue": float(self.order_revenue),
            "cogs": float(self.cogs),
            "shippingAndCancelFees": float(self.shipping_and_cancel_fees),
            "adCosts": float(self.ad_costs),
            "adRevenue": float(self.ad_revenue),
            "impressions": self.impressions,
            "purchases": self.purchases,
            "providerROAS": float(self.provider_roas),
            "netProfit": float(self.net_profit),
            "shipmentCount": self.shipment_count,
            "orderCount": self.order_count,
            "deliveredCount": self.delivered_count,
            "returnedCount": self.returned_count,
        }


@dataclass
class DerivedRatios:
    mer: Decimal = ZERO
    net_roas: Decimal = ZERO
    profit_margin: Decimal = ZERO
    delivery_rate: Decimal = ZERO

    def to_dict(self) -> dict:
        return {
            "MER": float(self.mer),
            "netROAS": float(self.net_roas),
            "profitMargin": float(self.profit_margin),
            "deliveryRate": float(self.delivery_rate),
        }


@dataclass
class ProductPerformance:
    product_id: str
    title: Optional[str]
    quantity: int = 0
    revenue: Decimal = ZERO
    total_cost: Decimal = ZERO
    profit: Decimal = ZERO

    @property
    def has_money(self) -> bool:
        return self.revenue > 0 or self.total_cost > 0

    def to_dict(self) -> dict:
        return {
            "productId": self.product_id,
            "title": self.title,
            "quantity": self.quantity,
            "revenue": float(self.revenue),
            "totalCost": float(self.total_cost),
            "profit": float(self.profit),
        }


@dataclass
class Ledger:
    window: DateWindow
    per_day: List[DayBucket]
    totals: LedgerTotals
    derived: DerivedRatios
    top_selling: Optional[ProductPerformance] = None
    most_profitable: Optional[ProductPerformance] = None

    def day(self, day: date) -> DayBucket:
        return self.per_day[(day - self.window.start).days]


def empty_buckets(window: DateWindow) -> List[DayBucket]:
    """One zeroed bucket per calendar day of the window."""
    return [DayBucket(date=day) for day in window.iter_days()]


def _bucket_for(buckets: List[DayBucket], window: DateWindow, moment) -> Optional[DayBucket]:
    if isinstance(moment, datetime):
        if not window.contains(moment):
            return None
        moment = moment.date()
    if moment < window.start or moment > window.end:
        return None
    return buckets[(moment - window.start).days]


def apply_shipments(
    buckets: List[DayBucket],
    window: DateWindow,
    shipments: List[ShipmentRecord],
) -> Dict[str, List[tuple]]:
    """
    Add shipment contributions.

    Returns delivered shipments by order id as ``(bucket, total_cost)``
    pairs so order processing can move COGS off those days.
    """
    delivered_by_order: Dict[str, List[tuple]] = {}
    for shipment in shipments:
        bucket = _bucket_for(buckets, window, shipment.updated_at)
        if bucket is None:
            continue
        bucket.shipment_count += 1

        if shipment.delivered:
            bucket.delivered_count += 1
            bucket.order_revenue += shipment.total
            bucket.shipping_and_cancel_fees += shipment.delivery_fee
            if shipment.total_cost is not None:
                bucket.cogs += shipment.total_cost
            if shipment.order_id:
                delivered_by_order.setdefault(shipment.order_id, []).append(
                    (bucket, shipment.total_cost)
                )
        elif shipment.returned:
            bucket.returned_count += 1
            bucket.shipping_and_cancel_fees += shipment.cancel_fee
    return delivered_by_order


def apply_orders(
    buckets: List[DayBucket],
    window: DateWindow,
    orders: List[OrderRecord],
    delivered_by_order: Dict[str, List[tuple]],
):
    """Add order contributions without counting delivered revenue or COGS twice."""
    for order in orders:
        bucket = _bucket_for(buckets, window, order.created_at)
        if bucket is None:
            continue
        bucket.order_count += 1

        delivered = delivered_by_order.get(order.order_id)
        if not delivered:
            bucket.order_revenue += order.total_revenue
            bucket.cogs += order.total_cost
            continue

        # The shipment already carried the revenue; the order owns the COGS
        bucket.cogs += order.total_cost
        for shipment_bucket, shipment_cost in delivered:
            if shipment_cost is not None:
                shipment_bucket.cogs -= shipment_cost


def apply_ads(buckets: List[DayBucket], window: DateWindow, ads: Optional[AdSnapshot]):
    if ads is None or not ads.daily:
        return
    for entry in ads.daily:
        bucket = _bucket_for(buckets, window, entry.date)
        if bucket is not None:
            bucket.ad_costs += entry.spend


def compute_totals(
    buckets: List[DayBucket],
    shipments: List[ShipmentRecord],
    window: DateWindow,
    ads: Optional[AdSnapshot],
) -> LedgerTotals:
    totals = LedgerTotals()
    for bucket in buckets:
        totals.order_revenue += bucket.order_revenue
        totals.cogs += bucket.cogs
        totals.shipment_count += bucket.shipment_count
        totals.order_count += bucket.order_count
        totals.delivered_count += bucket.delivered_count
        totals.returned_count += bucket.returned_count

    # Fees are recomputed from terminal shipment state, not summed per day
    fees = ZERO
    for shipment in shipments:
        if not window.contains(shipment.updated_at):
            continue
        if shipment.delivered:
            fees += shipment.delivery_fee
        elif shipment.returned:
            fees += shipment.cancel_fee
    totals.shipping_and_cancel_fees = fees

    if ads is not None:
        totals.ad_costs = ads.total_spend
        totals.ad_revenue = ads.total_revenue
        totals.impressions = ads.total_impressions
        totals.purchases = ads.total_purchases
        totals.provider_roas = ads.provider_roas
    return totals


def derive_ratios(totals: LedgerTotals) -> DerivedRatios:
    """MER, NetROAS, profit margin and delivery rate; zero on zero denominators."""
    ratios = DerivedRatios()
    if totals.ad_costs > 0:
        ratios.mer = round2(totals.order_revenue / totals.ad_costs)
        if totals.order_revenue > 0:
            attributed_cogs = totals.ad_revenue / totals.order_revenue * totals.cogs
            ratios.net_roas = round2((totals.ad_revenue - attributed_cogs) / totals.ad_costs)
    ratios.profit_margin = safe_div(totals.net_profit, totals.order_revenue)
    ratios.delivery_rate = safe_div(Decimal(totals.delivered_count), Decimal(totals.shipment_count))
    return ratios


def aggregate_products(orders: List[OrderRecord], window: DateWindow) -> List[ProductPerformance]:
    products: Dict[str, ProductPerformance] = {}
    for order in orders:
        if not window.contains(order.created_at):
            continue
        for item in order.items:
            key = item.product_id or item.title or "unknown"
            entry = products.get(key)
            if entry is None:
                entry = products[key] = ProductPerformance(product_id=key, title=item.title)
            entry.quantity += item.quantity
            entry.revenue += item.total_revenue
            entry.total_cost += item.total_cost
            entry.profit += item.profit
    return [products[key] for key in sorted(products)]


def top_products(products: List[ProductPerformance]) -> tuple:
    """Return ``(topSelling, mostProfitable)``; either may be None."""
    if not products:
        return None, None

    top_selling = max(products, key=lambda p: (p.quantity, p.revenue))

    sold = [p for p in products if p.quantity > 0]
    with_money = [p for p in sold if p.has_money]
    pool = with_money or sold
    most_profitable = max(pool, key=lambda p: p.profit) if pool else None
    return top_selling, most_profitable


def build_ledger(
    window: DateWindow,
    shipments: List[ShipmentRecord],
    orders: List[OrderRecord],
    ads: Optional[AdSnapshot] = None,
) -> Ledger:
    """Assemble the full ledger for one shop and window."""
    buckets = empty_buckets(window)
    delivered_by_order = apply_shipments(buckets, window, shipments)
    apply_orders(buckets, window, orders, delivered_by_order)
    apply_ads(buckets, window, ads)

    totals = compute_totals(buckets, shipments, window, ads)
    top_selling, most_profitable = top_products(aggregate_products(orders, window))

    return Ledger(
        window=window,
        per_day=buckets,
        totals=totals,
        derived=derive_ratios(totals),
        top_selling=top_selling,
        most_profitable=most_profitable,
    )
