"""
COGS Attribution Service

Turns an observed storefront order into an immutable cost snapshot:

  unitCost     resolved per line item (payload value, else storefront lookup, else 0)
  totalCost    = unitCost * quantity
  totalRevenue = price * quantity
  profit       = totalRevenue - totalCost

Order totals are the sums of item totals. Re-observing an order returns the
stored snapshot untouched.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, selectinload

from trackprofit.errors import InvalidInput, NotFound, TrackProfitError
from trackprofit.models.base import store_unavailable
from trackprofit.models.order_cogs import OrderCOGS, OrderItem
from trackprofit.utils.dates import DateWindow, parse_timestamp
from trackprofit.utils.logger import log
from trackprofit.utils.money import ZERO, round2, safe_div, to_decimal, to_int


@dataclass
class ObservedLineItem:
    product_id: Optional[str]
    variant_id: Optional[str]
    title: Optional[str]
    quantity: int
    price: Decimal
    unit_cost: Optional[Decimal] = None


@dataclass
class ObservedOrder:
    id: str
    name: Optional[str]
    total_price: Decimal
    line_items: List[ObservedLineItem] = field(default_factory=list)
    created_at: Optional[datetime] = None


def _first(payload: Dict[str, Any], *keys):
    for key in keys:
        if payload.get(key) is not None:
            return payload[key]
    return None


def _id_text(value) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value).rsplit("/", 1)[-1]


def normalize_order(payload: Dict[str, Any]) -> ObservedOrder:
    """
    Build an ObservedOrder from a webhook body, connector row or API request.

    Accepts the storefront's snake_case webhook keys and the camelCase keys
    used by the API and connectors.
    """
    if not isinstance(payload, dict):
        raise InvalidInput("Order payload must be an object", field="order")

    items = []
    for raw in _first(payload, "lineItems", "line_items") or []:
        unit_cost = _first(raw, "unitCost", "unit_cost")
        items.append(ObservedLineItem(
            product_id=_id_text(_first(raw, "productId", "product_id")),
            variant_id=_id_text(_first(raw, "variantId", "variant_id")),
            title=_first(raw, "title", "name"),
            quantity=to_int(raw.get("quantity")),
            price=to_decimal(raw.get("price")),
            unit_cost=to_decimal(unit_cost) if unit_cost is not None else None,
        ))

    return ObservedOrder(
        id=_id_text(payload.get("id")) or "",
        name=_first(payload, "name", "orderName"),
        total_price=to_decimal(_first(payload, "totalPrice", "total_price")),
        line_items=items,
        created_at=parse_timestamp(_first(payload, "createdAt", "created_at")),
    )


class COGSAttributionService:
    """Create and read per-order COGS snapshots."""

    def __init__(self, db: Session, storefront=None):
        self.db = db
        # Anything with ``async get_variant_unit_cost(variant_id)``
        self.storefront = storefront

    def _find(self, shop: str, order_id: str) -> Optional[OrderCOGS]:
        try:
            return (
                self.db.query(OrderCOGS)
                .options(selectinload(OrderCOGS.items))
                .filter(OrderCOGS.shop == shop, OrderCOGS.order_id == order_id)
                .first()
            )
        except OperationalError as e:
            raise store_unavailable(e)

    async def _resolve_unit_cost(self, item: ObservedLineItem) -> Decimal:
        if item.unit_cost is not None:
            return item.unit_cost
        if self.storefront is None or not item.variant_id:
            return ZERO
        try:
            cost = await self.storefront.get_variant_unit_cost(item.variant_id)
        except TrackProfitError as e:
            log.warning(f"Unit cost lookup failed for variant {item.variant_id}, using 0: {e}")
            return ZERO
        return cost if cost is not None else ZERO

    async def observe_order(self, shop: str, order: ObservedOrder) -> OrderCOGS:
        """Store the order's COGS snapshot once; later calls return it unchanged."""
        if not order.id:
            raise InvalidInput("order.id is required", field="id")
        if not order.line_items:
            raise InvalidInput("order.lineItems must not be empty", field="lineItems")

        existing = self._find(shop, order.id)
        if existing is not None:
            log.debug(f"Order {order.id} already observed for {shop}")
            return existing

        snapshot = OrderCOGS(
            shop=shop,
            order_id=order.id,
            order_name=order.name or order.id,
            created_at=order.created_at or datetime.utcnow(),
            confirmed_at=datetime.utcnow(),
        )
        total_cost = ZERO
        total_revenue = ZERO
        for line in order.line_items:
            if line.quantity < 0:
                raise InvalidInput("quantity must not be negative", field="lineItems.quantity")
            unit_cost = await self._resolve_unit_cost(line)
            # Stored in cents; order totals are sums of the stored item amounts
            item_cost = round2(unit_cost * line.quantity)
            item_revenue = round2(line.price * line.quantity)
            snapshot.items.append(OrderItem(
                product_id=line.product_id,
                variant_id=line.variant_id,
                title=line.title,
                quantity=line.quantity,
                unit_cost=unit_cost,
                price=line.price,
                total_cost=item_cost,
                total_revenue=item_revenue,
                profit=item_revenue - item_cost,
            ))
            total_cost += item_cost
            total_revenue += item_revenue

        snapshot.total_cost = total_cost
        snapshot.total_revenue = total_revenue
        snapshot.profit = total_revenue - total_cost

        try:
            self.db.add(snapshot)
            self.db.commit()
        except IntegrityError:
            # Another observer inserted the same order first
            self.db.rollback()
            existing = self._find(shop, order.id)
            if existing is not None:
                return existing
            raise
        except OperationalError as e:
            self.db.rollback()
            raise store_unavailable(e)

        log.info(
            f"Observed order {snapshot.order_name} for {shop}: "
            f"revenue={total_revenue} cost={total_cost} items={len(snapshot.items)}"
        )
        return snapshot

    def get_order_cogs(self, shop: str, order_id: str) -> OrderCOGS:
        snapshot = self._find(shop, order_id)
        if snapshot is None:
            raise NotFound(f"No COGS snapshot for order {order_id}", field="orderId")
        return snapshot

    def list_in_window(self, shop: str, window: DateWindow) -> List[OrderCOGS]:
        return (
            self.db.query(OrderCOGS)
            .options(selectinload(OrderCOGS.items))
            .filter(
                OrderCOGS.shop == shop,
                OrderCOGS.created_at >= window.start_at,
                OrderCOGS.created_at <= window.end_at,
            )
            .order_by(OrderCOGS.created_at.desc())
            .all()
        )

    def get_summary(self, shop: str, window: DateWindow) -> Dict[str, Any]:
        orders = self.list_in_window(shop, window)
        total_revenue = sum((to_decimal(o.total_revenue) for o in orders), ZERO)
        total_cost = sum((to_decimal(o.total_cost) for o in orders), ZERO)
        total_profit = sum((to_decimal(o.profit) for o in orders), ZERO)
        return {
            "window": window.to_dict(),
            "totalOrders": len(orders),
            "totalRevenue": float(total_revenue),
            "totalCost": float(total_cost),
            "totalProfit": float(total_profit),
            "averageProfit": float(safe_div(total_profit, Decimal(len(orders)))),
            "profitMargin": float(safe_div(total_profit, total_revenue) * 100),
        }

    async def backfill(self, shop: str, storefront, window: DateWindow) -> Dict[str, int]:
        """Observe every storefront order created in the window."""
        rows = await storefront.list_orders(window.start_at, window.end_at)
        observed = 0
        skipped = 0
        for row in rows:
            order = normalize_order(row)
            if not order.id or not order.line_items:
                skipped += 1
                continue
            await self.observe_order(shop, order)
            observed += 1
        log.info(f"Backfilled {observed} orders for {shop} ({skipped} skipped)")
        return {"fetched": len(rows), "observed": observed, "skipped": skipped}
