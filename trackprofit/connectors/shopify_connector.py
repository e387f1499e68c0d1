"""
Shopify Admin GraphQL connector (ShopifyAPI).

Orders and products are paged by cursor with a pause between pages to stay
under the GraphQL cost limit. The library keeps the active session on a
class attribute, so every call runs inside ``Session.temp`` under a lock
and off the event loop.
"""
import asyncio
import http.client
import json
import threading
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from urllib.error import HTTPError, URLError

import shopify

from trackprofit.config import get_settings
from trackprofit.connectors.base_connector import BaseConnector
from trackprofit.errors import AuthFailed, InvalidInput, NotFound, TransientError
from trackprofit.utils.logger import log
from trackprofit.utils.money import to_decimal, to_int

settings = get_settings()

_SESSION_LOCK = threading.Lock()

ORDERS_QUERY = """
query Orders($first: Int!, $after: String, $query: String) {
  orders(first: $first, after: $after, query: $query, sortKey: CREATED_AT, reverse: true) {
    pageInfo { hasNextPage endCursor }
    edges {
      node {
        id
        name
        createdAt
        totalPriceSet { shopMoney { amount } }
        lineItems(first: 20) {
          edges {
            node {
              title
              quantity
              originalUnitPriceSet { shopMoney { amount } }
              product { id }
              variant { id inventoryItem { unitCost { amount } } }
            }
          }
        }
      }
    }
  }
}
"""

PRODUCTS_QUERY = """
query Products($first: Int!, $after: String) {
  products(first: $first, after: $after) {
    pageInfo { hasNextPage endCursor }
    edges {
      node {
        id
        title
        status
        variants(first: 50) {
          edges {
            node {
              id
              title
              sku
              price
              inventoryQuantity
              inventoryItem { id unitCost { amount } }
            }
          }
        }
      }
    }
  }
}
"""

VARIANT_COST_QUERY = """
query VariantCost($id: ID!) {
  productVariant(id: $id) {
    id
    inventoryItem { id unitCost { amount } }
  }
}
"""

INVENTORY_ITEM_UPDATE = """
mutation InventoryItemUpdate($id: ID!, $input: InventoryItemInput!) {
  inventoryItemUpdate(id: $id, input: $input) {
    inventoryItem { id unitCost { amount } }
    userErrors { field message }
  }
}
"""

SHOP_CURRENCY_QUERY = "query { shop { currencyCode } }"


def to_gid(resource: str, value) -> str:
    """Accept numeric ids or full GIDs."""
    text = str(value or "").strip()
    if not text:
        raise InvalidInput(f"{resource} id is required", field="id")
    if text.startswith("gid://"):
        return text
    return f"gid://shopify/{resource}/{text}"


def from_gid(value) -> Optional[str]:
    if value is None:
        return None
    return str(value).rsplit("/", 1)[-1]


def _amount(money_set: Optional[Dict[str, Any]]) -> Decimal:
    return to_decimal(((money_set or {}).get("shopMoney") or {}).get("amount"))


class ShopifyConnector(BaseConnector):
    """Connector for the Shopify Admin API of one shop."""

    def __init__(self, shop: str, access_token: str, api_version: Optional[str] = None):
        super().__init__("storefront")
        self.shop = shop
        self.access_token = access_token
        self.api_version = api_version or settings.shopify_api_version

    def _execute_sync(self, query: str, variables: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        try:
            with _SESSION_LOCK:
                with shopify.Session.temp(self.shop, self.api_version, self.access_token):
                    raw = shopify.GraphQL().execute(query, variables=variables)
        except HTTPError as e:
            error = self._normalize_status(e.code, str(e.reason))
            raise error or TransientError(f"Shopify HTTP {e.code}", provider=self.name)
        except URLError as e:
            raise TransientError(f"Shopify unreachable: {e.reason}", provider=self.name)
        except (OSError, TimeoutError, http.client.HTTPException) as e:
            raise TransientError(f"Shopify connection failed: {e!r}", provider=self.name)

        try:
            payload = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
        except ValueError:
            raise TransientError("Shopify returned a non-JSON body", provider=self.name)
        if not isinstance(payload, dict):
            raise TransientError("Shopify returned an unexpected body", provider=self.name)
        errors = payload.get("errors")
        if errors:
            codes = {((err or {}).get("extensions") or {}).get("code") for err in errors if isinstance(err, dict)}
            if "THROTTLED" in codes:
                raise TransientError("Shopify GraphQL throttled", provider=self.name)
            if "ACCESS_DENIED" in codes:
                raise AuthFailed("Shopify denied access for this query", provider=self.name)
            raise InvalidInput(f"Shopify GraphQL error: {errors}", provider=self.name)
        return payload.get("data") or {}

    async def _execute(self, query: str, variables: Optional[Dict[str, Any]] = None, operation_name: str = "graphql") -> Dict[str, Any]:
        if not self.access_token:
            raise AuthFailed(f"No storefront session for {self.shop}", provider=self.name)
        return await self._retry_operation(
            lambda: asyncio.to_thread(self._execute_sync, query, variables),
            operation_name=operation_name,
        )

    async def get_shop_currency(self) -> str:
        data = await self._execute(SHOP_CURRENCY_QUERY, operation_name="get_shop_currency")
        return ((data.get("shop") or {}).get("currencyCode")) or settings.default_currency

    async def list_orders(self, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        """Orders created in [start, end], normalized for COGS observation."""
        search = f"created_at:>='{start.isoformat()}Z' AND created_at:<='{end.isoformat()}Z'"
        orders: List[Dict[str, Any]] = []
        after = None
        page = 0
        while True:
            page += 1
            data = await self._execute(
                ORDERS_QUERY,
                {"first": settings.shopify_orders_page_size, "after": after, "query": search},
                operation_name="list_orders",
            )
            connection = data.get("orders") or {}
            for edge in connection.get("edges") or []:
                orders.append(self._normalize_order(edge["node"]))

            page_info = connection.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                break
            after = page_info.get("endCursor")
            await asyncio.sleep(settings.shopify_orders_page_delay_ms / 1000)

        log.info(f"Fetched {len(orders)} orders for {self.shop} in {page} pages")
        return orders

    @staticmethod
    def _normalize_order(node: Dict[str, Any]) -> Dict[str, Any]:
        items = []
        for edge in (node.get("lineItems") or {}).get("edges") or []:
            item = edge["node"]
            variant = item.get("variant") or {}
            unit_cost = ((variant.get("inventoryItem") or {}).get("unitCost") or {}).get("amount")
            items.append({
                "productId": from_gid((item.get("product") or {}).get("id")),
                "variantId": from_gid(variant.get("id")),
                "title": item.get("title"),
                "quantity": to_int(item.get("quantity")),
                "price": _amount(item.get("originalUnitPriceSet")),
                "unitCost": to_decimal(unit_cost) if unit_cost is not None else None,
            })
        return {
            "id": from_gid(node.get("id")),
            "name": node.get("name"),
            "createdAt": node.get("createdAt"),
            "totalPrice": _amount(node.get("totalPriceSet")),
            "lineItems": items,
        }

    async def list_products(self) -> List[Dict[str, Any]]:
        products: List[Dict[str, Any]] = []
        after = None
        while True:
            data = await self._execute(
                PRODUCTS_QUERY,
                {"first": settings.shopify_products_page_size, "after": after},
                operation_name="list_products",
            )
            connection = data.get("products") or {}
            for edge in connection.get("edges") or []:
                node = edge["node"]
                variants = []
                for variant_edge in (node.get("variants") or {}).get("edges") or []:
                    variant = variant_edge["node"]
                    inventory_item = variant.get("inventoryItem") or {}
                    unit_cost = (inventory_item.get("unitCost") or {}).get("amount")
                    variants.append({
                        "id": from_gid(variant.get("id")),
                        "title": variant.get("title"),
                        "sku": variant.get("sku"),
                        "price": float(to_decimal(variant.get("price"))),
                        "inventoryQuantity": variant.get("inventoryQuantity"),
                        "unitCost": float(to_decimal(unit_cost)) if unit_cost is not None else None,
                    })
                products.append({
                    "id": from_gid(node.get("id")),
                    "title": node.get("title"),
                    "status": node.get("status"),
                    "variants": variants,
                })

            page_info = connection.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                break
            after = page_info.get("endCursor")
            await asyncio.sleep(settings.shopify_products_page_delay_ms / 1000)

        log.info(f"Fetched {len(products)} products for {self.shop}")
        return products

    async def _variant_inventory_item(self, variant_id) -> Dict[str, Any]:
        data = await self._execute(
            VARIANT_COST_QUERY,
            {"id": to_gid("ProductVariant", variant_id)},
            operation_name="get_variant",
        )
        variant = data.get("productVariant")
        if not variant:
            raise NotFound(f"Variant {variant_id} not found", field="variantId", provider=self.name)
        return variant.get("inventoryItem") or {}

    async def get_variant_unit_cost(self, variant_id) -> Optional[Decimal]:
        inventory_item = await self._variant_inventory_item(variant_id)
        amount = (inventory_item.get("unitCost") or {}).get("amount")
        return to_decimal(amount) if amount is not None else None

    async def update_variant_unit_cost(self, variant_id, cost: Decimal) -> Decimal:
        """Write the unit cost on the variant's inventory item."""
        inventory_item = await self._variant_inventory_item(variant_id)
        if not inventory_item.get("id"):
            raise NotFound(f"Variant {variant_id} has no inventory item", field="variantId", provider=self.name)

        data = await self._execute(
            INVENTORY_ITEM_UPDATE,
            {"id": inventory_item["id"], "input": {"cost": str(cost)}},
            operation_name="update_variant_cost",
        )
        result = data.get("inventoryItemUpdate") or {}
        user_errors = result.get("userErrors") or []
        if user_errors:
            first = user_errors[0]
            field = ".".join(first.get("field") or []) or "cost"
            raise InvalidInput(first.get("message") or "Cost update rejected", field=field, provider=self.name)

        updated = ((result.get("inventoryItem") or {}).get("unitCost") or {}).get("amount")
        log.info(f"Updated unit cost for variant {variant_id} on {self.shop}")
        return to_decimal(updated, default=cost)
