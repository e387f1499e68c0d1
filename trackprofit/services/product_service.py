"""
Product catalogue and variant unit costs.

The storefront product list is cached per shop in ``app_cache``; cost
updates and product/inventory webhooks drop that cache.
"""
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from trackprofit.config import get_settings
from trackprofit.errors import InvalidInput
from trackprofit.services.credential_service import CredentialService
from trackprofit.utils.cache import _MISS, cache_key, clear_for_source, get_cached, set_cached
from trackprofit.utils.logger import log
from trackprofit.utils.money import to_decimal

settings = get_settings()


def parse_cost(value):
    cost = to_decimal(value, default=None)
    if cost is None or cost < 0:
        raise InvalidInput("cost must be a non-negative number", field="cost")
    return cost


class ProductService:
    def __init__(self, db: Session, credentials: Optional[CredentialService] = None):
        self.db = db
        self.credentials = credentials or CredentialService(db)

    async def list_products(self, shop: str, force_refresh: bool = False) -> List[Dict[str, Any]]:
        key = cache_key("products", shop)
        if not force_refresh:
            cached = get_cached(self.db, key, settings.product_cache_ttl_seconds)
            if cached is not _MISS:
                return cached

        products = await self.credentials.storefront_connector(shop).list_products()
        set_cached(self.db, key, products)
        return products

    async def update_variant_cost(self, shop: str, variant_id: str, cost) -> Dict[str, Any]:
        amount = parse_cost(cost)
        if not str(variant_id or "").strip():
            raise InvalidInput("variant id is required", field="variantId")

        updated = await self.credentials.storefront_connector(shop).update_variant_unit_cost(variant_id, amount)
        self.invalidate(shop, "products")
        return {"variantId": str(variant_id), "unitCost": float(updated)}

    def invalidate(self, shop: str, source: str) -> int:
        removed = clear_for_source(self.db, shop, source)
        if removed:
            log.info(f"Dropped {removed} cached {source} entries for {shop}")
        return removed
