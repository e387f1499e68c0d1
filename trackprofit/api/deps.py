"""
Shared request dependencies: tenant and date window.
"""
from typing import Optional

from fastapi import Header, Query

from trackprofit.config import get_settings
from trackprofit.errors import InvalidInput
from trackprofit.utils.dates import DateWindow, resolve_window

settings = get_settings()


def get_shop(
    x_shopify_shop_domain: Optional[str] = Header(None, alias="X-Shopify-Shop-Domain"),
    shop: Optional[str] = Query(None, description="Shop domain when the header is absent"),
) -> str:
    """Tenant for the request: shop header first, then ``?shop=``."""
    value = (x_shopify_shop_domain or shop or "").strip().lower()
    if not value:
        raise InvalidInput("shop is required (X-Shopify-Shop-Domain header or ?shop=)", field="shop")
    return value


def get_window(
    preset: Optional[str] = Query(None, description="today, yesterday, last_7_days, last_30_days, ..."),
    start: Optional[str] = Query(None, description="YYYY-MM-DD"),
    end: Optional[str] = Query(None, description="YYYY-MM-DD"),
) -> DateWindow:
    return resolve_window(preset, start, end, max_months=settings.max_history_months)
