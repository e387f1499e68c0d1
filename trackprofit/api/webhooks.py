"""
Storefront webhooks

Verifies the HMAC signature when an API secret is configured, then hands
the payload to the webhook pipeline.
"""
import json
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from trackprofit.config import get_settings
from trackprofit.errors import AuthFailed, InvalidInput
from trackprofit.models.base import get_db
from trackprofit.services.webhook_service import WebhookService, verify_webhook
from trackprofit.utils.logger import log

router = APIRouter(tags=["webhooks"])


@router.post("/webhooks")
async def receive_webhook(
    request: Request,
    x_shopify_topic: Optional[str] = Header(None, alias="X-Shopify-Topic"),
    x_shopify_shop_domain: Optional[str] = Header(None, alias="X-Shopify-Shop-Domain"),
    x_shopify_hmac_sha256: Optional[str] = Header(None, alias="X-Shopify-Hmac-Sha256"),
    db = Depends(get_db)
):
    settings = get_settings()
    body = await request.body()

    if settings.shopify_api_secret and not verify_webhook(body, x_shopify_hmac_sha256, settings.shopify_api_secret):
        log.warning(f"Invalid webhook HMAC from {x_shopify_shop_domain}")
        raise AuthFailed("Invalid webhook signature", provider="storefront")

    shop = (x_shopify_shop_domain or "").strip().lower()
    if not shop:
        raise InvalidInput("X-Shopify-Shop-Domain header is required", field="shop")
    if not x_shopify_topic:
        raise InvalidInput("X-Shopify-Topic header is required", field="topic")

    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        raise InvalidInput("Webhook body is not valid JSON", field="body")

    result = await WebhookService(db).handle(shop, x_shopify_topic, payload if isinstance(payload, dict) else {})
    return {"success": True, **result}
