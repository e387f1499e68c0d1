"""
Storefront webhook pipeline.

    verify HMAC -> normalize topic -> dispatch

Order topics feed the COGS service, product and inventory topics drop the
product cache, and uninstall removes the shop's storefront sessions.
"""
import base64
import hashlib
import hmac
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from trackprofit.errors import NotConfigured, UnknownTopic
from trackprofit.models.storefront_session import StorefrontSession
from trackprofit.services.cogs_service import COGSAttributionService, normalize_order
from trackprofit.services.credential_service import CredentialService
from trackprofit.services.product_service import ProductService
from trackprofit.utils.logger import log

ORDER_OBSERVE_TOPICS = ("orders/create", "orders/updated")
ORDER_CANCELLED_TOPIC = "orders/cancelled"
INVENTORY_TOPICS = ("inventory_items/update", "inventory_levels/update")
UNINSTALL_TOPIC = "app/uninstalled"
SUBSCRIPTION_TOPIC = "app_subscriptions/update"


def verify_webhook(data: bytes, hmac_header: Optional[str], api_secret: Optional[str]) -> bool:
    """Check the base64 HMAC-SHA256 signature the storefront puts on each webhook."""
    if not hmac_header or not api_secret:
        return False
    digest = hmac.new(api_secret.encode("utf-8"), data, hashlib.sha256).digest()
    computed = base64.b64encode(digest).decode("utf-8")
    return hmac.compare_digest(computed, hmac_header.strip())


def normalize_topic(topic: Optional[str]) -> str:
    """
    ``ORDERS_CREATE`` and ``orders/create`` both become ``orders/create``.
    """
    text = (topic or "").strip().lower()
    if text and "/" not in text and "_" in text:
        resource, action = text.rsplit("_", 1)
        text = f"{resource}/{action}"
    return text


class WebhookService:
    def __init__(self, db: Session, credentials: Optional[CredentialService] = None):
        self.db = db
        self.credentials = credentials or CredentialService(db)

    def _storefront(self, shop: str):
        try:
            return self.credentials.storefront_connector(shop)
        except NotConfigured:
            return None

    async def handle(self, shop: str, topic: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        normalized = normalize_topic(topic)
        log.info(f"Webhook {normalized} for {shop}")

        if normalized in ORDER_OBSERVE_TOPICS:
            order = normalize_order(payload)
            cogs = COGSAttributionService(self.db, storefront=self._storefront(shop))
            snapshot = await cogs.observe_order(shop, order)
            return {"topic": normalized, "action": "observed", "orderId": snapshot.order_id}

        if normalized == ORDER_CANCELLED_TOPIC:
            return {"topic": normalized, "action": "acknowledged"}

        if normalized.startswith("products/") or normalized in INVENTORY_TOPICS:
            source = "products" if normalized.startswith("products/") else "inventory"
            removed = ProductService(self.db, self.credentials).invalidate(shop, source)
            return {"topic": normalized, "action": "cache_invalidated", "removed": removed}

        if normalized == UNINSTALL_TOPIC:
            removed = (
                self.db.query(StorefrontSession)
                .filter(StorefrontSession.shop == shop)
                .delete(synchronize_session=False)
            )
            self.db.commit()
            log.info(f"Removed {removed} storefront sessions for uninstalled shop {shop}")
            return {"topic": normalized, "action": "sessions_deleted", "removed": removed}

        if normalized == SUBSCRIPTION_TOPIC:
            log.info(f"Subscription update for {shop}: {payload.get('app_subscription', payload)}")
            return {"topic": normalized, "action": "acknowledged"}

        raise UnknownTopic(f"Unhandled webhook topic '{topic}'", field="topic")
