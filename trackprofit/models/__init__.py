"""
Database models
"""
from trackprofit.models.base import Base, SessionLocal, engine, get_db, init_db
from trackprofit.models.credential import ProviderCredential
from trackprofit.models.order_cogs import OrderCOGS, OrderItem
from trackprofit.models.shipment import Shipment
from trackprofit.models.storefront_session import StorefrontSession
from trackprofit.models.app_cache import AppCache

__all__ = [
    "Base",
    "SessionLocal",
    "engine",
    "get_db",
    "init_db",
    "ProviderCredential",
    "OrderCOGS",
    "OrderItem",
    "Shipment",
    "StorefrontSession",
    "AppCache",
]
