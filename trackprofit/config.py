"""
Configuration management for TrackProfit
"""
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "TrackProfit"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Database
    database_url: str = "sqlite:///./trackprofit.db"

    # Storefront (Shopify Admin API)
    shopify_api_version: str = "2024-01"
    shopify_api_secret: Optional[str] = None  # Enables webhook HMAC verification
    shopify_orders_page_size: int = 20
    shopify_orders_page_delay_ms: int = 100
    shopify_products_page_size: int = 50
    shopify_products_page_delay_ms: int = 250

    # Ads (Facebook Graph API)
    facebook_graph_url: str = "https://graph.facebook.com"
    facebook_api_version: str = "v18.0"
    facebook_app_id: Optional[str] = None
    facebook_app_secret: Optional[str] = None
    facebook_token_lifetime_days: int = 60
    facebook_directory_attempts: int = 3
    facebook_directory_retry_delay: float = 1.0  # seconds between directory fetches on save

    # Carrier (ZRExpress / Procolis)
    carrier_base_url: str = "https://procolis.com/api_v1"
    carrier_timeout_seconds: float = 30.0

    # Adapter retries
    adapter_max_attempts: int = 3
    adapter_base_delay: float = 1.0
    adapter_max_delay: float = 30.0

    # Caches
    directory_cache_ttl_seconds: int = 3600
    tariff_cache_ttl_seconds: int = 3600
    product_cache_ttl_seconds: int = 900

    # Ledger
    ledger_timeout_seconds: float = 30.0
    default_currency: str = "DZD"
    max_history_months: int = 37

    # Scheduler
    enable_scheduler: bool = True
    carrier_refresh_interval_minutes: int = 60

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
