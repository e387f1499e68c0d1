"""Per-shop TTL cache persisted in the app_cache table."""
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy.orm import Session

from trackprofit.models.app_cache import AppCache

_MISS = object()

# Which cache key prefixes depend on which storefront data source.
# Used by clear_for_source() so an inventory webhook doesn't drop the currency.
_SOURCE_PREFIXES: dict[str, list[str]] = {
    "products": ["products:"],
    "inventory": ["products:"],
    "shop": ["currency:"],
}


def cache_key(prefix: str, shop: str) -> str:
    return f"{prefix}:{shop}"


def get_cached(db: Session, key: str, seconds: Optional[int] = None):
    """Return cached value if still valid, else _MISS sentinel.

    ``seconds=None`` means the entry never expires.
    """
    row = db.get(AppCache, key)
    if row is None:
        return _MISS
    if seconds is not None and row.updated_at is not None:
        if datetime.utcnow() - row.updated_at >= timedelta(seconds=seconds):
            return _MISS
    return row.value


def set_cached(db: Session, key: str, value: Any):
    """Upsert a cache row and commit."""
    now = datetime.utcnow()
    row = db.get(AppCache, key)
    if row is None:
        db.add(AppCache(key=key, value=value, created_at=now, updated_at=now))
    else:
        row.value = value
        row.updated_at = now
    db.commit()


def clear_for_source(db: Session, shop: str, source: str) -> int:
    """Delete the shop's cache entries affected by a data source change."""
    prefixes = _SOURCE_PREFIXES.get(source)
    if prefixes is None:
        prefixes = [p for values in _SOURCE_PREFIXES.values() for p in values]
    keys = [f"{prefix}{shop}" for prefix in prefixes]
    removed = (
        db.query(AppCache)
        .filter(AppCache.key.in_(keys))
        .delete(synchronize_session=False)
    )
    db.commit()
    return removed
