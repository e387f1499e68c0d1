"""
Order COGS API

Observe storefront orders into immutable cost snapshots and read them back.
"""
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends

from trackprofit.api.deps import get_shop, get_window
from trackprofit.errors import NotConfigured
from trackprofit.models.base import get_db
from trackprofit.services.cogs_service import COGSAttributionService, normalize_order
from trackprofit.services.credential_service import CredentialService
from trackprofit.utils.dates import DateWindow

router = APIRouter(prefix="/orders", tags=["orders"])


def _storefront_or_none(db, shop: str):
    try:
        return CredentialService(db).storefront_connector(shop)
    except NotConfigured:
        return None


@router.post("/observed")
async def observe_order(
    payload: Dict[str, Any] = Body(...),
    shop: str = Depends(get_shop),
    db = Depends(get_db)
):
    """
    Record the COGS snapshot of an order

    Observing the same order again returns the stored snapshot unchanged.
    """
    service = COGSAttributionService(db, storefront=_storefront_or_none(db, shop))
    snapshot = await service.observe_order(shop, normalize_order(payload))
    return {"success": True, "order": snapshot.to_dict()}


@router.post("/backfill")
async def backfill_orders(
    shop: str = Depends(get_shop),
    window: DateWindow = Depends(get_window),
    db = Depends(get_db)
):
    """Observe every storefront order created in the window"""
    storefront = CredentialService(db).storefront_connector(shop)
    service = COGSAttributionService(db, storefront=storefront)
    result = await service.backfill(shop, storefront, window)
    return {"success": True, "window": window.to_dict(), **result}


@router.get("/cogs/summary")
async def cogs_summary(
    shop: str = Depends(get_shop),
    window: DateWindow = Depends(get_window),
    db = Depends(get_db)
):
    return {"success": True, **COGSAttributionService(db).get_summary(shop, window)}


@router.get("/{order_id}/cogs")
async def get_order_cogs(order_id: str, shop: str = Depends(get_shop), db = Depends(get_db)):
    snapshot = COGSAttributionService(db).get_order_cogs(shop, order_id)
    return {"success": True, "order": snapshot.to_dict()}
