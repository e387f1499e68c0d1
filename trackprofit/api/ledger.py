"""
Profit Ledger API

Per-day revenue, COGS, shipping/cancel fees and ad spend for one shop,
with MER, NetROAS, margin and delivery rate on top.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from trackprofit.api.deps import get_shop, get_window
from trackprofit.models.base import get_db
from trackprofit.services.reconciliation_service import ProfitReconciliationService, parse_exchange_rate
from trackprofit.utils.dates import DateWindow

router = APIRouter(tags=["ledger"])


@router.get("/ledger")
async def get_ledger(
    shop: str = Depends(get_shop),
    window: DateWindow = Depends(get_window),
    ad_account_id: Optional[str] = Query(None, alias="adAccountId"),
    exchange_rate: Optional[str] = Query(None, alias="exchangeRate", description="Ad currency -> store currency"),
    db = Depends(get_db)
):
    """
    Profit ledger for the window

    Providers that are missing or failing contribute zero and are listed
    under ``diagnostics``.
    """
    rate = parse_exchange_rate(exchange_rate)
    service = ProfitReconciliationService(db)
    ledger = await service.compute(shop, window, exchange_rate=rate, ad_account_id=ad_account_id)
    return {"success": True, **ledger}
