"""
Provider credentials API

Save, test and remove ads and carrier credentials, and read the ad-account
directory and campaign reports they unlock. Secrets are never returned.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query

from trackprofit.api.deps import get_shop, get_window
from trackprofit.models.base import get_db
from trackprofit.services.credential_service import CredentialService
from trackprofit.services.reconciliation_service import ProfitReconciliationService, parse_exchange_rate
from trackprofit.utils.dates import DateWindow

router = APIRouter(tags=["credentials"])


@router.post("/credentials/{provider}")
async def save_credentials(
    provider: str,
    payload: Dict[str, Any] = Body(...),
    shop: str = Depends(get_shop),
    db = Depends(get_db)
):
    """
    Validate credentials against the provider, then store them

    - ads: ``{"accessToken"}``; also requires at least one ad account
    - carrier: ``{"token", "key"}``
    """
    credential = await CredentialService(db).save(shop, provider, payload)
    return {"success": True, "credential": credential.to_status()}


@router.get("/credentials/{provider}")
async def get_credentials(provider: str, shop: str = Depends(get_shop), db = Depends(get_db)):
    return {"success": True, "credential": CredentialService(db).status(shop, provider)}


@router.delete("/credentials/{provider}")
async def delete_credentials(provider: str, shop: str = Depends(get_shop), db = Depends(get_db)):
    CredentialService(db).delete(shop, provider)
    return {"success": True, "provider": provider, "deleted": True}


@router.post("/credentials/{provider}/test")
async def test_credentials(provider: str, shop: str = Depends(get_shop), db = Depends(get_db)):
    """Revalidate stored secrets against the provider"""
    status = await CredentialService(db).test(shop, provider)
    return {"success": True, "credential": status}


@router.get("/ads/accounts")
async def get_ad_accounts(
    refresh: bool = Query(False, description="Bypass the 1h directory cache"),
    shop: str = Depends(get_shop),
    db = Depends(get_db)
):
    accounts = await CredentialService(db).get_ad_accounts(shop, force_refresh=refresh)
    return {"success": True, "count": len(accounts), "accounts": accounts}


@router.get("/ads/campaigns")
async def get_campaigns(
    ad_account_id: str = Query(..., alias="adAccountId"),
    exchange_rate: Optional[str] = Query(None, alias="exchangeRate"),
    shop: str = Depends(get_shop),
    window: DateWindow = Depends(get_window),
    db = Depends(get_db)
):
    """Campaign report for one ad account, amounts in store currency"""
    rate = parse_exchange_rate(exchange_rate)
    report = await ProfitReconciliationService(db).campaign_report(shop, ad_account_id, window, rate)
    return {"success": True, **report}


@router.get("/auth/ads/callback")
async def ads_oauth_callback(
    code: Optional[str] = Query(None),
    redirect_uri: Optional[str] = Query(None),
    shop: str = Depends(get_shop),
    db = Depends(get_db)
):
    """OAuth redirect target: exchange the code and save the long-lived token"""
    credential = await CredentialService(db).save_ads_credentials_from_code(shop, code, redirect_uri)
    return {"success": True, "credential": credential.to_status()}
