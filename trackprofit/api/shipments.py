"""
Shipments API

Create parcels with the carrier, refresh their status and read them back.
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel

from trackprofit.api.deps import get_shop
from trackprofit.models.base import get_db
from trackprofit.services.carrier_gateway import CarrierGateway
from trackprofit.utils.dates import resolve_window

router = APIRouter(tags=["shipments"])


class RefreshRequest(BaseModel):
    """Trackings to refresh; empty means every stored shipment"""
    trackings: Optional[List[str]] = None


@router.post("/shipments")
async def create_shipment(
    fields: Dict[str, Any] = Body(...),
    shop: str = Depends(get_shop),
    db = Depends(get_db)
):
    """
    Create a parcel with the carrier and store it

    The shipment is only stored once the carrier accepted it.
    """
    result = await CarrierGateway(db).create_shipment(shop, fields)
    return {
        "success": True,
        "tracking": result["tracking"],
        "shipment": result["shipment"].to_dict(),
    }


@router.post("/shipments/refresh")
async def refresh_shipments(
    request: Optional[RefreshRequest] = None,
    shop: str = Depends(get_shop),
    db = Depends(get_db)
):
    trackings = request.trackings if request else None
    updated = await CarrierGateway(db).refresh(shop, trackings)
    return {
        "success": True,
        "updated": len(updated),
        "shipments": [shipment.to_dict() for shipment in updated],
    }


@router.get("/shipments")
async def list_shipments(
    status: Optional[int] = Query(None, description="Carrier statusId"),
    start: Optional[str] = Query(None),
    end: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    shop: str = Depends(get_shop),
    db = Depends(get_db)
):
    window = resolve_window(None, start, end) if (start or end) else None
    shipments = CarrierGateway(db).list_shipments(shop, status_id=status, window=window, limit=limit)
    return {
        "success": True,
        "count": len(shipments),
        "shipments": [shipment.to_dict() for shipment in shipments],
    }


@router.get("/shipments/stats")
async def shipment_stats(shop: str = Depends(get_shop), db = Depends(get_db)):
    """Counts by status plus delivered revenue and fee totals"""
    return {"success": True, **CarrierGateway(db).get_stats(shop)}


@router.get("/shipments/{tracking}")
async def get_shipment(tracking: str, shop: str = Depends(get_shop), db = Depends(get_db)):
    shipment = CarrierGateway(db).get_shipment(shop, tracking)
    return {"success": True, "shipment": shipment.to_dict()}


@router.get("/carrier/tariff")
async def get_tariff(
    refresh: bool = Query(False, description="Bypass the 1h tariff cache"),
    shop: str = Depends(get_shop),
    db = Depends(get_db)
):
    entries = await CarrierGateway(db).tariff(shop, force_refresh=refresh)
    return {
        "success": True,
        "count": len(entries),
        "tariff": [entry.to_dict() for entry in entries],
    }
