"""
Products API

Storefront products with variant unit costs, and unit cost updates.
"""
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from trackprofit.api.deps import get_shop
from trackprofit.models.base import get_db
from trackprofit.services.product_service import ProductService

router = APIRouter(tags=["products"])


class VariantCostRequest(BaseModel):
    """New unit cost in store currency"""
    cost: Optional[Any] = None


@router.get("/products")
async def list_products(
    refresh: bool = Query(False),
    shop: str = Depends(get_shop),
    db = Depends(get_db)
):
    products = await ProductService(db).list_products(shop, force_refresh=refresh)
    return {"success": True, "count": len(products), "products": products}


@router.post("/variants/{variant_id}/cost")
async def update_variant_cost(
    variant_id: str,
    request: VariantCostRequest,
    shop: str = Depends(get_shop),
    db = Depends(get_db)
):
    result = await ProductService(db).update_variant_cost(shop, variant_id, request.cost)
    return {"success": True, **result}
