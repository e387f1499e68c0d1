"""
Health check and status endpoints
"""
from fastapi import APIRouter
from datetime import datetime
from trackprofit.config import get_settings
from trackprofit import __version__

settings = get_settings()

router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": __version__
    }


@router.get("/status")
async def get_status():
    """Get system status"""
    return {
        "app_name": settings.app_name,
        "version": __version__,
        "environment": settings.environment,
        "features": {
            "scheduler": settings.enable_scheduler,
            "webhook_verification": bool(settings.shopify_api_secret),
            "ads_oauth": bool(settings.facebook_app_id and settings.facebook_app_secret),
        },
        "defaults": {
            "currency": settings.default_currency,
            "max_history_months": settings.max_history_months,
        },
        "timestamp": datetime.utcnow().isoformat()
    }
