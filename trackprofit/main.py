"""
TrackProfit
Main FastAPI application
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from starlette.middleware.gzip import GZipMiddleware
from contextlib import asynccontextmanager

from trackprofit.config import get_settings
from trackprofit.utils.logger import log
from trackprofit import __version__

# Import routers
from trackprofit.api import health, ledger, shipments, orders, credentials, products, webhooks
from trackprofit.api.error_handlers import register_exception_handlers
from trackprofit.middleware.request_logging_middleware import RequestLoggingMiddleware

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    # Startup
    log.info(f"Starting {settings.app_name} v{__version__}")
    log.info(f"Environment: {settings.environment}")

    from trackprofit.models.base import init_db
    init_db()
    log.info("Database initialized")

    from trackprofit.scheduler import start_scheduler, stop_scheduler
    if settings.enable_scheduler:
        start_scheduler()

    yield

    # Shutdown
    stop_scheduler()
    log.info("Shutting down application")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=__version__,
    description="""
    Per-shop profit ledger

    Reconciles three sources into one day-by-day ledger:
    - Storefront orders, snapshotted with their cost of goods
    - Carrier shipments and their delivery / cancellation fees
    - Ad spend, converted into the store currency

    Derived metrics: MER, NetROAS, profit margin, delivery rate.
    """,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Access log, X-Robots-Tag, Cache-Control
app.add_middleware(RequestLoggingMiddleware)

# Gzip compression
app.add_middleware(GZipMiddleware, minimum_size=500)

register_exception_handlers(app)

# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(ledger.router)
app.include_router(shipments.router)
app.include_router(orders.router)
app.include_router(credentials.router)
app.include_router(products.router)
app.include_router(webhooks.router)


@app.get("/robots.txt", response_class=PlainTextResponse)
async def robots_txt():
    """Block all crawlers"""
    return "User-agent: *\nDisallow: /\n"


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "trackprofit.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug
    )
