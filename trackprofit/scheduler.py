"""
Scheduler for background carrier refreshes

Uses APScheduler to pull shipment status from the carrier for every shop
with saved carrier credentials.
"""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
import time

from trackprofit.models.base import SessionLocal
from trackprofit.models.credential import PROVIDER_CARRIER
from trackprofit.services.carrier_gateway import CarrierGateway
from trackprofit.services.credential_service import CredentialService
from trackprofit.errors import TrackProfitError
from trackprofit.config import get_settings
from trackprofit.utils.logger import log

settings = get_settings()
scheduler = AsyncIOScheduler()


async def refresh_carrier_shipments(session_factory=SessionLocal) -> dict:
    """
    Refresh every shop's shipments, one shop at a time.

    A failing shop is logged and skipped.
    """
    start = time.time()
    results = {}
    db = session_factory()
    try:
        shops = CredentialService(db).shops_with(PROVIDER_CARRIER)
        for shop in shops:
            try:
                updated = await CarrierGateway(db).refresh(shop)
                results[shop] = len(updated)
            except TrackProfitError as e:
                log.error(f"Carrier refresh failed for {shop}: {e.code} {e.message}")
                results[shop] = e.code
            except Exception as e:
                db.rollback()
                log.exception(f"Unexpected carrier refresh error for {shop}: {e}")
                results[shop] = "internal_error"
    finally:
        db.close()

    log.info(f"Carrier refresh finished for {len(results)} shops in {time.time() - start:.1f}s")
    return results


def setup_scheduler():
    """
    Configure jobs.

    - Carrier status: every ``carrier_refresh_interval_minutes``
    """
    scheduler.add_job(
        refresh_carrier_shipments,
        trigger=IntervalTrigger(minutes=settings.carrier_refresh_interval_minutes),
        id='carrier_refresh',
        name='Carrier Shipment Status Refresh',
        replace_existing=True,
        max_instances=1
    )


def start_scheduler():
    """Start the scheduler"""
    setup_scheduler()
    scheduler.start()
    log.info("Scheduler started")


def stop_scheduler():
    """Stop the scheduler"""
    if scheduler.running:
        scheduler.shutdown()
        log.info("Scheduler stopped")


def get_scheduled_jobs() -> list:
    jobs = []
    for job in scheduler.get_jobs():
        next_run = job.next_run_time
        jobs.append({
            'id': job.id,
            'name': job.name,
            'next_run': next_run.isoformat() if next_run else None,
            'trigger': str(job.trigger)
        })
    return jobs
