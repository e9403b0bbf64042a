"""AdPilot — Scheduler Jobs.

APScheduler interval job that refreshes the platform-side status of every
published ad and stores it on the draft record.
"""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlmodel import Session, select

from adpilot.config import settings
from adpilot.database import session_scope
from adpilot.models.publish_models import CampaignRecord, DraftRecord
from adpilot.publishing.status import StatusTracker
from adpilot.core.logging import get_logger

logger = get_logger("scheduler")

scheduler = AsyncIOScheduler()


async def sync_campaign_statuses(session: Session, tracker: StatusTracker | None = None) -> int:
    """Refresh live status for all active campaigns. Returns ads updated."""
    tracker = tracker or StatusTracker(session)
    campaign_ids = session.exec(
        select(CampaignRecord.id).where(CampaignRecord.published_status == "active")
    ).all()

    updated = 0
    for campaign_id in campaign_ids:
        status = await tracker.get_status(campaign_id, live=True)
        if status.stale:
            logger.warning(
                f"Status sync skipped: {status.live_error}",
                extra={"campaign_id": campaign_id},
            )
            continue
        for ad in status.ads:
            record = session.get(DraftRecord, ad.draft_id)
            if record is None:
                continue
            record.effective_status = ad.effective_status
            if ad.ad_status in ("active", "paused"):
                record.ad_status = ad.ad_status
            session.add(record)
            updated += 1
        session.commit()
    return updated


async def status_sync_job():
    """Scheduled entry point."""
    logger.info("Scheduled status sync starting...")
    try:
        with session_scope() as session:
            updated = await sync_campaign_statuses(session)
        logger.info(f"Status sync complete. {updated} ad(s) refreshed")
    except Exception as e:
        logger.error(f"Scheduled status sync failed: {e}")


def start_scheduler():
    """Configure and start the scheduler."""
    if not settings.scheduler_enabled:
        logger.info("Scheduler disabled via config")
        return

    scheduler.add_job(
        status_sync_job,
        "interval",
        minutes=settings.status_sync_minutes,
        id="status_sync",
        replace_existing=True,
        misfire_grace_time=600,
    )
    scheduler.start()
    logger.info(f"Scheduler started. Status sync every {settings.status_sync_minutes} min")


def stop_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
