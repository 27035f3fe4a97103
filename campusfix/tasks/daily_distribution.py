"""Daily Distribution Scheduler - creates the day's cleaning tasks and watches SLAs.

Runs the recurring-task distributor every morning (06:00 by default) and
checks open tickets for SLA breaches on a fixed interval.
"""

import logging
from datetime import date
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from campusfix.config import settings
from campusfix.database import async_session_maker
from campusfix.schemas.recurring_task import DistributionSummary
from campusfix.services.notification_sink import DatabaseNotificationSink
from campusfix.services.sla_monitor import check_sla_breaches
from campusfix.services.task_distributor import distribute_daily_tasks

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None


def get_scheduler() -> AsyncIOScheduler:
    """Get or create the scheduler instance."""
    global scheduler
    if scheduler is None:
        scheduler = AsyncIOScheduler()
    return scheduler


async def run_daily_distribution():
    """Main job: distribute today's cleaning tasks."""
    logger.info("Starting daily task distribution...")
    try:
        summary = await distribute_daily_tasks(
            date.today(), sink=DatabaseNotificationSink(async_session_maker)
        )
        logger.info(f"Daily distribution complete: {summary.message}")
        for error in summary.errors:
            logger.warning(f"Daily distribution: {error}")
    except Exception as e:
        logger.error(f"Fatal error in daily distribution: {e}", exc_info=True)


async def run_sla_check():
    try:
        await check_sla_breaches(sink=DatabaseNotificationSink(async_session_maker))
    except Exception as e:
        logger.error(f"SLA check failed: {e}", exc_info=True)


def start_scheduler():
    """Start the scheduler with all configured jobs."""
    global scheduler

    scheduler = get_scheduler()

    if settings.DISTRIBUTION_ENABLED:
        scheduler.add_job(
            run_daily_distribution,
            CronTrigger(hour=settings.DISTRIBUTION_CRON_HOUR, minute=settings.DISTRIBUTION_CRON_MINUTE),
            id="daily_distribution",
            name="Distribute daily cleaning tasks",
            replace_existing=True,
        )

    if settings.SLA_CHECK_ENABLED:
        scheduler.add_job(
            run_sla_check,
            IntervalTrigger(minutes=settings.SLA_CHECK_INTERVAL_MINUTES),
            id="sla_check",
            name="Escalate SLA breaches",
            replace_existing=True,
        )

    if not scheduler.running:
        scheduler.start()
        logger.info("Distribution scheduler started")
        logger.info("Jobs scheduled:")
        for job in scheduler.get_jobs():
            logger.info(f"  - {job.name}: {job.trigger}")


def stop_scheduler():
    """Stop the scheduler."""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Distribution scheduler stopped")


async def run_distribution_now(target_date: Optional[date] = None) -> DistributionSummary:
    """Manually trigger distribution (for admin use)."""
    logger.info(f"Manual distribution triggered for {target_date or date.today()}")
    return await distribute_daily_tasks(target_date, sink=DatabaseNotificationSink(async_session_maker))
