import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from notifier.errors import ConfigurationError

logger = logging.getLogger(__name__)

_scheduler = None


def init_scheduler(timezone='UTC'):
    global _scheduler
    if _scheduler is not None:
        return _scheduler
    _scheduler = BackgroundScheduler(timezone=timezone)
    _scheduler.start()
    logger.info("Background Scheduler initialized.")
    return _scheduler


def get_scheduler():
    return _scheduler


def shutdown_scheduler(wait=True):
    global _scheduler
    if _scheduler is None:
        return
    _scheduler.shutdown(wait=wait)
    _scheduler = None
    logger.info("Background Scheduler stopped.")


def cron_trigger(expression, timezone):
    """Build a trigger from a five-field crontab string.

    Use day names in the weekday field: APScheduler counts weekdays from
    Monday = 0, unlike classic cron.
    """
    try:
        return CronTrigger.from_crontab(expression, timezone=timezone)
    except (ValueError, LookupError) as exc:
        raise ConfigurationError(f"Invalid schedule {expression!r} ({timezone}): {exc}") from exc


def schedule_task(func, trigger, task_id, args=None, replace=True, scheduler=None):
    scheduler = scheduler or _scheduler
    if not scheduler:
        raise RuntimeError("Scheduler not initialized")

    # One instance per trigger: runs of the same job never overlap
    job = scheduler.add_job(
        func,
        trigger,
        args=args or [],
        id=task_id,
        replace_existing=replace,
        max_instances=1,
        coalesce=True,
    )
    logger.info("Scheduled task '%s' with trigger: %s", task_id, trigger)
    return job
