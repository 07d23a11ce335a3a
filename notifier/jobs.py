import logging
from notifier.scheduler import init_scheduler, schedule_task, shutdown_scheduler, cron_trigger
from notifier.listeners import EventListener
from notifier.triggers import TIME_TRIGGERS, DOCUMENT_TRIGGERS
from notifier import jobs_state

logger = logging.getLogger(__name__)

_listeners = []


def _run_time_trigger(name, run, engine):
    logger.info("Running %s job...", name)
    result = jobs_state.run_job(name, run, engine)
    logger.info("%s finished: %s notification(s)", name, (result or {}).get('notificationCount', 0))
    return result


def setup_periodic_tasks(engine, config, scheduler=None):
    """Register every time trigger with its own cron schedule and job id."""
    scheduler = scheduler or init_scheduler(config.get('SCHEDULER_TIMEZONE', 'UTC'))
    for trigger in TIME_TRIGGERS:
        expression = config.get(trigger.cron_key)
        if not expression:
            logger.info("No schedule configured for %s; not registering", trigger.name)
            continue
        tz = config.get(trigger.timezone_key) or config.get('SCHEDULER_TIMEZONE', 'UTC')
        schedule_task(
            _run_time_trigger,
            cron_trigger(expression, tz),
            trigger.name,
            args=[trigger.name, trigger.run, engine],
            scheduler=scheduler,
        )
        jobs_state.refresh_next_run(trigger.name)
    return scheduler


def start_event_listeners(engine, client):
    listener = EventListener(engine, DOCUMENT_TRIGGERS)
    listener.start(client)
    _listeners.append(listener)
    return listener


def stop_background_tasks(engine):
    """Cancel in-flight runs, then stop listeners and the scheduler."""
    engine.cancel()
    while _listeners:
        _listeners.pop().stop()
    shutdown_scheduler(wait=True)
