"""Entry points that assemble inputs and invoke the dispatch engine.

Time triggers run on the scheduler; document triggers run from the
snapshot listener with before/after copies of an event document. Every
runner takes the engine as its first argument and returns a JSON-friendly
summary.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Callable

from google.api_core.exceptions import FailedPrecondition

from notifier import firestore_dao as dao
from notifier.firestore_models import Event, EVENT_CANCELLED, EVENT_COMPLETED
from notifier.listeners import CREATE, DELETE, UPDATE, DocumentTrigger
from notifier.services import kpi, messages
from notifier.services.dedup import DedupKey

logger = logging.getLogger(__name__)

NOTE_MISSING_INDEX = 'missing_index'


@dataclass(frozen=True)
class TimeTrigger:
    name: str
    cron_key: str
    timezone_key: str
    run: Callable


def _day_window(moment, offset_days=0):
    """[start, end) of the UTC calendar day `offset_days` after `moment`."""
    day = moment.astimezone(timezone.utc).date() + timedelta(days=offset_days)
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def _events(docs):
    return [Event.from_dict(doc, doc['id']) for doc in docs]


def tolerate_missing_index(engine, trigger_name, func, *args):
    """Run a scheduled query, downgrading a missing composite index to an alert.

    Any other error propagates so the job is reported as failed.
    """
    try:
        result = func(*args)
    except FailedPrecondition as exc:
        if 'index' not in str(exc).lower():
            raise
        logger.warning('%s skipped: Firestore index missing: %s', trigger_name, exc)
        try:
            dao.record_missing_index(engine.store, trigger_name, str(exc))
        except Exception:
            logger.warning('Could not record missing-index alert for %s', trigger_name, exc_info=True)
        return None, NOTE_MISSING_INDEX
    try:
        dao.resolve_missing_index(engine.store, trigger_name)
    except Exception:
        logger.debug('Could not resolve missing-index alert for %s', trigger_name, exc_info=True)
    return result, None


def _skipped(note):
    return {'success': True, 'skipped': True, 'note': note, 'notificationCount': 0}


# ---------------------------------------------------------------------------
# Time triggers
# ---------------------------------------------------------------------------

def run_scheduled_kpi_reminders(engine):
    result = kpi.run_weekly_kpi_reminders(engine)
    kpi.write_run_log(engine, result, initiated_by='system', run_type='scheduled')
    return result


def run_owner_reminders(engine):
    """Remind creators, owners and assignees of events starting tomorrow."""
    now = engine.now()
    start, end = _day_window(now, 1)
    docs, note = tolerate_missing_index(
        engine, 'owner_reminders', dao.get_events_starting_between, engine.store, start, end)
    if note:
        return _skipped(note)

    events = [e for e in _events(docs) if e.is_open()]
    sent = 0
    for event in events:
        recipients = engine.router.event_owners(event)
        if not recipients:
            continue
        summary = engine.notify(
            recipients,
            messages.owner_reminder(event),
            dedup_key=DedupKey.daily(messages.OWNER_REMINDER, start, event.id),
            dedup_meta={'eventId': event.id},
        )
        sent += summary['successCount']
        if summary['successCount']:
            try:
                dao.stamp_event_notified(engine.store, event.id)
            except Exception:
                logger.warning('Could not stamp lastNotificationAt on event %s', event.id, exc_info=True)

    logger.info('Owner reminders: %d event(s) tomorrow, %d notification(s) sent', len(events), sent)
    return {'success': True, 'eventCount': len(events), 'notificationCount': sent}


def run_same_day_reminders(engine):
    """Remind owners and covering Quality users of events later today."""
    now = engine.now()
    start, end = _day_window(now)
    docs, note = tolerate_missing_index(
        engine, 'same_day_reminders', dao.get_events_starting_between, engine.store, start, end)
    if note:
        return _skipped(note)

    events = [e for e in _events(docs) if e.is_open() and e.start and e.start > now]
    if not events:
        logger.info('Same-day reminders: no upcoming events today')
        return {'success': True, 'eventCount': 0, 'notificationCount': 0}

    users = engine.load_users()
    sent = 0
    for event in events:
        summary = engine.notify(
            engine.router.same_day_recipients(event, users),
            messages.same_day_reminder(event),
            dedup_key=DedupKey.daily(messages.SAME_DAY_REMINDER, start, event.id),
            dedup_meta={'eventId': event.id},
        )
        sent += summary['successCount']

    logger.info('Same-day reminders: %d event(s), %d notification(s) sent', len(events), sent)
    return {'success': True, 'eventCount': len(events), 'notificationCount': sent}


def run_overdue_reminders(engine):
    """Weekly nudge to assignees of open events whose start has passed."""
    now = engine.now()
    docs, note = tolerate_missing_index(
        engine, 'overdue_reminders', dao.get_events_started_before, engine.store, now)
    if note:
        return _skipped(note)

    overdue = [e for e in _events(docs) if e.is_open()]
    grouped = engine.router.overdue_by_assignee(overdue)
    if not grouped:
        logger.info('Overdue reminders: nothing overdue')
        return {'success': True, 'overdueCount': 0, 'notificationCount': 0}

    summary = engine.notify(
        list(grouped),
        lambda uid: messages.overdue_reminder(grouped[uid]),
        dedup_key=DedupKey.weekly(messages.OVERDUE_REMINDER, now),
    )
    logger.info('Overdue reminders: %d event(s) for %d assignee(s), %d notification(s) sent',
                len(overdue), len(grouped), summary['successCount'])
    summary.update({'success': True, 'overdueCount': len(overdue), 'notificationCount': summary['successCount']})
    return summary


def run_calendar_digest(engine):
    """Morning broadcast listing today's events. Sent to everyone, no dedup."""
    start, end = _day_window(engine.now())
    docs, note = tolerate_missing_index(
        engine, 'calendar_digest', dao.get_events_starting_between, engine.store, start, end)
    if note:
        return _skipped(note)

    events = [e for e in _events(docs) if e.status != EVENT_CANCELLED]
    if not events:
        logger.info('Calendar digest: no events today')
        return {'success': True, 'eventCount': 0, 'notificationCount': 0}

    summary = engine.broadcast(messages.calendar_digest(events))
    summary.update({'success': True, 'eventCount': len(events), 'notificationCount': summary['successCount']})
    return summary


TIME_TRIGGERS = (
    TimeTrigger('kpi_reminders', 'KPI_REMINDER_CRON', 'KPI_REMINDER_TIMEZONE', run_scheduled_kpi_reminders),
    TimeTrigger('owner_reminders', 'OWNER_REMINDER_CRON', 'SCHEDULER_TIMEZONE', run_owner_reminders),
    TimeTrigger('same_day_reminders', 'SAME_DAY_REMINDER_CRON', 'SCHEDULER_TIMEZONE', run_same_day_reminders),
    TimeTrigger('overdue_reminders', 'OVERDUE_REMINDER_CRON', 'SCHEDULER_TIMEZONE', run_overdue_reminders),
    TimeTrigger('calendar_digest', 'CALENDAR_DIGEST_CRON', 'SCHEDULER_TIMEZONE', run_calendar_digest),
)


# ---------------------------------------------------------------------------
# Document triggers
# ---------------------------------------------------------------------------

def _never_raise(handler):
    """A notification failure must not surface into the change that caused it."""
    def wrapper(engine, change):
        try:
            return handler(engine, change)
        except Exception:
            logger.exception('%s failed for event %s', handler.__name__, change.doc_id)
            return {'success': False, 'notificationCount': 0}
    wrapper.__name__ = handler.__name__
    wrapper.__doc__ = handler.__doc__
    return wrapper


def _result(summary, **extra):
    summary = dict(summary)
    summary.update({'success': True, 'notificationCount': summary.get('successCount', 0)})
    summary.update(extra)
    return summary


def _not_applicable():
    return {'success': True, 'skipped': True, 'notificationCount': 0}


def _change_key(kind, change):
    """Key a notification to the document write that caused it.

    A redelivered change carries the same update time and is sent once; a
    later change to the same event is a new write and always goes out.
    Changes without an update time are not deduplicated.
    """
    if change.update_time is None:
        return None
    return DedupKey(kind, change.update_time.isoformat(), change.doc_id)


@_never_raise
def on_event_created(engine, change):
    event = Event.from_dict(change.after, change.doc_id)
    summary = engine.broadcast(
        messages.event_created(event),
        dedup_key=DedupKey.daily(messages.EVENT_CREATED, engine.now(), event.id),
        dedup_meta={'eventId': event.id},
    )
    return _result(summary)


@_never_raise
def on_event_rescheduled(engine, change):
    before = Event.from_dict(change.before, change.doc_id)
    after = Event.from_dict(change.after, change.doc_id)
    if before.start == after.start or after.start is None:
        return _not_applicable()
    if not after.assignees:
        return _not_applicable()

    summary = engine.notify(
        after.assignees,
        messages.event_rescheduled(after, before.start, after.start),
        dedup_key=_change_key(messages.EVENT_RESCHEDULE, change),
        dedup_meta={'eventId': after.id},
    )
    return _result(summary)


@_never_raise
def on_event_cancelled(engine, change):
    before = Event.from_dict(change.before, change.doc_id)
    after = Event.from_dict(change.after, change.doc_id)
    if before.status == EVENT_CANCELLED or after.status != EVENT_CANCELLED:
        return _not_applicable()
    if not after.assignees:
        return _not_applicable()
    summary = engine.notify(
        after.assignees,
        messages.event_cancelled(after),
        dedup_key=_change_key(messages.EVENT_CANCELLATION, change),
        dedup_meta={'eventId': after.id},
    )
    return _result(summary)


@_never_raise
def on_event_completed(engine, change):
    before = Event.from_dict(change.before, change.doc_id)
    after = Event.from_dict(change.after, change.doc_id)
    if before.status == EVENT_COMPLETED or after.status != EVENT_COMPLETED:
        return _not_applicable()
    supervisors = engine.router.supervisors(engine.load_users())
    summary = engine.notify(
        supervisors,
        messages.event_completed(after),
        dedup_key=_change_key(messages.EVENT_COMPLETION, change),
        dedup_meta={'eventId': after.id},
    )
    return _result(summary, supervisorCount=len(supervisors))


@_never_raise
def on_event_deleted(engine, change):
    event = Event.from_dict(change.before, change.doc_id)
    recipients = engine.router.deletion_recipients(event, engine.load_users())
    summary = engine.notify(recipients, messages.event_deleted(event))
    return _result(summary)


DOCUMENT_TRIGGERS = (
    DocumentTrigger('event_created', dao.EVENTS, CREATE, on_event_created),
    DocumentTrigger('event_rescheduled', dao.EVENTS, UPDATE, on_event_rescheduled),
    DocumentTrigger('event_cancelled', dao.EVENTS, UPDATE, on_event_cancelled),
    DocumentTrigger('event_completed', dao.EVENTS, UPDATE, on_event_completed),
    DocumentTrigger('event_deleted', dao.EVENTS, DELETE, on_event_deleted),
)
