from datetime import timezone

from notifier.firestore_models import NotificationMessage, PRIORITY_HIGH

KPI_REMINDER = 'kpi_reminder'
OWNER_REMINDER = 'owner_reminder'
SAME_DAY_REMINDER = 'same_day_reminder'
OVERDUE_REMINDER = 'overdue_reminder'
CALENDAR_DIGEST = 'calendar_digest'
EVENT_CREATED = 'event_created'
EVENT_RESCHEDULE = 'event_reschedule'
EVENT_CANCELLATION = 'event_cancellation'
EVENT_COMPLETION = 'event_completion'
EVENT_DELETED = 'event_deleted'
TEST_NOTIFICATION = 'test_notification'


def _fmt(moment, default='Unknown time'):
    if moment is None:
        return default
    return moment.astimezone(timezone.utc).strftime('%Y-%m-%d %H:%M UTC')


def _fmt_time(moment, default='Unknown time'):
    if moment is None:
        return default
    return moment.astimezone(timezone.utc).strftime('%H:%M UTC')


def kpi_reminder(mentor_count, form_count, evaluator_role):
    return NotificationMessage(
        title='KPI Assessments Pending',
        body=f'{mentor_count} mentor(s) need evaluation ({form_count} forms)',
        kind=KPI_REMINDER,
        data={
            'pendingCount': form_count,
            'mentorCount': mentor_count,
            'evaluatorRole': evaluator_role,
        },
        link='/mentors',
    )


def owner_reminder(event):
    return NotificationMessage(
        title=f'Reminder: {event.display_title} is tomorrow',
        body=f'Your event "{event.display_title}" starts at {_fmt_time(event.start, "tomorrow")} tomorrow.',
        kind=OWNER_REMINDER,
        data={'eventId': event.id},
        link='/calendar',
    )


def same_day_reminder(event):
    return NotificationMessage(
        title=f'Today: {event.display_title}',
        body=f'"{event.display_title}" starts at {_fmt_time(event.start)} today.',
        kind=SAME_DAY_REMINDER,
        data={'eventId': event.id},
        link='/calendar',
    )


def overdue_reminder(events):
    count = len(events)
    return NotificationMessage(
        title='Overdue Tasks',
        body=f'{count} event(s) past their start date are still open',
        kind=OVERDUE_REMINDER,
        data={'overdueCount': count, 'eventIds': ','.join(e.id for e in events[:20])},
        link='/calendar',
    )


def calendar_digest(events):
    count = len(events)
    return NotificationMessage(
        title="Today's Calendar",
        body=f'{count} event(s) scheduled today',
        kind=CALENDAR_DIGEST,
        data={'eventCount': count},
        link='/calendar',
    )


def event_created(event):
    return NotificationMessage(
        title=f'New Event Created: {event.display_title}',
        body='A new event has been created in the system',
        kind=EVENT_CREATED,
        data={'eventId': event.id},
        link='/calendar',
    )


def event_rescheduled(event, old_start, new_start):
    return NotificationMessage(
        title=f'Event Rescheduled: {event.display_title}',
        body=f'Moved from {_fmt(old_start)} to {_fmt(new_start)}',
        kind=EVENT_RESCHEDULE,
        data={
            'eventId': event.id,
            'oldDateTime': _fmt(old_start),
            'newDateTime': _fmt(new_start),
        },
        link='/calendar',
        priority=PRIORITY_HIGH,
    )


def event_cancelled(event):
    return NotificationMessage(
        title=f'Event Cancelled: {event.display_title}',
        body=f'Scheduled for {_fmt(event.start)} has been cancelled',
        kind=EVENT_CANCELLATION,
        data={'eventId': event.id},
        link='/calendar',
        priority=PRIORITY_HIGH,
    )


def event_completed(event):
    return NotificationMessage(
        title=f'Event Completed: {event.display_title}',
        body='All tasks have been marked as complete',
        kind=EVENT_COMPLETION,
        data={'eventId': event.id},
        link='/operational-dashboard',
    )


def event_deleted(event):
    return NotificationMessage(
        title=f'Event Deleted: {event.display_title}',
        body=f'The event scheduled for {_fmt(event.start)} has been removed',
        kind=EVENT_DELETED,
        data={'eventId': event.id},
        link='/calendar',
        priority=PRIORITY_HIGH,
    )


def diagnostic_notification(display_name, sent_at):
    return NotificationMessage(
        title='Test Notification',
        body=f'Hi {display_name}! This is a test notification sent at {_fmt(sent_at)}',
        kind=TEST_NOTIFICATION,
        data={'timestamp': sent_at.isoformat()},
        link='/',
        priority=PRIORITY_HIGH,
    )
