"""
Firestore Data Access Object (DAO) layer.

`FirestoreStore` is the only object that talks to the Firestore client.
Everything else in the engine receives a store instance and goes through
the collection helpers below, so tests can swap in an in-memory store that
implements the same six calls (get, query, stream, subcollection, set,
update, add).
"""

from datetime import datetime, timezone

from google.cloud.firestore_v1 import FieldFilter


USERS = 'users'
DEVICES = 'devices'
MENTORS = 'mentors'
KPI_FORMS = 'kpiForms'
KPI_SUBMISSIONS = 'kpiSubmissions'
EVENTS = 'events'
NOTIFICATION_LOG = '_notificationLog'
KPI_RUN_LOGS = '_admin/kpiRunLogs/runs'
ALERTS = '_alerts'


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _doc_to_dict(doc_snapshot):
    """Convert a Firestore DocumentSnapshot to a dict with 'id' field."""
    if not doc_snapshot.exists:
        return None
    d = doc_snapshot.to_dict() or {}
    d['id'] = doc_snapshot.id
    return d


def _now():
    return datetime.now(timezone.utc)


class FirestoreStore:
    """Document store backed by a google-cloud-firestore client.

    Every read and write carries `timeout` so one unresponsive call cannot
    stall a whole run.
    """

    def __init__(self, client, timeout=10.0):
        self.client = client
        self.timeout = timeout

    def get(self, collection, doc_id):
        """Get a document by ID. Returns dict or None."""
        doc = self.client.collection(collection).document(doc_id).get(timeout=self.timeout)
        return _doc_to_dict(doc)

    def query(self, collection, predicates=(), order_by=None):
        """Run a query built from (field, op, value) predicates."""
        q = self.client.collection(collection)
        for field_path, op, value in predicates:
            q = q.where(filter=FieldFilter(field_path, op, value))
        if order_by:
            q = q.order_by(order_by)
        return self._run(q)

    def stream(self, collection):
        """Every document of a collection."""
        return self._run(self.client.collection(collection))

    def subcollection(self, collection, doc_id, name):
        """Every document of collection/doc_id/name."""
        return self._run(self.client.collection(collection).document(doc_id).collection(name))

    def set(self, collection, doc_id, fields, merge=False):
        self.client.collection(collection).document(doc_id).set(fields, merge=merge, timeout=self.timeout)

    def update(self, collection, doc_id, fields):
        self.client.collection(collection).document(doc_id).update(fields, timeout=self.timeout)

    def add(self, collection, data):
        """Create a document with a generated ID. Returns the ID."""
        _, doc_ref = self.client.collection(collection).add(data, timeout=self.timeout)
        return doc_ref.id

    def _run(self, query_ref):
        return [_doc_to_dict(doc) for doc in query_ref.stream(timeout=self.timeout)]


# ========================================================================
# Users  (collection: users, subcollection: users/{uid}/devices)
# ========================================================================

def get_user(store, uid):
    """Get a user document by UID. Returns dict or None."""
    return store.get(USERS, uid)


def get_all_users(store):
    """Every user document, ordered by document ID."""
    return sorted(store.stream(USERS), key=lambda u: u['id'])


def get_user_devices(store, uid):
    """Device registrations for a user. The document ID is the push token."""
    return store.subcollection(USERS, uid, DEVICES)


def clear_legacy_token(store, uid):
    """Drop the legacy single token and turn notifications off for a user."""
    store.update(USERS, uid, {
        'fcmToken': None,
        'notificationsEnabled': False,
        'updatedAt': _now(),
    })


def disable_device(store, uid, token):
    """Mark a device registration as disabled without deleting it."""
    store.set(USERS + '/' + uid + '/' + DEVICES, token, {
        'enabled': False,
        'disabledAt': _now(),
    }, merge=True)


# ========================================================================
# KPI  (collections: mentors, kpiForms, kpiSubmissions)
# ========================================================================

def get_mentors(store):
    """Every mentor document, ordered by document ID."""
    return sorted(store.stream(MENTORS), key=lambda m: m['id'])


def get_kpi_form(store, form_id):
    """Get a KPI form by ID. Returns dict or None."""
    return store.get(KPI_FORMS, form_id)


def get_recent_submissions(store, since):
    """KPI submissions created at or after `since`."""
    return store.query(KPI_SUBMISSIONS, [('createdAt', '>=', since)])


def write_kpi_run_log(store, data):
    """Append an audit entry for a KPI run. Returns the generated doc ID."""
    data.setdefault('initiatedAt', _now())
    return store.add(KPI_RUN_LOGS, data)


# ========================================================================
# Events  (collection: events)
# ========================================================================

def get_events_starting_between(store, start, end):
    """Events whose startDateTime falls in [start, end)."""
    return store.query(EVENTS, [
        ('startDateTime', '>=', start),
        ('startDateTime', '<', end),
    ], order_by='startDateTime')


def get_events_started_before(store, moment):
    """Events whose startDateTime is strictly before `moment`."""
    return store.query(EVENTS, [('startDateTime', '<', moment)], order_by='startDateTime')


def stamp_event_notified(store, event_id):
    """Merge lastNotificationAt into an event without touching other fields."""
    store.set(EVENTS, event_id, {'lastNotificationAt': _now()}, merge=True)


# ========================================================================
# Notification log  (collection: _notificationLog)
# ========================================================================

def get_notification_log(store, key):
    return store.get(NOTIFICATION_LOG, key)


def set_notification_log(store, key, data):
    store.set(NOTIFICATION_LOG, key, data, merge=True)


# ========================================================================
# Alerts  (collection: _alerts)
# ========================================================================

def record_missing_index(store, trigger_name, message):
    """Flag a trigger whose query needs a composite index."""
    now = _now()
    store.set(ALERTS, 'missing_indexes', {
        'lastSeen': now,
        trigger_name: {'lastSeen': now, 'message': message, 'resolved': False},
    }, merge=True)


def resolve_missing_index(store, trigger_name):
    """Mark a previously flagged trigger as resolved. No-op if never flagged."""
    alert = store.get(ALERTS, 'missing_indexes') or {}
    entry = alert.get(trigger_name)
    if not isinstance(entry, dict) or entry.get('resolved'):
        return
    now = _now()
    store.set(ALERTS, 'missing_indexes', {
        'lastResolved': now,
        trigger_name: {'resolvedAt': now, 'resolved': True},
    }, merge=True)
