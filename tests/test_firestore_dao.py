from types import SimpleNamespace

from google.cloud.firestore_v1 import FieldFilter

from notifier import firebase_init
from notifier.firestore_dao import FirestoreStore


def snapshot(doc_id, data, exists=True):
    return SimpleNamespace(id=doc_id, exists=exists, to_dict=lambda: dict(data))


class Ref:
    """Records every call made against a collection, document or query path."""

    def __init__(self, calls, path, docs=()):
        self.calls = calls
        self.path = path
        self.docs = list(docs)

    def collection(self, name):
        return Ref(self.calls, f'{self.path}/{name}', self.docs)

    def document(self, doc_id):
        return Ref(self.calls, f'{self.path}/{doc_id}', self.docs)

    def where(self, filter=None):
        self.calls.append(('where', self.path, filter))
        return self

    def order_by(self, field):
        self.calls.append(('order_by', self.path, field))
        return self

    def get(self, timeout=None):
        self.calls.append(('get', self.path, timeout))
        return snapshot(self.path.rsplit('/', 1)[-1], {'name': 'x'})

    def stream(self, timeout=None):
        self.calls.append(('stream', self.path, timeout))
        return iter(self.docs)

    def set(self, fields, merge=False, timeout=None):
        self.calls.append(('set', self.path, fields, merge, timeout))

    def update(self, fields, timeout=None):
        self.calls.append(('update', self.path, fields, timeout))

    def add(self, data, timeout=None):
        self.calls.append(('add', self.path, data, timeout))
        return None, SimpleNamespace(id='generated')


class Client:
    def __init__(self, docs=()):
        self.calls = []
        self.docs = docs

    def collection(self, name):
        return Ref(self.calls, name, self.docs)


def test_reads_carry_the_timeout():
    client = Client(docs=[snapshot('d1', {'token': 't1'})])
    store = FirestoreStore(client, timeout=2.5)

    assert store.get('users', 'u1') == {'name': 'x', 'id': 'u1'}
    assert store.stream('users') == [{'token': 't1', 'id': 'd1'}]
    store.subcollection('users', 'u1', 'devices')

    assert client.calls == [
        ('get', 'users/u1', 2.5),
        ('stream', 'users', 2.5),
        ('stream', 'users/u1/devices', 2.5),
    ]


def test_writes_carry_the_timeout():
    client = Client()
    store = FirestoreStore(client, timeout=4)

    store.set('_notificationLog', 'k1', {'userId': 'u1'}, merge=True)
    store.update('users', 'u1', {'fcmToken': None})
    new_id = store.add('_admin/kpiRunLogs/runs', {'mode': 'manual'})

    assert new_id == 'generated'
    assert client.calls == [
        ('set', '_notificationLog/k1', {'userId': 'u1'}, True, 4),
        ('update', 'users/u1', {'fcmToken': None}, 4),
        ('add', '_admin/kpiRunLogs/runs', {'mode': 'manual'}, 4),
    ]


def test_query_builds_field_filters_and_ordering():
    client = Client()
    store = FirestoreStore(client, timeout=3)

    store.query('events', [('status', '==', 'pending'), ('startDateTime', '>=', 'today')],
                order_by='startDateTime')

    wheres = [c[2] for c in client.calls if c[0] == 'where']
    assert all(isinstance(f, FieldFilter) for f in wheres)
    assert [(f.field_path, f.op_string, f.value) for f in wheres] == [
        ('status', '==', 'pending'),
        ('startDateTime', '>=', 'today'),
    ]
    assert client.calls[2:] == [('order_by', 'events', 'startDateTime'), ('stream', 'events', 3)]


def test_init_firebase_bounds_admin_sdk_calls(monkeypatch):
    initialized = {}

    def initialize_app(cred, options=None):
        initialized.update(cred=cred, options=options)
        return 'app'

    monkeypatch.setattr(firebase_init, '_app', None)
    monkeypatch.setattr(firebase_init, '_db', None)
    monkeypatch.setattr(firebase_init.credentials, 'ApplicationDefault', lambda: 'adc')
    monkeypatch.setattr(firebase_init.firebase_admin, 'initialize_app', initialize_app)
    monkeypatch.setattr(firebase_init.firestore, 'client', lambda: 'db')

    app = firebase_init.init_firebase({
        'GOOGLE_APPLICATION_CREDENTIALS': '/nonexistent/service-account.json',
        'FIREBASE_PROJECT_ID': 'talc-test',
        'FCM_HTTP_TIMEOUT': 30,
    })

    assert app == 'app'
    assert initialized == {'cred': 'adc', 'options': {'projectId': 'talc-test', 'httpTimeout': 30}}
    assert firebase_init.get_db() == 'db'
