import copy
import itertools
from datetime import datetime, timezone

import pytest

from config import TestConfig
from notifier.engine import NotificationEngine
from notifier.services.sender import SendResult

# A Friday, mid-morning UTC
NOW = datetime(2026, 10, 16, 9, 0, tzinfo=timezone.utc)


class ReadFailure(Exception):
    pass


def _matches(doc, field, op, value):
    if field not in doc:
        return False
    actual = doc[field]
    if op == '==':
        return actual == value
    if op == '!=':
        return actual != value
    if op == 'in':
        return actual in value
    if op == 'array_contains':
        return isinstance(actual, list) and value in actual
    if actual is None:
        return False
    if op == '>=':
        return actual >= value
    if op == '>':
        return actual > value
    if op == '<':
        return actual < value
    if op == '<=':
        return actual <= value
    raise ValueError(f'unsupported operator {op}')


def _deep_merge(target, fields):
    for key, value in fields.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _deep_merge(target[key], value)
        else:
            target[key] = copy.deepcopy(value)


class InMemoryStore:
    """Dict-backed stand-in for FirestoreStore.

    `failing` holds collection paths (or 'collection/doc_id' pairs) whose
    reads raise, to simulate per-recipient lookup failures.
    """

    def __init__(self):
        self.collections = {}
        self.failing = set()
        self.writes = []
        self._ids = itertools.count(1)

    # -- store contract ----------------------------------------------------

    def get(self, collection, doc_id):
        self._check(collection, doc_id)
        doc = self.collections.get(collection, {}).get(doc_id)
        if doc is None:
            return None
        out = copy.deepcopy(doc)
        out['id'] = doc_id
        return out

    def query(self, collection, predicates=(), order_by=None):
        docs = [
            d for d in self.stream(collection)
            if all(_matches(d, f, op, v) for f, op, v in predicates)
        ]
        if order_by:
            docs.sort(key=lambda d: d[order_by])
        return docs

    def stream(self, collection):
        self._check(collection)
        return [
            dict(copy.deepcopy(doc), id=doc_id)
            for doc_id, doc in self.collections.get(collection, {}).items()
        ]

    def subcollection(self, collection, doc_id, name):
        return self.stream(f'{collection}/{doc_id}/{name}')

    def set(self, collection, doc_id, fields, merge=False):
        self.writes.append(('set', collection, doc_id))
        docs = self.collections.setdefault(collection, {})
        if merge and doc_id in docs:
            _deep_merge(docs[doc_id], fields)
        else:
            docs[doc_id] = copy.deepcopy(fields)

    def update(self, collection, doc_id, fields):
        self.writes.append(('update', collection, doc_id))
        docs = self.collections.get(collection, {})
        if doc_id not in docs:
            raise KeyError(f'{collection}/{doc_id} does not exist')
        docs[doc_id].update(copy.deepcopy(fields))

    def add(self, collection, data):
        doc_id = f'auto{next(self._ids)}'
        self.set(collection, doc_id, data)
        return doc_id

    def _check(self, collection, doc_id=None):
        if collection in self.failing or (doc_id and f'{collection}/{doc_id}' in self.failing):
            raise ReadFailure(f'read failed: {collection}/{doc_id or ""}')

    # -- fixtures helpers --------------------------------------------------

    def doc(self, collection, doc_id):
        return self.collections.get(collection, {}).get(doc_id)

    def docs(self, collection):
        return self.collections.get(collection, {})

    def add_user(self, uid, role='User', devices=(), fcm_token=None, centers=None, name=None, **extra):
        data = {'name': name or uid, 'role': role, 'notificationsEnabled': True}
        if fcm_token:
            data['fcmToken'] = fcm_token
        if centers is not None:
            data['assignedCenters'] = list(centers)
        data.update(extra)
        self.set('users', uid, data)
        for device in devices:
            if isinstance(device, dict):
                token = device['token']
                fields = {k: v for k, v in device.items() if k != 'token'}
            else:
                token, fields = device, {}
            self.set(f'users/{uid}/devices', token, dict({'platform': 'web'}, **fields))
        self.writes.clear()

    def add_mentor(self, mentor_id, form_ids, evaluator=None, centers=None, name=None):
        data = {'name': name or mentor_id, 'assignedFormIds': list(form_ids)}
        if evaluator:
            data['assignedEvaluator'] = {'id': evaluator}
        if centers is not None:
            data['assignedCenters'] = list(centers)
        self.set('mentors', mentor_id, data)
        self.writes.clear()

    def add_event(self, event_id, **fields):
        self.set('events', event_id, fields)
        self.writes.clear()


class FakeTransport:
    """Records each call; `failures` maps a token to the error code it returns."""

    max_batch = 500

    def __init__(self, failures=None):
        self.failures = dict(failures or {})
        self.calls = []
        self.raise_on_calls = set()

    def send_batch(self, pairs):
        pairs = list(pairs)
        call_index = len(self.calls)
        self.calls.append(pairs)
        if call_index in self.raise_on_calls:
            raise TimeoutError('transport timed out')
        results = []
        for token, _message in pairs:
            code = self.failures.get(token)
            if code:
                results.append(SendResult(False, error_code=code))
            else:
                results.append(SendResult(True, message_id=f'msg-{token}'))
        return results

    @property
    def call_sizes(self):
        return [len(c) for c in self.calls]

    @property
    def sent_tokens(self):
        return [token for call in self.calls for token, _ in call]

    @property
    def sent_messages(self):
        return [message for call in self.calls for _, message in call]


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def engine(store, transport):
    return NotificationEngine(
        store,
        transport,
        lookup_workers=4,
        fallback_roles=['Admin', 'Quality', 'Evaluator'],
        clock=lambda: NOW,
    )


OPERATOR_TOKENS = {
    'admin-token': 'admin1',
    'quality-token': 'quality1',
    'evaluator-token': 'eval1',
}


@pytest.fixture
def app(engine, store, monkeypatch):
    from notifier import create_app
    from notifier import decorators

    def fake_verify(id_token):
        if id_token not in OPERATOR_TOKENS:
            raise ValueError('invalid token')
        return {'uid': OPERATOR_TOKENS[id_token]}

    monkeypatch.setattr(decorators, '_verify_token', fake_verify)
    store.add_user('admin1', role='ADMIN')
    store.add_user('quality1', role='Quality')
    store.add_user('eval1', role='Evaluator')
    return create_app(TestConfig, engine=engine)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def bearer():
    def _headers(token):
        return {'Authorization': f'Bearer {token}'}
    return _headers
