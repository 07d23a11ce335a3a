"""Wiring for the notification dispatch engine.

`NotificationEngine` holds one instance of every collaborator (store, token
resolver, dedup store, router, batch sender) so triggers and the operator
endpoints receive their dependencies explicitly instead of reaching for
module-level clients.
"""

import logging
import threading
from datetime import datetime, timezone

from notifier import firestore_dao as dao
from notifier.errors import ConfigurationError
from notifier.firestore_models import User
from notifier.services.dedup import DedupStore
from notifier.services.routing import RecipientRouter
from notifier.services.sender import BatchSender, MAX_BATCH_SIZE, OutboundMessage
from notifier.services.tokens import TokenResolver

logger = logging.getLogger(__name__)


def _utcnow():
    return datetime.now(timezone.utc)


def _split_roles(value):
    if isinstance(value, str):
        return [r.strip() for r in value.split(',') if r.strip()]
    return list(value or [])


class NotificationEngine:
    def __init__(self, store, transport, batch_size=500, send_concurrency=1,
                 lookup_workers=32, fallback_roles=(), lookback_days=14, clock=None):
        self.store = store
        self.transport = transport
        self.tokens = TokenResolver(store, max_workers=lookup_workers)
        self.dedup = DedupStore(store, max_workers=lookup_workers)
        self.router = RecipientRouter(fallback_roles)
        self.sender = BatchSender(transport, store, batch_size=batch_size, max_concurrency=send_concurrency)
        self.lookback_days = lookback_days
        self.clock = clock or _utcnow
        self.cancel_event = threading.Event()

    @classmethod
    def from_config(cls, config, store, transport, clock=None):
        batch_size = int(config.get('FCM_BATCH_SIZE', 500))
        if not 1 <= batch_size <= MAX_BATCH_SIZE:
            raise ConfigurationError(f'FCM_BATCH_SIZE must be between 1 and {MAX_BATCH_SIZE}, got {batch_size}')
        return cls(
            store,
            transport,
            batch_size=batch_size,
            send_concurrency=int(config.get('FCM_SEND_CONCURRENCY', 1)),
            lookup_workers=int(config.get('LOOKUP_WORKERS', 32)),
            fallback_roles=_split_roles(config.get('KPI_FALLBACK_ROLES', '')),
            lookback_days=int(config.get('KPI_LOOKBACK_DAYS', 14)),
            clock=clock,
        )

    def now(self):
        return self.clock()

    def cancel(self):
        """Stop in-flight runs before their next batch."""
        self.cancel_event.set()

    def load_users(self):
        return [User.from_dict(doc, doc['id']) for doc in dao.get_all_users(self.store)]

    def notify(self, user_ids, message, dedup_key=None, force=False, dedup_meta=None):
        """Send `message` to every resolved token of `user_ids`.

        `message` is a NotificationMessage or a callable taking the user id.
        With a dedup key, users already notified under that key are skipped
        (unless forced) and users with at least one accepted message are
        recorded afterwards.
        """
        unique = []
        for uid in user_ids:
            if uid and uid not in unique:
                unique.append(uid)
        user_ids, deduped = self._filter_sent(unique, dedup_key, force)
        resolved = self.tokens.resolve_many(user_ids)
        return self._deliver(user_ids, resolved, message, dedup_key, deduped, dedup_meta)

    def broadcast(self, message, dedup_key=None, force=False, dedup_meta=None):
        """Send `message` to every user with at least one token."""
        resolved = self.tokens.resolve_all()
        logger.info('Broadcasting %s to %d user(s)', getattr(message, 'kind', 'message'), len(resolved))
        user_ids, deduped = self._filter_sent([uid for uid, tokens in resolved.items() if tokens], dedup_key, force)
        return self._deliver(user_ids, resolved, message, dedup_key, deduped, dedup_meta)

    def _filter_sent(self, user_ids, dedup_key, force):
        if dedup_key is None:
            return user_ids, []
        fresh = self.dedup.unsent(user_ids, dedup_key, force)
        kept = set(fresh)
        return fresh, [uid for uid in user_ids if uid not in kept]

    def _deliver(self, user_ids, resolved, message, dedup_key, deduped, dedup_meta):
        outbound = []
        no_tokens = []
        for uid in user_ids:
            tokens = resolved.get(uid)
            if not tokens:
                no_tokens.append(uid)
                continue
            built = message(uid) if callable(message) else message
            outbound.extend(OutboundMessage(uid, t.token, built, t.source) for t in tokens)

        report = self.sender.dispatch(outbound, self.cancel_event)
        recorded = 0
        if dedup_key is not None:
            recorded = self.dedup.record_many(sorted(report.delivered_recipients()), dedup_key, dedup_meta)

        summary = report.to_dict()
        summary.update({
            'recipients': len(user_ids),
            'deduped': len(deduped),
            'noTokens': len(no_tokens),
            'recorded': recorded,
        })
        return summary


def create_engine(config, clock=None):
    """Build an engine against the real Firestore and FCM clients."""
    from notifier.firebase_init import init_firebase, get_db, get_messaging
    from notifier.firestore_dao import FirestoreStore
    from notifier.services.sender import FcmTransport

    init_firebase(config)
    store = FirestoreStore(get_db(), timeout=float(config.get('FIRESTORE_TIMEOUT', 10)))
    transport = FcmTransport(config.get('FRONTEND_URL', ''), client=get_messaging())
    return NotificationEngine.from_config(config, store, transport, clock=clock)
