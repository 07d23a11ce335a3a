"""Batched push delivery over Firebase Cloud Messaging.

`BatchSender` partitions (recipient, token, message) triples into chunks the
transport accepts, keeps the per-token results positionally aligned with the
input, and triages failures: permanent ones clean the stale registration off
the user, transient ones are only logged (the next scheduled run is the
retry).
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Set, Tuple

from firebase_admin import exceptions as firebase_exceptions
from firebase_admin import messaging

from notifier import firestore_dao as dao
from notifier.errors import TransportError
from notifier.firestore_models import NotificationMessage, PRIORITY_HIGH
from notifier.services.tokens import SOURCE_DEVICE

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 500

ERROR_NOT_REGISTERED = 'messaging/registration-token-not-registered'
ERROR_INVALID_ARGUMENT = 'messaging/invalid-argument'
ERROR_TRANSPORT = 'messaging/transport-error'
ERROR_CANCELLED = 'messaging/cancelled'
PERMANENT_ERROR_CODES = frozenset({ERROR_NOT_REGISTERED, ERROR_INVALID_ARGUMENT})


def is_web_token(token) -> bool:
    """Web FCM tokens are long and contain a colon."""
    return isinstance(token, str) and len(token) > 150 and ':' in token


def error_code_for(exc) -> str:
    if exc is None:
        return 'messaging/unknown-error'
    if isinstance(exc, messaging.UnregisteredError):
        return ERROR_NOT_REGISTERED
    if isinstance(exc, firebase_exceptions.InvalidArgumentError):
        return ERROR_INVALID_ARGUMENT
    code = getattr(exc, 'code', None) or 'unknown-error'
    return 'messaging/' + str(code).lower().replace('_', '-')


def _short(token) -> str:
    return (token or '')[:12] + '...'


@dataclass(frozen=True)
class OutboundMessage:
    recipient_id: str
    token: str
    message: NotificationMessage
    source: str = SOURCE_DEVICE


@dataclass(frozen=True)
class SendResult:
    success: bool
    error_code: Optional[str] = None
    message_id: Optional[str] = None
    # False when the chunk never reached the transport (cancelled or the
    # call itself failed), so nothing may be recorded as sent
    dispatched: bool = True

    @property
    def permanent(self) -> bool:
        return not self.success and self.error_code in PERMANENT_ERROR_CODES


@dataclass
class DeliveryReport:
    messages: List[OutboundMessage] = field(default_factory=list)
    results: List[SendResult] = field(default_factory=list)
    cleaned: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failure_count(self) -> int:
        return len(self.results) - self.success_count

    def delivered_recipients(self) -> Set[str]:
        """Recipients with at least one message accepted by the transport."""
        return {m.recipient_id for m, r in zip(self.messages, self.results) if r.success}

    def to_dict(self):
        return {
            'attempted': len(self.results),
            'successCount': self.success_count,
            'failureCount': self.failure_count,
            'tokensCleaned': len(self.cleaned),
        }


class FcmTransport:
    """Push transport over firebase_admin.messaging.send_each."""

    max_batch = MAX_BATCH_SIZE

    def __init__(self, frontend_url='', client=messaging, app=None):
        self.base_url = (frontend_url or '').rstrip('/')
        self.client = client
        self.app = app

    @property
    def icon_url(self):
        return f'{self.base_url}/favicon.ico'

    def build(self, token: str, message: NotificationMessage) -> messaging.Message:
        link = f'{self.base_url}{message.link}'
        web = is_web_token(token)
        # Web tokens are data-only: the service worker shows
        # webpush.notification, so a top-level notification would display twice
        web_notification = {'title': message.title, 'body': message.body} if web else {}
        kwargs = {
            'token': token,
            'data': message.data_payload(),
            'webpush': messaging.WebpushConfig(
                fcm_options=messaging.WebpushFCMOptions(link=link),
                notification=messaging.WebpushNotification(
                    icon=self.icon_url,
                    badge=self.icon_url,
                    **web_notification,
                ),
            ),
        }
        if not web:
            kwargs['notification'] = messaging.Notification(title=message.title, body=message.body)

        if message.priority == PRIORITY_HIGH:
            kwargs['android'] = messaging.AndroidConfig(
                priority='high',
                notification=messaging.AndroidNotification(
                    title=message.title,
                    body=message.body,
                    icon='/favicon.ico',
                    color='#1976d2',
                    sound='default',
                    channel_id='default',
                ),
            )
            kwargs['apns'] = messaging.APNSConfig(
                headers={'apns-priority': '10'},
                payload=messaging.APNSPayload(
                    aps=messaging.Aps(
                        alert=messaging.ApsAlert(title=message.title, body=message.body),
                        sound='default',
                        badge=1,
                    ),
                ),
            )
        return messaging.Message(**kwargs)

    def send_batch(self, pairs: Sequence[Tuple[str, NotificationMessage]]) -> List[SendResult]:
        built = [self.build(token, message) for token, message in pairs]
        try:
            response = self.client.send_each(built, app=self.app)
        except firebase_exceptions.FirebaseError as exc:
            raise TransportError(f'send_each failed for {len(built)} message(s): {exc}') from exc
        results = []
        for send_response in response.responses:
            if send_response.success:
                results.append(SendResult(True, message_id=send_response.message_id))
            else:
                results.append(SendResult(False, error_code=error_code_for(send_response.exception)))
        return results


class BatchSender:
    def __init__(self, transport, store, batch_size: int = MAX_BATCH_SIZE, max_concurrency: int = 1):
        limit = getattr(transport, 'max_batch', MAX_BATCH_SIZE)
        self.transport = transport
        self.store = store
        self.batch_size = max(1, min(batch_size, limit))
        self.max_concurrency = max(1, max_concurrency)

    def chunks(self, messages: Sequence[OutboundMessage]) -> List[Sequence[OutboundMessage]]:
        return [messages[i:i + self.batch_size] for i in range(0, len(messages), self.batch_size)]

    def send_batch(self, messages: Sequence[OutboundMessage], cancel_event=None) -> List[SendResult]:
        """One result per input message, in input order."""
        messages = list(messages)
        chunks = self.chunks(messages)
        results: List[SendResult] = []
        window = self.max_concurrency
        for start in range(0, len(chunks), window):
            group = chunks[start:start + window]
            if cancel_event is not None and cancel_event.is_set():
                skipped = sum(len(c) for c in chunks[start:])
                logger.warning('Send cancelled; %d message(s) not dispatched', skipped)
                results.extend(SendResult(False, ERROR_CANCELLED, dispatched=False) for _ in range(skipped))
                break
            if len(group) == 1:
                results.extend(self._send_chunk(group[0]))
                continue
            with ThreadPoolExecutor(max_workers=len(group)) as executor:
                # map() yields in submission order, which keeps results aligned
                for chunk_results in executor.map(self._send_chunk, group):
                    results.extend(chunk_results)
        return results

    def _send_chunk(self, chunk: Sequence[OutboundMessage]) -> List[SendResult]:
        try:
            results = list(self.transport.send_batch([(m.token, m.message) for m in chunk]))
        except TransportError as exc:
            logger.warning('%s', exc)
            return [SendResult(False, ERROR_TRANSPORT, dispatched=False) for _ in chunk]
        except Exception:
            logger.exception('Push transport call failed for a chunk of %d', len(chunk))
            return [SendResult(False, ERROR_TRANSPORT, dispatched=False) for _ in chunk]
        if len(results) != len(chunk):
            logger.error('Transport returned %d results for %d messages', len(results), len(chunk))
            return [SendResult(False, ERROR_TRANSPORT) for _ in chunk]
        return results

    def dispatch(self, messages: Sequence[OutboundMessage], cancel_event=None) -> DeliveryReport:
        """Send, then reconcile every per-token result."""
        messages = list(messages)
        report = DeliveryReport(messages=messages, results=self.send_batch(messages, cancel_event))
        report.cleaned = self.reconcile(messages, report.results)
        return report

    def reconcile(self, messages: Sequence[OutboundMessage], results: Sequence[SendResult]) -> List[Tuple[str, str]]:
        """Clean up permanently failed tokens one at a time; log the rest."""
        cleaned = []
        seen = set()
        for outbound, result in zip(messages, results):
            if result.success or not result.dispatched:
                continue
            if not result.permanent:
                logger.warning('FCM send failure %s for user %s token %s',
                               result.error_code, outbound.recipient_id, _short(outbound.token))
                continue
            key = (outbound.recipient_id, outbound.token)
            if key in seen:
                continue
            seen.add(key)
            if self._cleanup_token(outbound):
                cleaned.append(key)
        return cleaned

    def _cleanup_token(self, outbound: OutboundMessage) -> bool:
        uid = outbound.recipient_id
        try:
            dao.clear_legacy_token(self.store, uid)
            if outbound.source == SOURCE_DEVICE:
                dao.disable_device(self.store, uid, outbound.token)
        except Exception:
            logger.warning('Failed to clear invalid token for user %s', uid, exc_info=True)
            return False
        logger.info('Cleared invalid token %s for user %s', _short(outbound.token), uid)
        return True
