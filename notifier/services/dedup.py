"""Time-windowed, write-once log of sent notifications.

Recency lives entirely in the key: a `DedupKey` names the notification kind,
the period bucket it belongs to (a day or an ISO week) and, optionally, the
subject it is about (an event id). When the bucket rolls over the key is new
and the notification may go out again.
"""

import hashlib
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from notifier import firestore_dao as dao
from notifier.firestore_models import DedupRecord

logger = logging.getLogger(__name__)


def day_bucket(moment) -> str:
    """UTC calendar day, e.g. '2026-10-19'."""
    if isinstance(moment, datetime):
        moment = moment.astimezone(timezone.utc).date()
    return moment.isoformat()


def week_bucket(moment) -> str:
    """ISO week, e.g. '2026-W43'."""
    if isinstance(moment, datetime):
        moment = moment.astimezone(timezone.utc).date()
    year, week, _ = moment.isocalendar()
    return f'{year}-W{week:02d}'


@dataclass(frozen=True)
class DedupKey:
    kind: str
    period: str
    subject: Optional[str] = None

    @classmethod
    def daily(cls, kind: str, moment, subject: Optional[str] = None) -> 'DedupKey':
        return cls(kind, day_bucket(moment), subject)

    @classmethod
    def weekly(cls, kind: str, moment, subject: Optional[str] = None) -> 'DedupKey':
        return cls(kind, week_bucket(moment), subject)

    @property
    def label(self) -> str:
        parts = [self.kind, self.period]
        if self.subject:
            parts.append(self.subject)
        return '_'.join(parts)

    def document_id(self, recipient_id: str) -> str:
        # Hashing the structured tuple keeps two kinds from ever colliding
        # on an accidental string concatenation.
        raw = json.dumps([recipient_id, self.kind, self.period, self.subject])
        return hashlib.sha256(raw.encode('utf-8')).hexdigest()


class DedupStore:
    def __init__(self, store, max_workers: int = 32):
        self.store = store
        self.max_workers = max(1, max_workers)

    def last_sent(self, recipient_id: str, key: DedupKey) -> Optional[DedupRecord]:
        """The record written for (recipient, key), or None."""
        data = dao.get_notification_log(self.store, key.document_id(recipient_id))
        return DedupRecord.from_dict(data) if data else None

    def should_send(self, recipient_id: str, key: DedupKey, force: bool = False) -> bool:
        """True iff forced or no record exists for (recipient, key).

        A failing read is logged and treated as "not sent" so a broken log
        never blocks reminders.
        """
        if force:
            return True
        try:
            return self.last_sent(recipient_id, key) is None
        except Exception:
            logger.exception('Dedup lookup failed for %s/%s; sending anyway', recipient_id, key.label)
            return True

    def unsent(self, recipient_ids: Iterable[str], key: DedupKey, force: bool = False) -> List[str]:
        """Recipients not yet notified under `key`, in input order.

        Lookups run on a bounded worker pool.
        """
        recipient_ids = list(recipient_ids)
        if force or not recipient_ids:
            return recipient_ids
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(recipient_ids))) as executor:
            fresh = list(executor.map(lambda uid: self.should_send(uid, key), recipient_ids))
        return [uid for uid, ok in zip(recipient_ids, fresh) if ok]

    def record_sent(self, recipient_id: str, key: DedupKey,
                    timestamp: Optional[datetime] = None, meta: Optional[dict] = None) -> None:
        record = DedupRecord(
            recipient_id=recipient_id,
            kind=key.kind,
            period=key.period,
            subject=key.subject,
            sent_at=timestamp or datetime.now(timezone.utc),
            meta=meta or {},
        )
        data = record.to_dict()
        data['dedupKey'] = key.label
        dao.set_notification_log(self.store, key.document_id(recipient_id), data)

    def record_many(self, recipient_ids, key: DedupKey, meta: Optional[dict] = None) -> int:
        """Record several recipients; individual write failures are logged."""
        written = 0
        now = datetime.now(timezone.utc)
        for recipient_id in recipient_ids:
            try:
                self.record_sent(recipient_id, key, now, meta)
                written += 1
            except Exception:
                logger.warning('Failed to record %s for %s', key.label, recipient_id, exc_info=True)
        return written


__all__ = ['DedupKey', 'DedupStore', 'day_bucket', 'week_bucket']
