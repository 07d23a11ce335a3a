"""Document-change triggers over Firestore snapshot listeners.

Firestore's `on_snapshot` reports the current version of changed documents
only, so the listener keeps the last version it saw of each document to
hand handlers a before/after pair.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

CREATE = 'create'
UPDATE = 'update'
DELETE = 'delete'

_CHANGE_KINDS = {
    'ADDED': CREATE,
    'MODIFIED': UPDATE,
    'REMOVED': DELETE,
}


@dataclass(frozen=True)
class DocumentChange:
    collection: str
    kind: str
    doc_id: str
    before: Optional[dict] = None
    after: Optional[dict] = None
    update_time: Optional[datetime] = None


@dataclass(frozen=True)
class DocumentTrigger:
    name: str
    collection: str
    kind: str
    handler: Callable


class CollectionListener:
    """Watch one collection and route its changes to matching triggers."""

    def __init__(self, collection, triggers, engine):
        self.collection = collection
        self.triggers = [t for t in triggers if t.collection == collection]
        self.engine = engine
        self._cache: Dict[str, dict] = {}
        self._primed = False
        self._lock = threading.Lock()
        self._watch = None

    def start(self, client):
        self._watch = client.collection(self.collection).on_snapshot(self.on_snapshot)
        logger.info('Listening for changes on %s (%d trigger(s))', self.collection, len(self.triggers))
        return self._watch

    def stop(self):
        if self._watch is not None:
            self._watch.unsubscribe()
            self._watch = None

    def on_snapshot(self, col_snapshot, changes, read_time):
        """Snapshot callback; runs on the listener's background thread."""
        with self._lock:
            if not self._primed:
                # The first snapshot lists every existing document as ADDED
                for doc in col_snapshot:
                    self._cache[doc.id] = doc.to_dict() or {}
                self._primed = True
                return
            converted = [self._convert(change) for change in changes]
        for change in converted:
            if change is not None:
                self.dispatch(change)

    def _convert(self, change) -> Optional[DocumentChange]:
        kind = _CHANGE_KINDS.get(change.type.name)
        if kind is None:
            return None
        doc = change.document
        before = self._cache.get(doc.id)
        if kind == DELETE:
            self._cache.pop(doc.id, None)
            after = None
            before = before or doc.to_dict() or {}
        else:
            after = doc.to_dict() or {}
            self._cache[doc.id] = after
        # update_time identifies this write, so a redelivered change keeps it
        return DocumentChange(self.collection, kind, doc.id, before, after,
                              getattr(doc, 'update_time', None))

    def dispatch(self, change: DocumentChange):
        """Run every trigger registered for the change; one failure never stops the rest."""
        results = {}
        for trigger in self.triggers:
            if trigger.kind != change.kind:
                continue
            try:
                results[trigger.name] = trigger.handler(self.engine, change)
            except Exception:
                logger.exception('Trigger %s failed for %s/%s', trigger.name, change.collection, change.doc_id)
                results[trigger.name] = {'success': False}
        return results


class EventListener(CollectionListener):
    """Listener for the `events` collection."""

    def __init__(self, engine, triggers, collection='events'):
        super().__init__(collection, triggers, engine)
