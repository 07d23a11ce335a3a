import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from notifier import firestore_dao as dao
from notifier.errors import ResolutionError
from notifier.firestore_models import User, UserDevice

logger = logging.getLogger(__name__)

SOURCE_DEVICE = 'device'
SOURCE_LEGACY = 'legacy'


@dataclass(frozen=True)
class ResolvedToken:
    token: str
    source: str


class TokenResolver:
    """Resolve the push tokens a user can currently be reached on.

    Enabled device registrations win; the legacy `fcmToken` field is only
    consulted when the user has no device registrations at all, so the same
    physical device recorded in both places is never targeted twice.
    """

    def __init__(self, store, max_workers: int = 32):
        self.store = store
        self.max_workers = max(1, max_workers)

    def resolve_tokens(self, user_id: str) -> List[str]:
        return [t.token for t in self.resolve_sources(user_id)]

    def resolve_sources(self, user_id: str, user_doc: Optional[dict] = None) -> List[ResolvedToken]:
        """Ordered, distinct tokens for one user.

        Returns an empty list for an unknown user. Raises ResolutionError when
        a read fails so the caller can skip just this recipient.
        """
        try:
            devices = dao.get_user_devices(self.store, user_id)
        except Exception as exc:
            raise ResolutionError(user_id, exc) from exc

        resolved: List[ResolvedToken] = []
        seen = set()
        for doc in devices:
            device = UserDevice.from_dict(doc, doc.get('id'))
            if device.token and device.enabled and device.token not in seen:
                seen.add(device.token)
                resolved.append(ResolvedToken(device.token, SOURCE_DEVICE))
        if devices:
            return resolved

        if user_doc is None:
            try:
                user_doc = dao.get_user(self.store, user_id)
            except Exception as exc:
                raise ResolutionError(user_id, exc) from exc
        if not user_doc:
            return []
        user = User.from_dict(user_doc, user_id)
        if user.fcm_token:
            resolved.append(ResolvedToken(user.fcm_token, SOURCE_LEGACY))
        return resolved

    def resolve_many(self, user_ids: Iterable[str],
                     user_docs: Optional[Dict[str, dict]] = None) -> Dict[str, List[ResolvedToken]]:
        """Resolve several users concurrently with a bounded worker pool.

        Users whose lookup fails are logged and left out of the result; the
        result keeps the input order.
        """
        ordered = []
        for uid in user_ids:
            if uid and uid not in ordered:
                ordered.append(uid)
        if not ordered:
            return {}
        user_docs = user_docs or {}

        found: Dict[str, List[ResolvedToken]] = {}
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(ordered))) as executor:
            futures = {
                executor.submit(self.resolve_sources, uid, user_docs.get(uid)): uid
                for uid in ordered
            }
            for future in as_completed(futures):
                uid = futures[future]
                try:
                    found[uid] = future.result()
                except ResolutionError as exc:
                    logger.warning('Skipping recipient %s: %s', uid, exc.cause)
        return {uid: found[uid] for uid in ordered if uid in found}

    def resolve_all(self) -> Dict[str, List[ResolvedToken]]:
        """Every user's tokens, keyed by user id in user-id order."""
        users = dao.get_all_users(self.store)
        return self.resolve_many([u['id'] for u in users], {u['id']: u for u in users})

    def resolve_all_tokens(self) -> List[str]:
        """Union of every user's tokens, for broadcast notifications."""
        tokens: List[str] = []
        seen = set()
        for resolved in self.resolve_all().values():
            for t in resolved:
                if t.token not in seen:
                    seen.add(t.token)
                    tokens.append(t.token)
        return tokens
