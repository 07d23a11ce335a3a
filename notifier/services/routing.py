"""Decide who should be notified about a domain event.

Everything here is a pure function of its inputs: token lookups and
document reads happen before routing, so the same inputs always produce
the same grouping.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from notifier.firestore_models import (
    Event, Mentor, PendingEvaluation, User, ROLE_QUALITY, normalize_role,
)
from notifier.services.tokens import ResolvedToken

logger = logging.getLogger(__name__)

DROP_NO_EVALUATOR = 'no_eligible_evaluator'


def submission_key(mentor_id: str, form_name: str) -> str:
    return f'{mentor_id}_{form_name}'


@dataclass
class EvaluatorProfile:
    user_id: str
    name: str = ''
    role: str = 'user'
    centers: List[str] = field(default_factory=list)
    tokens: List[ResolvedToken] = field(default_factory=list)

    @classmethod
    def from_user(cls, user: User, tokens: Sequence[ResolvedToken]) -> 'EvaluatorProfile':
        return cls(
            user_id=user.id,
            name=user.display_name,
            role=user.role,
            centers=list(user.assigned_centers),
            tokens=list(tokens),
        )

    def covers(self, centers: Iterable[str]) -> bool:
        if not self.centers:
            return True
        return any(c in self.centers for c in centers)


@dataclass
class DroppedEvaluation:
    pending: PendingEvaluation
    reason: str

    def to_dict(self):
        d = self.pending.to_dict()
        d['reason'] = self.reason
        return d


@dataclass
class RoutingResult:
    pending: List[PendingEvaluation] = field(default_factory=list)
    by_evaluator: Dict[str, List[PendingEvaluation]] = field(default_factory=OrderedDict)
    dropped: List[DroppedEvaluation] = field(default_factory=list)


def find_pending_evaluations(mentors: Sequence[Mentor], recent_keys,
                             form_names: Optional[Dict[str, str]] = None) -> List[PendingEvaluation]:
    """(mentor, form) pairs with no submission inside the lookback window."""
    form_names = form_names or {}
    pending = []
    for mentor in mentors:
        for form_id in mentor.assigned_form_ids:
            form_name = form_names.get(form_id) or form_id
            if submission_key(mentor.id, form_name) in recent_keys:
                continue
            pending.append(PendingEvaluation(
                mentor_id=mentor.id,
                mentor_name=mentor.name,
                form_id=form_id,
                form_name=form_name,
                centers=tuple(mentor.centers),
                assigned_evaluator_id=mentor.assigned_evaluator_id,
            ))
    return pending


class RecipientRouter:
    """Recipient selection for KPI reminders and event notifications.

    `fallback_roles` limits which users may stand in for a missing evaluator;
    an empty collection lets any token-holding user qualify.
    """

    def __init__(self, fallback_roles: Iterable[str] = ()):
        self.fallback_roles = frozenset(normalize_role(r) for r in fallback_roles if r)

    # -- KPI reminders -------------------------------------------------------

    def fallback_candidates(self, directory: Dict[str, EvaluatorProfile]) -> List[EvaluatorProfile]:
        """Token-holding users eligible as fallback, sorted by user id."""
        candidates = [
            p for p in directory.values()
            if p.tokens and (not self.fallback_roles or p.role in self.fallback_roles)
        ]
        return sorted(candidates, key=lambda p: p.user_id)

    def select_evaluator(self, pending: PendingEvaluation, directory: Dict[str, EvaluatorProfile],
                         candidates: Sequence[EvaluatorProfile]) -> Optional[str]:
        assigned = directory.get(pending.assigned_evaluator_id) if pending.assigned_evaluator_id else None
        if assigned is not None and assigned.tokens:
            return assigned.user_id
        # First match in user-id order, not best match: several supervisors
        # may cover the same center and only the first one is reminded.
        for profile in candidates:
            if profile.covers(pending.centers):
                return profile.user_id
        return None

    def route_pending_evaluations(self, mentors: Sequence[Mentor], recent_keys,
                                  directory: Dict[str, EvaluatorProfile],
                                  form_names: Optional[Dict[str, str]] = None) -> RoutingResult:
        result = RoutingResult(pending=find_pending_evaluations(mentors, recent_keys, form_names))
        candidates = self.fallback_candidates(directory)
        for pending in result.pending:
            target = self.select_evaluator(pending, directory, candidates)
            if target is None:
                logger.info('No evaluator for mentor %s form %s', pending.mentor_id, pending.form_id)
                result.dropped.append(DroppedEvaluation(pending, DROP_NO_EVALUATOR))
                continue
            result.by_evaluator.setdefault(target, []).append(pending)
        return result

    # -- Event notifications -------------------------------------------------

    @staticmethod
    def event_owners(event: Event) -> List[str]:
        """Creator, owner and assignees of an event, without duplicates."""
        return event.participant_ids()

    @staticmethod
    def supervisors(users: Sequence[User]) -> List[str]:
        return _unique(u.id for u in users if u.is_supervisor())

    @staticmethod
    def quality_for_event(event: Event, users: Sequence[User]) -> List[str]:
        return _unique(
            u.id for u in users
            if u.has_role(ROLE_QUALITY) and u.covers_centers(event.centers)
        )

    def same_day_recipients(self, event: Event, users: Sequence[User]) -> List[str]:
        return _unique(self.event_owners(event) + self.quality_for_event(event, users))

    def deletion_recipients(self, event: Event, users: Sequence[User]) -> List[str]:
        """Assignees, owner and creator plus every supervisor, each once."""
        return _unique(event.assignees + event.owner_ids() + self.supervisors(users))

    @staticmethod
    def overdue_by_assignee(events: Sequence[Event]) -> Dict[str, List[Event]]:
        grouped: Dict[str, List[Event]] = OrderedDict()
        for event in events:
            for uid in event.assignees:
                grouped.setdefault(uid, []).append(event)
        return grouped


def _unique(values) -> List[str]:
    out = []
    for v in values:
        if v and v not in out:
            out.append(v)
    return out
