"""
Firestore document models using Python dataclasses.

Each persisted model includes:
  - An `id` field for the Firestore document ID
  - A `from_dict(data, doc_id)` classmethod for deserialization that
    tolerates the camelCase field names written by the dashboard client
  - A `to_dict()` method where the engine writes the document back

Derived values (PendingEvaluation, NotificationMessage) are never persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ROLE_ADMIN = "admin"
ROLE_QUALITY = "quality"
ROLE_EVALUATOR = "evaluator"
ROLE_COORDINATOR = "coordinator"
ROLE_USER = "user"

SUPERVISOR_ROLES = (ROLE_ADMIN, ROLE_QUALITY)

EVENT_PENDING = "pending"
EVENT_IN_PROGRESS = "in_progress"
EVENT_COMPLETED = "completed"
EVENT_CANCELLED = "cancelled"


def normalize_role(value) -> str:
    """Roles are compared case-insensitively; a missing role is a plain user."""
    if not value:
        return ROLE_USER
    return str(value).strip().lower()


def _parse_datetime(value) -> Optional[datetime]:
    """Convert a value to an aware datetime. Accepts datetime objects,
    ISO-format strings, epoch seconds and Firestore
    DatetimeWithNanoseconds objects."""
    if value is None:
        return None
    if isinstance(value, datetime):
        # Firestore DatetimeWithNanoseconds is a datetime subclass
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        # Handle ISO format strings (with or without trailing Z)
        value = value.replace("Z", "+00:00")
        try:
            parsed = datetime.fromisoformat(value)
        except (ValueError, TypeError):
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, dict) and "seconds" in value:
        return datetime.fromtimestamp(value["seconds"], tz=timezone.utc)
    return None


def _str_list(value) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value if v]


def _ref_id(value) -> Optional[str]:
    """Read a user reference stored either as a bare id or as {id|userId}."""
    if not value:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return value.get("id") or value.get("userId") or value.get("uid")
    return None


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ===========================================================================
# 1. UserDevice  (subcollection: users/{uid}/devices, doc id = token)
# ===========================================================================

@dataclass
class UserDevice:
    token: str = ""
    enabled: bool = True
    platform: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], doc_id: Optional[str] = None) -> UserDevice:
        data = data or {}
        return cls(
            token=doc_id or data.get("token") or "",
            # absence of the field means enabled
            enabled=data.get("enabled") is not False,
            platform=data.get("platform"),
            created_at=_parse_datetime(data.get("createdAt")),
        )


# ===========================================================================
# 2. User
# ===========================================================================

@dataclass
class User:
    id: Optional[str] = None
    name: str = ""
    email: str = ""
    role: str = ROLE_USER
    assigned_centers: List[str] = field(default_factory=list)
    fcm_token: Optional[str] = None
    notifications_enabled: bool = True

    @property
    def display_name(self) -> str:
        return self.name or self.email or (self.id or "")

    def has_role(self, *roles: str) -> bool:
        return self.role in roles

    def is_supervisor(self) -> bool:
        return self.role in SUPERVISOR_ROLES

    def covers_centers(self, centers) -> bool:
        """An empty assignment means "all centers"."""
        if not self.assigned_centers:
            return True
        return any(c in self.assigned_centers for c in centers or [])

    @classmethod
    def from_dict(cls, data: Dict[str, Any], doc_id: Optional[str] = None) -> User:
        data = data or {}
        return cls(
            id=doc_id or data.get("id"),
            name=data.get("name") or data.get("displayName") or "",
            email=data.get("email", ""),
            role=normalize_role(data.get("role")),
            assigned_centers=_str_list(data.get("assignedCenters")),
            fcm_token=data.get("fcmToken") or None,
            notifications_enabled=data.get("notificationsEnabled") is not False,
        )


# ===========================================================================
# 3. Mentor
# ===========================================================================

@dataclass
class Mentor:
    id: Optional[str] = None
    name: str = ""
    assigned_form_ids: List[str] = field(default_factory=list)
    assigned_evaluator_id: Optional[str] = None
    centers: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], doc_id: Optional[str] = None) -> Mentor:
        data = data or {}
        centers = data.get("assignedCenters")
        if not isinstance(centers, list):
            # legacy single-center field
            centers = [data["center"]] if data.get("center") else []
        return cls(
            id=doc_id or data.get("id"),
            name=data.get("name", ""),
            assigned_form_ids=_str_list(data.get("assignedFormIds")),
            assigned_evaluator_id=_ref_id(data.get("assignedEvaluator")),
            centers=[str(c) for c in centers if c],
        )


# ===========================================================================
# 4. PendingEvaluation (derived)
# ===========================================================================

@dataclass(frozen=True)
class PendingEvaluation:
    mentor_id: str
    mentor_name: str
    form_id: str
    form_name: str
    centers: Tuple[str, ...] = ()
    assigned_evaluator_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mentorId": self.mentor_id,
            "mentorName": self.mentor_name,
            "formId": self.form_id,
            "formName": self.form_name,
            "centers": list(self.centers),
            "assignedEvaluator": self.assigned_evaluator_id,
        }


# ===========================================================================
# 5. DedupRecord  (collection: _notificationLog)
# ===========================================================================

@dataclass
class DedupRecord:
    recipient_id: str
    kind: str
    period: str
    subject: Optional[str] = None
    sent_at: Optional[datetime] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.recipient_id,
            "kind": self.kind,
            "period": self.period,
            "subject": self.subject,
            "sentAt": self.sent_at or _now(),
            "meta": self.meta,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> DedupRecord:
        return cls(
            recipient_id=data.get("userId", ""),
            kind=data.get("kind", ""),
            period=data.get("period", ""),
            subject=data.get("subject"),
            sent_at=_parse_datetime(data.get("sentAt")),
            meta=data.get("meta") or {},
        )


# ===========================================================================
# 6. NotificationMessage (ephemeral)
# ===========================================================================

PRIORITY_NORMAL = "normal"
PRIORITY_HIGH = "high"


@dataclass(frozen=True)
class NotificationMessage:
    title: str
    body: str
    kind: str
    data: Dict[str, Any] = field(default_factory=dict)
    link: str = "/"
    priority: str = PRIORITY_NORMAL

    def data_payload(self) -> Dict[str, str]:
        """FCM data maps only carry strings."""
        payload = {k: "" if v is None else str(v) for k, v in self.data.items()}
        payload["type"] = self.kind
        payload.setdefault("url", self.link)
        return payload


# ===========================================================================
# 7. Event  (collection: events, read-only)
# ===========================================================================

@dataclass
class Event:
    id: Optional[str] = None
    title: str = ""
    status: str = EVENT_PENDING
    start: Optional[datetime] = None
    assignees: List[str] = field(default_factory=list)
    owner_id: Optional[str] = None
    created_by: Optional[str] = None
    centers: List[str] = field(default_factory=list)

    @property
    def display_title(self) -> str:
        return self.title or "Unnamed Event"

    def owner_ids(self) -> List[str]:
        """Creator and owner, in that order, without duplicates."""
        return _unique([self.created_by, self.owner_id])

    def participant_ids(self) -> List[str]:
        return _unique(self.owner_ids() + self.assignees)

    def is_open(self) -> bool:
        return self.status in (EVENT_PENDING, EVENT_IN_PROGRESS)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], doc_id: Optional[str] = None) -> Event:
        data = data or {}
        centers = data.get("centers") or data.get("assignedCenters")
        if not centers and data.get("center"):
            centers = [data["center"]]
        return cls(
            id=doc_id or data.get("id"),
            title=data.get("title", ""),
            status=str(data.get("status") or EVENT_PENDING).lower(),
            start=_parse_datetime(data.get("startDateTime")),
            assignees=_str_list(data.get("assignees")),
            owner_id=data.get("ownerId") or _ref_id(data.get("owner")),
            created_by=_ref_id(data.get("createdBy")),
            centers=_str_list(centers),
        )


def _unique(values) -> List[str]:
    seen = []
    for v in values:
        if v and v not in seen:
            seen.append(v)
    return seen
