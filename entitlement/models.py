"""
Subscription Data Models

Defines the core data structures for the entitlement system: the purchase
records stored on a user document, the derived time-remaining view, status
summaries for the UI, the teacher (admin dashboard) subscription and the
notifications raised by the expiry monitor.

Stored documents use camelCase keys; the dataclasses use snake_case and
convert at the edges with from_dict()/to_dict().
"""

from enum import Enum
from dataclasses import dataclass, field, replace
from typing import Optional, List, Dict, Any, Mapping
from datetime import datetime

from entitlement.timestamps import to_datetime


class EntitlementState(str, Enum):
    """Monitor states"""
    ACTIVE = "active"
    INACTIVE = "inactive"


class NotificationKind(str, Enum):
    """Kinds of user-facing subscription alerts"""
    EXPIRED = "expired"
    EXPIRING_TODAY = "expiring_today"
    EXPIRING_SOON = "expiring_soon"
    EXPIRING = "expiring"


class Severity(str, Enum):
    """Severity tag consumed by the toast/alert presentation layer"""
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


def _as_bool(value: Any) -> Optional[bool]:
    if value is None:
        return None
    return bool(value)


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass
class SubscriptionRecord:
    """
    One purchase entry from a user's subscription list.

    The plan snapshot fields are copied from the plan at purchase time and are
    never re-derived. Keys this model does not know are kept in `extra` so a
    write-back does not lose them.
    """
    plan: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    # None means the flag was never written; only an explicit False disqualifies
    is_active: Optional[bool] = None

    # Purchase-time plan snapshot
    plan_name: Optional[str] = None
    plan_type: Optional[str] = None
    price: Optional[float] = None
    duration: Optional[int] = None
    features: List[str] = field(default_factory=list)
    test_limit: int = 0
    description: str = ""
    subject: Optional[str] = None
    subcategory: Optional[str] = None
    main_category: Optional[str] = None

    extra: Dict[str, Any] = field(default_factory=dict)

    _KNOWN_KEYS = (
        'plan', 'startDate', 'endDate', 'isActive', 'planName', 'planType',
        'price', 'duration', 'features', 'testLimit', 'description',
        'subject', 'subcategory', 'mainCategory',
    )

    def __post_init__(self):
        # Dates are always aware UTC, however the record was built
        self.start_date = to_datetime(self.start_date)
        self.end_date = to_datetime(self.end_date)

    def deactivated(self) -> 'SubscriptionRecord':
        """Copy of this record flagged inactive"""
        return replace(self, is_active=False, features=list(self.features), extra=dict(self.extra))

    def to_dict(self) -> dict:
        """Convert to the stored document shape"""
        data = dict(self.extra)
        data.update({
            'plan': self.plan,
            'startDate': self.start_date,
            'endDate': self.end_date,
            'features': list(self.features),
            'testLimit': self.test_limit,
            'description': self.description,
        })
        if self.is_active is not None:
            data['isActive'] = self.is_active
        optional = {
            'planName': self.plan_name,
            'planType': self.plan_type,
            'price': self.price,
            'duration': self.duration,
            'subject': self.subject,
            'subcategory': self.subcategory,
            'mainCategory': self.main_category,
        }
        data.update({key: value for key, value in optional.items() if value is not None})
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'SubscriptionRecord':
        """Create from a stored document; tolerant of missing or odd fields"""
        features = data.get('features') or []
        if not isinstance(features, (list, tuple)):
            features = []

        return cls(
            plan=data.get('plan'),
            start_date=to_datetime(data.get('startDate')),
            end_date=to_datetime(data.get('endDate')),
            is_active=_as_bool(data.get('isActive')),
            plan_name=data.get('planName'),
            plan_type=data.get('planType'),
            price=data.get('price'),
            duration=data.get('duration'),
            features=[str(f) for f in features],
            test_limit=_as_int(data.get('testLimit')),
            description=data.get('description') or "",
            subject=data.get('subject'),
            subcategory=data.get('subcategory'),
            main_category=data.get('mainCategory'),
            extra={k: v for k, v in data.items() if k not in cls._KNOWN_KEYS},
        )


@dataclass
class TimeRemaining:
    """Floored wall-clock difference between an end date and now"""
    days: int = 0
    hours: int = 0
    minutes: int = 0
    total_hours: int = 0
    total_minutes: int = 0
    is_expiring_today: bool = False
    is_expiring_soon: bool = False

    @property
    def is_zero(self) -> bool:
        return self.days == 0 and self.hours == 0 and self.minutes == 0

    def as_tuple(self) -> tuple:
        return (self.days, self.hours, self.minutes)


@dataclass
class SubscriptionStatusSummary:
    """Plan summary shown on profile and pricing pages"""
    plan_type: str = "Free"
    is_active: bool = False
    end_date: Optional[datetime] = None
    days_remaining: int = 0

    def to_dict(self) -> dict:
        return {
            'planType': self.plan_type,
            'isActive': self.is_active,
            'subscriptionEndDate': self.end_date.isoformat() if self.end_date else None,
            'daysRemaining': self.days_remaining,
        }


@dataclass
class StatusBadge:
    """Short status label with a display color"""
    status: str
    color: str
    message: str


@dataclass
class ExamAccess:
    """Result of a student test access check"""
    can_take_test: bool
    plan_type: Optional[str] = None
    message: str = ""


@dataclass
class TeacherSubscription:
    """
    The single teacher plan stored on an admin's user document.

    Unlike student purchases this record is overwritten on each purchase and
    carries a mock-test quota plus an optional content scope.
    """
    plan_id: Optional[str] = None
    plan_name: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: bool = False
    mock_tests_generated: int = 0
    mock_test_limit: int = 0

    # Content scope ("All" or missing means unrestricted)
    main_category: Optional[str] = None
    exam_type: Optional[str] = None
    subject: Optional[str] = None
    class_level: Optional[str] = None
    subcategory: Optional[str] = None

    purchased_at: Optional[datetime] = None

    def __post_init__(self):
        self.start_date = to_datetime(self.start_date)
        self.end_date = to_datetime(self.end_date)
        self.purchased_at = to_datetime(self.purchased_at)

    def to_dict(self) -> dict:
        return {
            'planId': self.plan_id,
            'planName': self.plan_name,
            'startDate': self.start_date,
            'endDate': self.end_date,
            'isActive': self.is_active,
            'mockTestsGenerated': self.mock_tests_generated,
            'mockTestLimit': self.mock_test_limit,
            'mainCategory': self.main_category,
            'examType': self.exam_type,
            'subject': self.subject,
            'classLevel': self.class_level,
            'subcategory': self.subcategory,
            'purchasedAt': self.purchased_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'TeacherSubscription':
        return cls(
            plan_id=data.get('planId'),
            plan_name=data.get('planName'),
            start_date=to_datetime(data.get('startDate')),
            end_date=to_datetime(data.get('endDate')),
            is_active=bool(data.get('isActive', False)),
            mock_tests_generated=_as_int(data.get('mockTestsGenerated')),
            mock_test_limit=_as_int(data.get('mockTestLimit')),
            main_category=data.get('mainCategory'),
            exam_type=data.get('examType'),
            subject=data.get('subject'),
            class_level=data.get('classLevel'),
            subcategory=data.get('subcategory'),
            purchased_at=to_datetime(data.get('purchasedAt')),
        )


@dataclass
class TeacherSubscriptionStatus:
    """Derived teacher subscription state used for dashboard gating"""
    has_subscription: bool = False
    is_active: bool = False
    expired: bool = False
    plan_id: Optional[str] = None
    plan_name: Optional[str] = None
    end_date: Optional[datetime] = None
    days_remaining: int = 0
    mock_tests_generated: int = 0
    mock_test_limit: int = 0
    exam_type: Optional[str] = None
    subject: Optional[str] = None
    class_level: Optional[str] = None
    subcategory: Optional[str] = None
    features: List[str] = field(default_factory=list)


@dataclass
class CreationAccess:
    """Result of a teacher mock-test creation check"""
    can_create: bool
    reason: Optional[str] = None
    # None means unlimited
    remaining: Optional[int] = None


@dataclass
class Notification:
    """One user-facing alert emitted by the expiry monitor"""
    kind: NotificationKind
    severity: Severity
    title: str
    message: str
    key: str
    duration_ms: int = 5000

    def to_dict(self) -> dict:
        return {
            'kind': self.kind.value,
            'severity': self.severity.value,
            'title': self.title,
            'message': self.message,
            'key': self.key,
            'duration_ms': self.duration_ms,
        }
