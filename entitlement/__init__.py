"""
Subscription Entitlements for the exam-prep platform

Decides whether a user currently holds a paid plan and what it unlocks:
- Resolving the active subscription from the stored purchase list
- Time remaining and its display strings
- Expiry monitoring with one-shot warnings while a session is open
- Feature gating for student tests and the teacher dashboard

Architecture:
- Stored data is normalized once at the boundary (normalize_subscriptions)
- Resolver and gates are pure functions of (records, clock)
- The monitor reduces polling ticks and pushed snapshots into one state
- FirestoreSubscriptionStore is the only module that touches the database
"""

from entitlement.clock import Clock, SystemClock, FixedClock
from entitlement.models import (
    SubscriptionRecord,
    TimeRemaining,
    EntitlementState,
    Notification,
    NotificationKind,
    Severity,
    TeacherSubscription,
    TeacherSubscriptionStatus,
)
from entitlement.normalize import normalize_subscriptions
from entitlement.resolver import (
    resolve_active,
    is_active,
    time_remaining,
    format_time_remaining,
    format_time_remaining_short,
    days_remaining,
    summarize_status,
    describe_status,
    activate_subscription,
)
from entitlement.monitor import ExpiryMonitor, WarningBandNotifier
from entitlement.feature_gate import (
    FeatureGate,
    FeatureGateError,
    feature_required,
    check_test_access,
    check_test_creation_access,
    activate_teacher_subscription,
    teacher_status,
)
from entitlement.firestore_store import (
    FirestoreSubscriptionStore,
    SubscriptionStoreError,
    UserNotFoundError,
    PlanNotFoundError,
    RoleNotAllowedError,
)

__all__ = [
    # Time
    'Clock',
    'SystemClock',
    'FixedClock',
    # Models
    'SubscriptionRecord',
    'TimeRemaining',
    'EntitlementState',
    'Notification',
    'NotificationKind',
    'Severity',
    'TeacherSubscription',
    'TeacherSubscriptionStatus',
    # Resolver
    'normalize_subscriptions',
    'resolve_active',
    'is_active',
    'time_remaining',
    'format_time_remaining',
    'format_time_remaining_short',
    'days_remaining',
    'summarize_status',
    'describe_status',
    'activate_subscription',
    # Monitor
    'ExpiryMonitor',
    'WarningBandNotifier',
    # Feature gating
    'FeatureGate',
    'FeatureGateError',
    'feature_required',
    'check_test_access',
    'check_test_creation_access',
    'activate_teacher_subscription',
    'teacher_status',
    # Persistence
    'FirestoreSubscriptionStore',
    'SubscriptionStoreError',
    'UserNotFoundError',
    'PlanNotFoundError',
    'RoleNotAllowedError',
]
