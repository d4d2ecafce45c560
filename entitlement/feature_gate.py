"""
Feature Gate - Controls access to tests and dashboard sections based on subscription

Two audiences are gated:
- Students: test access from their purchase list (demo tests are always open)
- Teachers: admin dashboard sections, mock-test quota and content scope from
  the single teacher subscription record

Usage:
    # Student runtime check
    access = check_test_access(records, test_type="full")
    if not access.can_take_test:
        show_error(access.message)

    # Dashboard section check
    status = teacher_status(teacher_sub, plan_features)
    allowed, message = FeatureGate.check_section(status, "Upload Questions")

    # Decorator-based (for functions)
    @feature_required('Question Papers', lambda uid, *a, **kw: store.get_teacher_status(uid))
    async def list_papers(uid, ...):
        ...
"""

import inspect
import math
from datetime import timedelta
from functools import wraps
from typing import Optional, Tuple, Callable, Any, Dict, List, Mapping, Sequence

from entitlement.clock import Clock, resolve_clock
from entitlement.models import (
    SubscriptionRecord,
    ExamAccess,
    TeacherSubscription,
    TeacherSubscriptionStatus,
    CreationAccess,
)
from entitlement.resolver import resolve_active
from config import settings
from utils.logger import logger


SCOPE_ALL = "All"


class FeatureGateError(Exception):
    """Raised when a feature or quota is not available"""

    def __init__(self, feature: str, required: str, message: str):
        self.feature = feature
        self.required = required
        self.message = message
        super().__init__(message)


# ========== Student access ==========

def _is_demo(test_type: Optional[str]) -> bool:
    return bool(test_type) and str(test_type).lower() == "demo"


def check_test_access(
    subscriptions: Sequence[SubscriptionRecord],
    test_type: Optional[str] = None,
    clock: Optional[Clock] = None
) -> ExamAccess:
    """
    Decide whether a student may start a test.

    Args:
        subscriptions: Canonical record list
        test_type: Test type label ("demo" tests need no subscription)
        clock: Time source

    Returns:
        ExamAccess with the plan label and a user-facing message
    """
    if _is_demo(test_type):
        return ExamAccess(
            can_take_test=True,
            plan_type="Demo Test",
            message="Demo test - no subscription required",
        )

    active = resolve_active(subscriptions, clock)
    if active is not None:
        return ExamAccess(
            can_take_test=True,
            plan_type=active.plan or "Premium",
            message="Access granted",
        )

    return ExamAccess(can_take_test=False, message="Please subscribe to access this test")


def can_access_test(
    test: Mapping[str, Any],
    subscriptions: Sequence[SubscriptionRecord],
    clock: Optional[Clock] = None
) -> bool:
    """Whether a test card should be unlocked for the student"""
    if test.get('isDemo') or _is_demo(test.get('testType')):
        return True

    active = resolve_active(subscriptions, clock)
    if active is None:
        return False

    plan_type = active.plan_type or active.plan_name or ""
    return plan_type.lower() != "free"


def has_reached_test_limit(subscription: Optional[SubscriptionRecord], tests_taken: int) -> bool:
    """A test limit of 0 means unlimited; no subscription counts as reached"""
    if subscription is None:
        return True
    if subscription.test_limit == 0:
        return False
    return tests_taken >= subscription.test_limit


def plan_has_feature(features: Optional[Sequence[str]], feature_name: str) -> bool:
    """Case-insensitive substring match against a plan's feature descriptions"""
    if not features:
        return False
    needle = feature_name.lower()
    return any(needle in str(feature).lower() for feature in features)


# ========== Teacher subscription ==========

def is_lapsed(teacher_sub: TeacherSubscription, clock: Optional[Clock] = None) -> bool:
    """True when the record claims to be active but its end date has passed"""
    if teacher_sub.end_date is None:
        return True
    return resolve_clock(clock).now() >= teacher_sub.end_date


def teacher_status(
    teacher_sub: Optional[TeacherSubscription],
    plan_features: Optional[List[str]] = None,
    clock: Optional[Clock] = None
) -> TeacherSubscriptionStatus:
    """
    Derive the dashboard gating status from the teacher subscription record.

    Args:
        teacher_sub: Stored teacher record (None if never purchased)
        plan_features: Feature names of the purchased teacher plan
        clock: Time source

    Returns:
        TeacherSubscriptionStatus; `expired` is set when the record lapsed and
        should be deactivated in storage
    """
    if teacher_sub is None or not teacher_sub.is_active:
        return TeacherSubscriptionStatus()

    clock = resolve_clock(clock)
    if is_lapsed(teacher_sub, clock):
        return TeacherSubscriptionStatus(
            expired=True,
            end_date=teacher_sub.end_date,
            mock_tests_generated=teacher_sub.mock_tests_generated,
            mock_test_limit=teacher_sub.mock_test_limit,
        )

    remaining = teacher_sub.end_date - clock.now()
    return TeacherSubscriptionStatus(
        has_subscription=True,
        is_active=True,
        plan_id=teacher_sub.plan_id,
        plan_name=teacher_sub.plan_name,
        end_date=teacher_sub.end_date,
        days_remaining=math.ceil(remaining / timedelta(days=1)),
        mock_tests_generated=teacher_sub.mock_tests_generated,
        mock_test_limit=teacher_sub.mock_test_limit,
        exam_type=teacher_sub.exam_type,
        subject=teacher_sub.subject,
        class_level=teacher_sub.class_level,
        subcategory=teacher_sub.subcategory,
        features=list(plan_features or []),
    )


def activate_teacher_subscription(
    plan_id: str,
    plan: Optional[Mapping[str, Any]] = None,
    duration_days: Optional[int] = None,
    clock: Optional[Clock] = None
) -> TeacherSubscription:
    """
    Build the teacher record that replaces any previous one after a purchase.

    The mock-test counter restarts at zero. Scope fields are copied from the
    plan; a missing main category means the plan covers all categories.

    Args:
        plan_id: Purchased teacher plan document id
        plan: Plan document data
        duration_days: Length of the period; defaults to the plan's
            `duration`, then to DEFAULT_PLAN_DURATION_DAYS
        clock: Time source for the start date
    """
    plan = plan or {}
    if duration_days is None:
        duration_days = plan.get('duration') or settings.DEFAULT_PLAN_DURATION_DAYS

    start = resolve_clock(clock).now()
    return TeacherSubscription(
        plan_id=plan_id,
        plan_name=plan.get('name'),
        start_date=start,
        end_date=start + timedelta(days=duration_days),
        is_active=True,
        mock_tests_generated=0,
        mock_test_limit=plan.get('mockTestLimit') or 0,
        main_category=plan.get('mainCategory') or SCOPE_ALL,
        exam_type=plan.get('examType'),
        subject=plan.get('subject'),
        class_level=plan.get('classLevel'),
        subcategory=plan.get('subcategory'),
        purchased_at=start,
    )


class FeatureGate:
    """
    Controls access to admin dashboard sections.

    Each section is unlocked by the plan feature of the same name; sections
    mapped to None are always accessible.
    """

    DASHBOARD_SECTIONS: Dict[str, Optional[str]] = {
        'Dashboard': None,
        'Upload Questions': 'Upload Questions',
        'Question Papers': 'Question Papers',
        'Study Material': 'Study Material',
        'Test Attempts': 'Test Attempts',
        'Categories': 'Categories',
        'Approve/Reject Students': None,
        'Add Testimonials': 'Add Testimonials',
    }

    @classmethod
    def has_feature(cls, status: Optional[TeacherSubscriptionStatus], feature_name: str) -> bool:
        """
        Check if a plan feature is available.

        Args:
            status: Current teacher subscription status
            feature_name: Exact feature name as listed on the plan

        Returns:
            True if the subscription is active and the plan lists the feature
        """
        if status is None or not status.is_active or not status.has_subscription:
            return False
        return feature_name in status.features

    @classmethod
    def check_section(
        cls,
        status: Optional[TeacherSubscriptionStatus],
        label: str
    ) -> Tuple[bool, Optional[str]]:
        """
        Check if a dashboard section can be opened.

        Returns:
            Tuple of (is_allowed, error_message)
        """
        if label not in cls.DASHBOARD_SECTIONS:
            return True, None

        feature_name = cls.DASHBOARD_SECTIONS[label]
        if feature_name is None or cls.has_feature(status, feature_name):
            return True, None

        return False, f"{label} requires an active subscription"

    @classmethod
    def locked_sections(cls, status: Optional[TeacherSubscriptionStatus]) -> List[str]:
        """Labels of dashboard sections that are locked for this status"""
        return [label for label in cls.DASHBOARD_SECTIONS if not cls.check_section(status, label)[0]]


def check_mock_test_quota(teacher_sub: Optional[TeacherSubscription]) -> Tuple[bool, Optional[str]]:
    """Check the mock-test quota before generating another test"""
    if teacher_sub is None or not teacher_sub.is_active:
        return False, "No active subscription"

    limit = teacher_sub.mock_test_limit
    if limit > 0 and teacher_sub.mock_tests_generated >= limit:
        return False, "Mock test limit reached for your subscription"
    return True, None


def _outside_scope(granted: Optional[str], requested: Optional[str]) -> bool:
    return bool(granted) and granted != SCOPE_ALL and bool(requested) and requested != granted


def check_test_creation_access(
    teacher_sub: Optional[TeacherSubscription],
    test_details: Optional[Mapping[str, Any]] = None,
    clock: Optional[Clock] = None
) -> CreationAccess:
    """
    Decide whether a teacher may create a mock test with the given details.

    Args:
        teacher_sub: Stored teacher record
        test_details: mainCategory / examType / subject / classLevel / subcategory
            of the test being created
        clock: Time source

    Returns:
        CreationAccess with the denial reason, or the remaining quota
        (None meaning unlimited)
    """
    if teacher_sub is None or not teacher_sub.is_active:
        return CreationAccess(
            can_create=False,
            reason="No active subscription. Please purchase a plan to create mock tests.",
        )

    if is_lapsed(teacher_sub, clock):
        return CreationAccess(
            can_create=False,
            reason="Your subscription has expired. Please renew to continue.",
        )

    count = teacher_sub.mock_tests_generated
    limit = teacher_sub.mock_test_limit
    if limit > 0 and count >= limit:
        return CreationAccess(
            can_create=False,
            reason=f"You've reached your mock test limit ({limit}). Upgrade your plan to create more tests.",
        )

    details = test_details or {}
    main_category = details.get('mainCategory')
    exam_type = details.get('examType')
    subject = details.get('subject')
    class_level = details.get('classLevel')
    subcategory = details.get('subcategory')

    if _outside_scope(teacher_sub.main_category, main_category):
        return CreationAccess(
            can_create=False,
            reason=f'Your subscription only covers "{teacher_sub.main_category}" category. '
                   f'This category is for "{main_category}".',
        )

    for granted, requested in (
        (teacher_sub.exam_type, exam_type),
        (teacher_sub.subject, subject),
        (teacher_sub.class_level, class_level),
    ):
        if _outside_scope(granted, requested):
            return CreationAccess(
                can_create=False,
                reason=f"Your subscription only covers {granted}. This test is for {requested}.",
            )

    if _outside_scope(teacher_sub.subcategory, subcategory):
        return CreationAccess(
            can_create=False,
            reason=f"Your subscription only covers {teacher_sub.subject} → {teacher_sub.subcategory}. "
                   f"This test is for {subject} → {subcategory}.",
        )

    return CreationAccess(can_create=True, remaining=limit - count if limit > 0 else None)


def feature_required(feature_name: str, status_getter: Callable[..., Any], raise_error: bool = True):
    """
    Decorator to require a teacher plan feature for a function.

    Args:
        feature_name: Name of the required plan feature
        status_getter: Called with the wrapped function's arguments; returns the
            TeacherSubscriptionStatus (or an awaitable of it for async functions)
        raise_error: If True, raise FeatureGateError. If False, return None.

    Usage:
        @feature_required('Study Material', lambda uid: store.get_teacher_status(uid))
        def upload_material(uid, ...):
            ...
    """
    message = f"{feature_name} requires an active subscription"

    def _denied() -> None:
        if raise_error:
            raise FeatureGateError(feature=feature_name, required='active_subscription', message=message)
        logger.warning(f"Feature '{feature_name}' not available: {message}")

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            status = status_getter(*args, **kwargs)
            if inspect.isawaitable(status):
                status = await status

            if not FeatureGate.has_feature(status, feature_name):
                _denied()
                return None

            return await func(*args, **kwargs)

        @wraps(func)
        def sync_wrapper(*args, **kwargs) -> Any:
            if not FeatureGate.has_feature(status_getter(*args, **kwargs), feature_name):
                _denied()
                return None

            return func(*args, **kwargs)

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator
