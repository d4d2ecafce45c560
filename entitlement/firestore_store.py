"""
Firestore persistence for subscription entitlements.

User documents live in `users/{uid}` and carry:
- subscription: the student purchase list (any historical shape)
- teacherSubscription: the single teacher plan record
- hasActiveTeacherSubscription: denormalized flag for queries

Plans are read from `subscriptionPlans` and `teacherSubscriptionPlans`.
Collection names come from config.

Database errors are not caught here; only the pure entitlement computations
degrade silently on bad data.
"""

import os
from typing import Optional, List, Callable, Dict, Any

import firebase_admin
from firebase_admin import credentials, firestore

from entitlement.clock import Clock, resolve_clock
from entitlement.models import (
    SubscriptionRecord,
    SubscriptionStatusSummary,
    ExamAccess,
    TeacherSubscription,
    TeacherSubscriptionStatus,
    CreationAccess,
)
from entitlement.normalize import normalize_subscriptions
from entitlement.resolver import resolve_active, activate_subscription, summarize_status
from entitlement.feature_gate import (
    FeatureGateError,
    activate_teacher_subscription,
    check_test_access,
    check_test_creation_access,
    check_mock_test_quota,
    teacher_status,
)
from config import settings
from utils.logger import logger


class SubscriptionStoreError(Exception):
    """Base error for subscription persistence"""


class UserNotFoundError(SubscriptionStoreError):
    """Raised when the user document does not exist"""

    def __init__(self, uid: str):
        self.uid = uid
        super().__init__(f"User not found: {uid}")


class PlanNotFoundError(SubscriptionStoreError):
    """Raised when a purchased plan document does not exist"""

    def __init__(self, plan_id: str):
        self.plan_id = plan_id
        super().__init__(f"Plan not found: {plan_id}")


class RoleNotAllowedError(SubscriptionStoreError):
    """Raised when a non-teacher account tries to buy a teacher plan"""

    def __init__(self, uid: str, role: Optional[str]):
        self.uid = uid
        self.role = role
        super().__init__("Only teachers can purchase teacher plans")


# Role carried by teacher accounts on the user document
TEACHER_ROLE = "admin"


# Firebase Admin SDK app, initialized on first use
_firebase_app = None


def _get_firebase_app():
    """Lazy initialization of Firebase Admin SDK"""
    global _firebase_app
    if _firebase_app is not None:
        return _firebase_app

    # Check if already initialized
    try:
        _firebase_app = firebase_admin.get_app()
        return _firebase_app
    except ValueError:
        pass

    cred_path = settings.FIREBASE_CREDENTIALS_PATH
    if cred_path and os.path.exists(cred_path):
        cred = credentials.Certificate(cred_path)
        logger.info(f"Initializing Firebase with service account {cred_path}")
    else:
        # Application default credentials (GCP environments, emulator setups)
        cred = credentials.ApplicationDefault()

    _firebase_app = firebase_admin.initialize_app(cred)
    return _firebase_app


class FirestoreSubscriptionStore:
    """
    Reads and writes subscription state on user documents.

    Usage:
        store = FirestoreSubscriptionStore()
        active = store.fetch_active(uid)

        unsubscribe = store.watch(uid, monitor.apply_update)
    """

    def __init__(self, db=None):
        """
        Args:
            db: Firestore client; defaults to firestore.client() on the
                lazily initialized app
        """
        self._db = db

    @property
    def db(self):
        if self._db is None:
            self._db = firestore.client(app=_get_firebase_app())
        return self._db

    def _user_ref(self, uid: str):
        return self.db.collection(settings.USERS_COLLECTION).document(uid)

    def _get_user_data(self, uid: str) -> Dict[str, Any]:
        snapshot = self._user_ref(uid).get()
        if not snapshot.exists:
            raise UserNotFoundError(uid)
        return snapshot.to_dict() or {}

    # ========== Student subscriptions ==========

    def fetch_subscriptions(self, uid: str) -> List[SubscriptionRecord]:
        """Load and normalize a user's purchase list (empty if the user is missing)"""
        snapshot = self._user_ref(uid).get()
        if not snapshot.exists:
            logger.warning(f"No user document for {uid}")
            return []
        data = snapshot.to_dict() or {}
        return normalize_subscriptions(data.get('subscription'))

    def fetch_active(self, uid: str, clock: Optional[Clock] = None) -> Optional[SubscriptionRecord]:
        return resolve_active(self.fetch_subscriptions(uid), clock)

    def get_status(self, uid: str, clock: Optional[Clock] = None) -> SubscriptionStatusSummary:
        """
        Plan summary for profile and pricing pages.

        Raises:
            UserNotFoundError: If the user document does not exist
        """
        data = self._get_user_data(uid)
        return summarize_status(normalize_subscriptions(data.get('subscription')), clock)

    def check_test_access(
        self,
        uid: str,
        test_type: Optional[str] = None,
        clock: Optional[Clock] = None
    ) -> ExamAccess:
        """Student test access; demo tests skip the database read"""
        if test_type and str(test_type).lower() == "demo":
            return check_test_access([], test_type, clock)
        return check_test_access(self.fetch_subscriptions(uid), test_type, clock)

    def record_purchase(
        self,
        uid: str,
        plan_id: str,
        duration_days: Optional[int] = None,
        clock: Optional[Clock] = None
    ) -> List[SubscriptionRecord]:
        """
        Activate a verified purchase.

        Marks every existing record inactive, appends the new plan snapshot
        and writes the full list back.

        Args:
            uid: Purchasing user
            plan_id: Document id in the plans collection
            duration_days: Overrides the plan's duration
            clock: Time source for the new period

        Returns:
            The list as written

        Raises:
            UserNotFoundError: If the user document does not exist
            PlanNotFoundError: If the plan document does not exist
        """
        data = self._get_user_data(uid)

        plan_snapshot = self.db.collection(settings.PLANS_COLLECTION).document(plan_id).get()
        if not plan_snapshot.exists:
            raise PlanNotFoundError(plan_id)
        plan = plan_snapshot.to_dict() or {}

        updated = activate_subscription(
            normalize_subscriptions(data.get('subscription')),
            plan_id,
            plan=plan,
            duration_days=duration_days,
            clock=clock,
        )

        self._user_ref(uid).update({
            'subscription': [record.to_dict() for record in updated],
            'updatedAt': firestore.SERVER_TIMESTAMP,
        })
        logger.info(f"Activated plan {plan_id} for {uid} until {updated[-1].end_date.isoformat()}")
        return updated

    def watch(self, uid: str, on_update: Callable[[List[SubscriptionRecord]], None]) -> Callable[[], None]:
        """
        Listen for changes to the user's purchase list.

        on_update receives the full normalized list on every snapshot. The
        Firestore SDK calls back on its own thread; pair with
        ExpiryMonitor.feed_threadsafe to hand updates to an event loop.

        Returns:
            Callable that stops listening
        """
        def on_snapshot(doc_snapshots, changes, read_time):
            for snapshot in doc_snapshots:
                if not snapshot.exists:
                    continue
                data = snapshot.to_dict() or {}
                on_update(normalize_subscriptions(data.get('subscription')))

        watch = self._user_ref(uid).on_snapshot(on_snapshot)
        logger.debug(f"Watching subscription changes for {uid}")
        return watch.unsubscribe

    # ========== Teacher subscription ==========

    def get_teacher_status(self, uid: str, clock: Optional[Clock] = None) -> TeacherSubscriptionStatus:
        """
        Load the teacher subscription status, deactivating a lapsed record.

        Raises:
            UserNotFoundError: If the user document does not exist
        """
        clock = resolve_clock(clock)
        data = self._get_user_data(uid)

        raw = data.get('teacherSubscription')
        teacher_sub = TeacherSubscription.from_dict(raw) if raw else None
        status = teacher_status(teacher_sub, clock=clock)

        if status.expired:
            self._user_ref(uid).update({
                'teacherSubscription.isActive': False,
                'hasActiveTeacherSubscription': False,
            })
            logger.info(f"Teacher subscription for {uid} expired, marked inactive")
            return status

        if status.is_active and teacher_sub.plan_id:
            plan_snapshot = self.db.collection(settings.TEACHER_PLANS_COLLECTION).document(teacher_sub.plan_id).get()
            if plan_snapshot.exists:
                status.features = list((plan_snapshot.to_dict() or {}).get('features') or [])
            else:
                logger.warning(f"Teacher plan {teacher_sub.plan_id} not found for {uid}")

        return status

    def record_teacher_purchase(
        self,
        uid: str,
        plan_id: str,
        duration_days: Optional[int] = None,
        clock: Optional[Clock] = None
    ) -> TeacherSubscription:
        """
        Activate a verified teacher plan purchase.

        The new record replaces any previous teacher subscription, so the
        mock-test counter starts again from zero.

        Args:
            uid: Purchasing teacher
            plan_id: Document id in the teacher plans collection
            duration_days: Overrides the plan's duration
            clock: Time source for the new period

        Returns:
            The teacher subscription as written

        Raises:
            UserNotFoundError: If the user document does not exist
            PlanNotFoundError: If the plan document does not exist
            RoleNotAllowedError: If the user is not a teacher account
        """
        data = self._get_user_data(uid)

        plan_snapshot = self.db.collection(settings.TEACHER_PLANS_COLLECTION).document(plan_id).get()
        if not plan_snapshot.exists:
            raise PlanNotFoundError(plan_id)

        role = data.get('role')
        if role != TEACHER_ROLE:
            raise RoleNotAllowedError(uid, role)

        teacher_sub = activate_teacher_subscription(
            plan_id,
            plan=plan_snapshot.to_dict() or {},
            duration_days=duration_days,
            clock=clock,
        )

        self._user_ref(uid).update({
            'teacherSubscription': teacher_sub.to_dict(),
            'hasActiveTeacherSubscription': True,
            'updatedAt': firestore.SERVER_TIMESTAMP,
        })
        logger.info(f"Activated teacher plan {plan_id} for {uid} until {teacher_sub.end_date.isoformat()}")
        return teacher_sub

    def check_test_creation_access(
        self,
        uid: str,
        test_details: Optional[Dict[str, Any]] = None,
        clock: Optional[Clock] = None
    ) -> CreationAccess:
        """Whether the teacher may create a mock test; a missing user is a denial"""
        snapshot = self._user_ref(uid).get()
        if not snapshot.exists:
            return CreationAccess(can_create=False, reason="User not found")

        raw = (snapshot.to_dict() or {}).get('teacherSubscription')
        teacher_sub = TeacherSubscription.from_dict(raw) if raw else None
        return check_test_creation_access(teacher_sub, test_details, clock)

    def increment_mock_test_count(self, uid: str) -> Dict[str, Any]:
        """
        Count one generated mock test against the teacher's quota.

        Returns:
            Dict with the new count and the limit (0 meaning unlimited)

        Raises:
            UserNotFoundError: If the user document does not exist
            FeatureGateError: If there is no active subscription or the quota is used up
        """
        data = self._get_user_data(uid)
        raw = data.get('teacherSubscription')
        teacher_sub = TeacherSubscription.from_dict(raw) if raw else None

        allowed, message = check_mock_test_quota(teacher_sub)
        if not allowed:
            raise FeatureGateError(feature='mock_tests', required='quota', message=message)

        self._user_ref(uid).update({
            'teacherSubscription.mockTestsGenerated': firestore.Increment(1),
            'updatedAt': firestore.SERVER_TIMESTAMP,
        })

        new_count = teacher_sub.mock_tests_generated + 1
        logger.info(f"Mock test count for {uid}: {new_count}/{teacher_sub.mock_test_limit or 'unlimited'}")
        return {
            'success': True,
            'new_count': new_count,
            'limit': teacher_sub.mock_test_limit,
        }
