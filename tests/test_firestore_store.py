#!/usr/bin/env python3
"""
Firestore Subscription Store Tests

Runs the store against an in-memory mock of the Firestore client:
- Reading and normalizing stored subscription shapes
- Purchase activation writes and status summaries
- Snapshot listeners
- Teacher purchases, status deactivation, creation checks and mock-test counting
"""

import pytest
import sys
import os
from datetime import timedelta
from unittest.mock import MagicMock, patch

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from entitlement.feature_gate import FeatureGateError
from entitlement.firestore_store import (
    FirestoreSubscriptionStore,
    UserNotFoundError,
    PlanNotFoundError,
    RoleNotAllowedError,
    SubscriptionStoreError,
)


@pytest.fixture
def store(mock_db):
    return FirestoreSubscriptionStore(db=mock_db)


@pytest.fixture
def mock_firestore():
    """Replace the firestore module used for sentinels and increments"""
    with patch('entitlement.firestore_store.firestore') as mocked:
        mocked.SERVER_TIMESTAMP = "SERVER_TIMESTAMP"
        mocked.Increment.side_effect = lambda amount: ("INCREMENT", amount)
        yield mocked


# ============================================================================
# STUDENT SUBSCRIPTIONS
# ============================================================================

class TestFetchSubscriptions:
    """Tests for reading the purchase list"""

    def test_missing_user(self, store):
        assert store.fetch_subscriptions("ghost") == []

    def test_user_without_subscription(self, store, mock_db):
        mock_db.add("users", "u1", {"email": "a@example.com"})
        assert store.fetch_subscriptions("u1") == []

    def test_list_shape(self, store, mock_db, now):
        mock_db.add("users", "u1", {"subscription": [
            {"plan": "a", "endDate": now - timedelta(days=1), "isActive": False},
            {"plan": "b", "endDate": now + timedelta(days=5), "isActive": True},
        ]})
        assert [r.plan for r in store.fetch_subscriptions("u1")] == ["a", "b"]

    def test_legacy_shape(self, store, mock_db, now, clock):
        mock_db.add("users", "u1", {"subscription": {"plan": "legacy", "endDate": now + timedelta(days=1)}})
        assert store.fetch_active("u1", clock).plan == "legacy"

    def test_indexed_shape(self, store, mock_db, now, clock):
        mock_db.add("users", "u1", {"subscription": {
            "1": {"plan": "b", "endDate": now + timedelta(days=9)},
            "0": {"plan": "a", "endDate": now + timedelta(days=3)},
        }})
        assert store.fetch_active("u1", clock).plan == "a"

    def test_check_test_access(self, store, mock_db, now, clock):
        mock_db.add("users", "u1", {"subscription": [{"plan": "gold", "endDate": now + timedelta(days=1)}]})
        assert store.check_test_access("u1", "full", clock).can_take_test is True
        assert store.check_test_access("ghost", "full", clock).can_take_test is False

    def test_demo_access_skips_read(self, store, mock_db):
        assert store.check_test_access("u1", "demo").can_take_test is True
        assert mock_db.refs == {}


class TestRecordPurchase:
    """Tests for purchase activation writes"""

    PLAN = {'name': 'Gold', 'duration': 60, 'price': 999, 'features': ['Mock tests']}

    def test_writes_full_list(self, store, mock_db, mock_firestore, now, clock):
        mock_db.add("users", "u1", {"subscription": [
            {"plan": "old", "endDate": now + timedelta(days=2), "isActive": True},
        ]})
        mock_db.add("subscriptionPlans", "gold", self.PLAN)

        updated = store.record_purchase("u1", "gold", clock=clock)

        assert [r.plan for r in updated] == ["old", "gold"]
        written = mock_db.ref("users", "u1").update.call_args[0][0]
        assert written['updatedAt'] == "SERVER_TIMESTAMP"
        assert [s['isActive'] for s in written['subscription']] == [False, True]
        assert written['subscription'][1]['endDate'] == now + timedelta(days=60)
        assert written['subscription'][1]['planName'] == "Gold"

    def test_unknown_user(self, store, mock_db):
        mock_db.add("subscriptionPlans", "gold", self.PLAN)
        with pytest.raises(UserNotFoundError):
            store.record_purchase("ghost", "gold")

    def test_unknown_plan(self, store, mock_db):
        mock_db.add("users", "u1", {})
        with pytest.raises(PlanNotFoundError) as exc_info:
            store.record_purchase("u1", "platinum")
        assert exc_info.value.plan_id == "platinum"
        assert isinstance(exc_info.value, SubscriptionStoreError)
        mock_db.ref("users", "u1").update.assert_not_called()


class TestGetStatus:
    """Tests for the stored plan summary"""

    def test_active_plan(self, store, mock_db, now, clock):
        mock_db.add("users", "u1", {"subscription": [
            {"plan": "gold", "planName": "Gold", "endDate": now + timedelta(days=4, hours=1)},
        ]})
        summary = store.get_status("u1", clock)
        assert summary.plan_type == "gold"
        assert summary.is_active is True
        assert summary.days_remaining == 5

    def test_no_active_plan_is_free(self, store, mock_db, now, clock):
        mock_db.add("users", "u1", {"subscription": [
            {"plan": "gold", "endDate": now - timedelta(days=1), "isActive": True},
        ]})
        assert store.get_status("u1", clock).to_dict() == {
            'planType': 'Free',
            'isActive': False,
            'subscriptionEndDate': None,
            'daysRemaining': 0,
        }

    def test_unknown_user(self, store):
        with pytest.raises(UserNotFoundError):
            store.get_status("ghost")


class TestWatch:
    """Tests for snapshot listeners"""

    def test_callback_receives_normalized_list(self, store, mock_db, now):
        on_update = MagicMock()
        ref = mock_db.ref("users", "u1")
        ref.on_snapshot.return_value.unsubscribe = MagicMock(name="unsubscribe")

        unsubscribe = store.watch("u1", on_update)

        callback = ref.on_snapshot.call_args[0][0]
        snapshot = MagicMock(exists=True)
        snapshot.to_dict.return_value = {"subscription": {"0": {"plan": "a", "endDate": now}}}
        callback([snapshot], [], now)

        records = on_update.call_args[0][0]
        assert [r.plan for r in records] == ["a"]
        assert unsubscribe is ref.on_snapshot.return_value.unsubscribe

    def test_missing_document_skipped(self, store, mock_db, now):
        on_update = MagicMock()
        ref = mock_db.ref("users", "u1")
        store.watch("u1", on_update)

        callback = ref.on_snapshot.call_args[0][0]
        callback([MagicMock(exists=False)], [], now)
        on_update.assert_not_called()


# ============================================================================
# TEACHER SUBSCRIPTION
# ============================================================================

def teacher_doc(now, days=30, **overrides):
    data = {
        "planId": "teacher_pro",
        "planName": "Teacher Pro",
        "startDate": now - timedelta(days=1),
        "endDate": now + timedelta(days=days),
        "isActive": True,
        "mockTestsGenerated": 2,
        "mockTestLimit": 10,
    }
    data.update(overrides)
    return {"teacherSubscription": data, "hasActiveTeacherSubscription": True}


class TestTeacherStatus:
    """Tests for teacher status reads"""

    def test_active_loads_plan_features(self, store, mock_db, now, clock):
        mock_db.add("users", "t1", teacher_doc(now))
        mock_db.add("teacherSubscriptionPlans", "teacher_pro", {"features": ["Upload Questions"]})

        status = store.get_teacher_status("t1", clock)
        assert status.is_active is True
        assert status.features == ["Upload Questions"]
        mock_db.ref("users", "t1").update.assert_not_called()

    def test_missing_plan_has_no_features(self, store, mock_db, now, clock):
        mock_db.add("users", "t1", teacher_doc(now))
        assert store.get_teacher_status("t1", clock).features == []

    def test_lapsed_record_deactivated(self, store, mock_db, now, clock):
        mock_db.add("users", "t1", teacher_doc(now, days=-1))

        status = store.get_teacher_status("t1", clock)
        assert status.expired is True
        mock_db.ref("users", "t1").update.assert_called_once_with({
            'teacherSubscription.isActive': False,
            'hasActiveTeacherSubscription': False,
        })

    def test_no_teacher_record(self, store, mock_db, clock):
        mock_db.add("users", "t1", {})
        assert store.get_teacher_status("t1", clock).has_subscription is False

    def test_unknown_user(self, store):
        with pytest.raises(UserNotFoundError):
            store.get_teacher_status("ghost")


class TestIncrementMockTestCount:
    """Tests for mock-test counting"""

    def test_increments_atomically(self, store, mock_db, mock_firestore, now):
        mock_db.add("users", "t1", teacher_doc(now))

        result = store.increment_mock_test_count("t1")

        assert result == {'success': True, 'new_count': 3, 'limit': 10}
        mock_db.ref("users", "t1").update.assert_called_once_with({
            'teacherSubscription.mockTestsGenerated': ("INCREMENT", 1),
            'updatedAt': "SERVER_TIMESTAMP",
        })

    def test_limit_reached(self, store, mock_db, mock_firestore, now):
        mock_db.add("users", "t1", teacher_doc(now, mockTestsGenerated=10))
        with pytest.raises(FeatureGateError) as exc_info:
            store.increment_mock_test_count("t1")
        assert exc_info.value.message == "Mock test limit reached for your subscription"
        mock_db.ref("users", "t1").update.assert_not_called()

    def test_no_subscription(self, store, mock_db, mock_firestore):
        mock_db.add("users", "t1", {})
        with pytest.raises(FeatureGateError):
            store.increment_mock_test_count("t1")


class TestRecordTeacherPurchase:
    """Tests for teacher plan activation writes"""

    PLAN = {
        'name': 'Teacher Pro',
        'duration': 90,
        'mockTestLimit': 25,
        'examType': 'JEE',
        'subject': 'Physics',
        'features': ['Upload Questions'],
    }

    def test_writes_new_record(self, store, mock_db, mock_firestore, now, clock):
        mock_db.add("users", "t1", dict(teacher_doc(now, mockTestsGenerated=8), role="admin"))
        mock_db.add("teacherSubscriptionPlans", "teacher_pro", self.PLAN)

        teacher_sub = store.record_teacher_purchase("t1", "teacher_pro", clock=clock)

        assert teacher_sub.mock_tests_generated == 0
        assert teacher_sub.end_date == now + timedelta(days=90)
        written = mock_db.ref("users", "t1").update.call_args[0][0]
        assert written['hasActiveTeacherSubscription'] is True
        assert written['updatedAt'] == "SERVER_TIMESTAMP"

        record = written['teacherSubscription']
        assert record['planId'] == "teacher_pro"
        assert record['planName'] == "Teacher Pro"
        assert record['isActive'] is True
        assert record['startDate'] == now
        assert record['purchasedAt'] == now
        assert record['mockTestsGenerated'] == 0
        assert record['mockTestLimit'] == 25
        assert record['mainCategory'] == "All"
        assert record['examType'] == "JEE"
        assert record['subject'] == "Physics"

    def test_purchase_unlocks_creation(self, store, mock_db, mock_firestore, clock):
        mock_db.add("users", "t1", {"role": "admin"})
        mock_db.add("teacherSubscriptionPlans", "teacher_pro", self.PLAN)

        store.record_teacher_purchase("t1", "teacher_pro", clock=clock)
        mock_db.add("users", "t1", mock_db.ref("users", "t1").update.call_args[0][0])

        access = store.check_test_creation_access("t1", {"examType": "JEE", "subject": "Physics"}, clock)
        assert access.can_create is True
        assert access.remaining == 25

    def test_student_account_rejected(self, store, mock_db, mock_firestore):
        mock_db.add("users", "s1", {"role": "student"})
        mock_db.add("teacherSubscriptionPlans", "teacher_pro", self.PLAN)

        with pytest.raises(RoleNotAllowedError) as exc_info:
            store.record_teacher_purchase("s1", "teacher_pro")
        assert str(exc_info.value) == "Only teachers can purchase teacher plans"
        assert exc_info.value.role == "student"
        mock_db.ref("users", "s1").update.assert_not_called()

    def test_unknown_user(self, store, mock_db):
        mock_db.add("teacherSubscriptionPlans", "teacher_pro", self.PLAN)
        with pytest.raises(UserNotFoundError):
            store.record_teacher_purchase("ghost", "teacher_pro")

    def test_unknown_plan(self, store, mock_db):
        mock_db.add("users", "t1", {"role": "admin"})
        with pytest.raises(PlanNotFoundError):
            store.record_teacher_purchase("t1", "teacher_gold")
        mock_db.ref("users", "t1").update.assert_not_called()


class TestCheckTestCreationAccess:
    """Tests for mock-test creation checks against the stored record"""

    def test_unknown_user(self, store, clock):
        access = store.check_test_creation_access("ghost", clock=clock)
        assert access.can_create is False
        assert access.reason == "User not found"

    def test_active_within_quota(self, store, mock_db, now, clock):
        mock_db.add("users", "t1", teacher_doc(now))
        access = store.check_test_creation_access("t1", clock=clock)
        assert access.can_create is True
        assert access.remaining == 8

    def test_quota_used_up(self, store, mock_db, now, clock):
        mock_db.add("users", "t1", teacher_doc(now, mockTestsGenerated=10))
        access = store.check_test_creation_access("t1", clock=clock)
        assert access.can_create is False
        assert "mock test limit (10)" in access.reason

    def test_no_teacher_record(self, store, mock_db, clock):
        mock_db.add("users", "t1", {"role": "admin"})
        assert store.check_test_creation_access("t1", clock=clock).can_create is False
