#!/usr/bin/env python3
"""
Pytest Configuration and Shared Fixtures

Provides shared fixtures and configuration for all tests.
"""

import pytest
import sys
import os
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from entitlement.clock import FixedClock
from entitlement.models import SubscriptionRecord, TeacherSubscription


# ============================================================================
# ASYNCIO CONFIGURATION
# ============================================================================
# Note: pytest-asyncio is configured with asyncio_mode = "auto" in pyproject.toml
# The event loop is automatically managed per-function by default


NOW = datetime(2025, 3, 10, 12, 0, 0, tzinfo=timezone.utc)


# ============================================================================
# CLOCK FIXTURES
# ============================================================================

@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    """Clock frozen at NOW"""
    return FixedClock(NOW)


# ============================================================================
# SUBSCRIPTION FIXTURES
# ============================================================================

@pytest.fixture
def make_record():
    """
    Factory for subscription records ending relative to NOW.

    Usage:
        record = make_record(days=3, hours=2)
        expired = make_record(days=-1, is_active=True)
    """
    def _make(plan="plan_basic", is_active=True, end_date=None, **delta):
        if end_date is None and delta:
            end_date = NOW + timedelta(**delta)
        return SubscriptionRecord(
            plan=plan,
            start_date=NOW - timedelta(days=30),
            end_date=end_date,
            is_active=is_active,
        )
    return _make


@pytest.fixture
def make_teacher_sub():
    """Factory for teacher subscription records"""
    def _make(days=30, **overrides):
        data = dict(
            plan_id="teacher_pro",
            plan_name="Teacher Pro",
            start_date=NOW - timedelta(days=1),
            end_date=NOW + timedelta(days=days),
            is_active=True,
            mock_tests_generated=0,
            mock_test_limit=10,
        )
        data.update(overrides)
        return TeacherSubscription(**data)
    return _make


# ============================================================================
# FIRESTORE FIXTURES
# ============================================================================

def make_snapshot(data=None, exists=True):
    """Mock Firestore DocumentSnapshot"""
    snapshot = MagicMock()
    snapshot.exists = exists
    snapshot.to_dict.return_value = data if exists else None
    return snapshot


class MockFirestore:
    """
    Minimal stand-in for a firestore.Client.

    Documents are keyed by (collection, id); each document reference is a
    MagicMock so tests can assert on update() and on_snapshot() calls.
    """

    def __init__(self):
        self.documents = {}
        self.refs = {}

    def add(self, collection, doc_id, data):
        self.documents[(collection, doc_id)] = data

    def collection(self, name):
        collection = MagicMock()
        collection.document.side_effect = lambda doc_id: self.ref(name, doc_id)
        return collection

    def ref(self, collection, doc_id):
        key = (collection, doc_id)
        if key not in self.refs:
            ref = MagicMock()
            ref.get.side_effect = lambda: make_snapshot(
                self.documents.get(key), exists=key in self.documents
            )
            self.refs[key] = ref
        return self.refs[key]


@pytest.fixture
def mock_db():
    return MockFirestore()
