"""
Exam-prep Entitlements Test Suite

Tests for:
- Timestamp coercion and subscription list normalization
- Active subscription resolution and time remaining
- Expiry monitor transitions and warning de-duplication
- Feature gating for students and teachers
- Firestore persistence (mocked client)

Run tests with:
    pytest tests/ -v
"""
