"""
Tests for validation helpers and the pending-login store.
"""
from datetime import timedelta

import pytest

from utils import PendingLoginStore, is_valid_email, parse_page, validate_password_strength


class TestValidation:

    @pytest.mark.parametrize("password,expected", [
        ("abc", False),
        ("abcde", False),
        ("abcdef", True),
        ("a much longer passphrase", True),
    ])
    def test_password_length(self, password, expected):
        is_valid, _ = validate_password_strength(password)
        assert is_valid is expected

    @pytest.mark.parametrize("email,expected", [
        ("a@b.com", True),
        ("first.last+tag@sub.example.org", True),
        ("no-at-sign.com", False),
        ("two@@example.com", False),
        ("spaces in@example.com", False),
        ("", False),
    ])
    def test_email(self, email, expected):
        assert is_valid_email(email) is expected

    @pytest.mark.parametrize("raw,expected", [
        (None, 1), ("", 1), ("abc", 1), ("0", 1), ("-3", 1), ("4", 4),
    ])
    def test_parse_page(self, raw, expected):
        assert parse_page(raw) == expected


class TestPendingLoginStore:

    def test_create_and_get(self, pending_logins):
        login_id = pending_logins.create({'user_id': 1})
        assert pending_logins.get(login_id) == {'user_id': 1}

    def test_unknown_or_missing_id(self, pending_logins):
        assert pending_logins.get(None) is None
        assert pending_logins.get("nope") is None

    def test_expires(self, pending_logins, clock):
        login_id = pending_logins.create({'user_id': 1})
        clock.advance(seconds=600)
        assert pending_logins.get(login_id) is None
        assert login_id not in pending_logins.logins

    def test_refresh_restarts_timer(self, pending_logins, clock):
        login_id = pending_logins.create({'user_id': 1, 'counter': 0})
        clock.advance(seconds=500)
        assert pending_logins.refresh(login_id, {'user_id': 1, 'counter': 1}) is True
        clock.advance(seconds=500)
        assert pending_logins.get(login_id) == {'user_id': 1, 'counter': 1}

    def test_record_failure(self, clock):
        store = PendingLoginStore(timeout_seconds=60, max_attempts=3, clock=clock)
        login_id = store.create({'user_id': 1})
        assert store.record_failure(login_id) == 2
        assert store.record_failure(login_id) == 1
        assert store.record_failure(login_id) == 0
        assert store.get(login_id) is None

    def test_refresh_keeps_attempts(self, clock):
        store = PendingLoginStore(timeout_seconds=60, max_attempts=3, clock=clock)
        login_id = store.create({'user_id': 1, 'counter': 0})
        assert store.record_failure(login_id) == 2

        assert store.refresh(login_id, {'user_id': 1, 'counter': 1}) is True
        assert store.record_failure(login_id) == 1
        assert store.record_failure(login_id) == 0
        assert store.get(login_id) is None

    def test_cleanup(self, pending_logins, clock):
        pending_logins.create({'user_id': 1})
        clock.advance(seconds=300)
        fresh = pending_logins.create({'user_id': 2})
        clock.advance(seconds=301)

        assert pending_logins.cleanup() == 1
        assert pending_logins.get(fresh) == {'user_id': 2}
