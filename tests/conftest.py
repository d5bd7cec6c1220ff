"""
Shared fixtures for BurnVault tests.
"""
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Flat module layout: make the project root importable
sys.path.insert(0, str(Path(__file__).parent.parent))

from crypto_utils import CryptoUtils
from exceptions import DeliveryFailedError
from handlers import WebHandlers, create_app
from ledger import Ledger
from lifecycle import SecretLifecycle
from storage import Storage
from utils import PendingLoginStore
from vault import SecretVault


class FakeClock:
    """Settable clock returning aware UTC datetimes."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeMailer:
    """Records outgoing emails instead of sending them."""

    def __init__(self):
        self.sent = []
        self.fail = False
        self.dry_run = False

    def _record(self, kind, to_email, **details):
        if self.fail:
            raise DeliveryFailedError(f"SMTP down while sending {kind} to {to_email}")
        if self.dry_run:
            return False
        self.sent.append(dict(kind=kind, to=to_email, **details))
        return True

    def send_secret_link(self, to_email, link, expires_at=None, sender_name=None):
        return self._record('secret_link', to_email, link=link, expires_at=expires_at)

    def send_otp(self, to_email, username, code, valid_minutes):
        return self._record('otp', to_email, code=code)

    def send_login_notice(self, to_email, username, ip_address, user_agent, when):
        return self._record('login_notice', to_email)

    def send_new_password_request(self, admin_email, recipient_email, when):
        return self._record('new_password_request', admin_email, recipient=recipient_email)

    def last(self, kind):
        matching = [mail for mail in self.sent if mail['kind'] == kind]
        return matching[-1] if matching else None


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage(tmp_path):
    """Fresh SQLite database with the schema applied."""
    storage = Storage(str(tmp_path / "burnvault-test.db"))
    storage.init_db()
    yield storage
    storage.close()


@pytest.fixture
def ledger(storage):
    return Ledger(storage)


@pytest.fixture
def vault():
    return SecretVault()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def lifecycle(vault, ledger, mailer, clock):
    return SecretLifecycle(vault, ledger, mailer, base_url="https://burn.example", clock=clock)


@pytest.fixture
def crypto():
    return CryptoUtils("test-pepper")


@pytest.fixture
def pending_logins(clock):
    return PendingLoginStore(timeout_seconds=600, max_attempts=5, clock=clock)


@pytest.fixture
def make_app(lifecycle, storage, crypto, mailer, pending_logins):
    """Factory for a Flask app wired to the test components."""
    def factory(**options):
        handlers = WebHandlers(
            lifecycle, storage, crypto, options.pop('mailer', mailer), pending_logins,
            admin_email=options.pop('admin_email', 'admin@burn.example'),
            page_size=options.pop('page_size', 10),
            allow_anonymous=options.pop('allow_anonymous', False)
        )
        app = create_app(handlers, "test-secret-key")
        app.config['TESTING'] = True
        return app
    return factory


@pytest.fixture
def client(make_app):
    """Flask test client."""
    with make_app().test_client() as client:
        yield client
