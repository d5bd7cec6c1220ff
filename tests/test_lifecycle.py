"""
Tests for the secret lifecycle: create, reveal, expiration and the
consistency between vault and ledger.
"""
import threading
from datetime import timedelta

import pytest

from exceptions import (
    InvalidSecretRequestError,
    SecretAlreadyUsedError,
    SecretExpiredError,
    SecretNotFoundError,
    StorageUnavailableError,
)
from ledger import Ledger
from lifecycle import SecretLifecycle, expiration_for
from models import STATUS_ACTIVE, STATUS_EXPIRED, STATUS_USED
from vault import SecretVault


class FlakyLedger(Ledger):
    """Ledger whose calls can be switched off."""

    def __init__(self, storage, fail_record=False, fail_mark_used=False, fail_lookup=False):
        super().__init__(storage)
        self.fail_record = fail_record
        self.fail_mark_used = fail_mark_used
        self.fail_lookup = fail_lookup

    def find_by_token(self, token):
        if self.fail_lookup:
            raise StorageUnavailableError("unable to open database file")
        return super().find_by_token(token)

    def record(self, *args, **kwargs):
        if self.fail_record:
            raise StorageUnavailableError("database is locked")
        return super().record(*args, **kwargs)

    def mark_used(self, *args, **kwargs):
        if self.fail_mark_used:
            raise StorageUnavailableError("database is locked")
        return super().mark_used(*args, **kwargs)


class TestExpirationFor:
    """Named durations."""

    def test_named_durations(self, clock):
        now = clock()
        assert expiration_for('1m', now) == now + timedelta(minutes=1)
        assert expiration_for('24h', now) == now + timedelta(hours=24)
        assert expiration_for('7d', now) == now + timedelta(days=7)

    def test_never(self, clock):
        assert expiration_for('never', clock()) is None
        assert expiration_for(None, clock()) is None

    def test_unknown(self, clock):
        with pytest.raises(ValueError):
            expiration_for('3w', clock())


class TestCreate:
    """Creating secrets."""

    def test_round_trip(self, lifecycle):
        created = lifecycle.create_secret("hello", None, "a@b.com", "never")
        assert lifecycle.reveal_secret(created.token) == "hello"

    def test_creates_ledger_record(self, lifecycle, ledger, clock):
        created = lifecycle.create_secret("hello", 3, "a@b.com", "1h")

        record = ledger.find_by_token(created.token)
        assert record.id == created.record_id
        assert record.user_id == 3
        assert record.status == STATUS_ACTIVE
        assert record.expires_at == clock() + timedelta(hours=1)
        assert created.url == f"/password/{created.token}"

    def test_ledger_never_holds_plaintext(self, lifecycle, storage):
        lifecycle.create_secret("correct horse battery staple", 1, "a@b.com")
        for row in storage.query_all("SELECT * FROM passwords"):
            assert "correct horse battery staple" not in [str(value) for value in tuple(row)]

    def test_empty_secret_rejected(self, lifecycle, vault):
        with pytest.raises(ValueError):
            lifecycle.create_secret("", 1, "a@b.com")
        assert len(vault) == 0

    def test_unknown_ttl_rejected(self, lifecycle, vault):
        with pytest.raises(InvalidSecretRequestError):
            lifecycle.create_secret("hello", 1, "a@b.com", "forever")
        assert len(vault) == 0

    def test_ledger_failure_leaves_readable_orphan(self, storage, clock):
        """The vault write is kept when the ledger insert fails."""
        vault = SecretVault()
        lifecycle = SecretLifecycle(vault, FlakyLedger(storage, fail_record=True), clock=clock)

        created = lifecycle.create_secret("orphan", 1, "a@b.com", "1h")
        assert created.record_id is None
        assert created.token in vault

        assert lifecycle.reveal_secret(created.token) == "orphan"
        with pytest.raises(SecretNotFoundError):
            lifecycle.reveal_secret(created.token)


class TestDeliver:
    """Emailing the link."""

    def test_sends_absolute_link(self, lifecycle, mailer, ledger):
        created = lifecycle.create_secret("hello", 1, "a@b.com")
        assert lifecycle.deliver(created, "a@b.com") is True

        mail = mailer.last('secret_link')
        assert mail['to'] == "a@b.com"
        assert mail['link'] == f"https://burn.example/password/{created.token}"
        assert ledger.get(created.record_id).email_sent is True

    def test_failure_keeps_secret_valid(self, lifecycle, mailer, ledger):
        mailer.fail = True
        created = lifecycle.create_secret("hello", 1, "a@b.com")

        assert lifecycle.deliver(created, "a@b.com") is False
        assert ledger.get(created.record_id).email_sent is False
        assert lifecycle.reveal_secret(created.token) == "hello"

    def test_without_mailer(self, vault, ledger, clock):
        lifecycle = SecretLifecycle(vault, ledger, clock=clock)
        created = lifecycle.create_secret("hello", 1, "a@b.com")
        assert lifecycle.deliver(created, "a@b.com") is False


class TestReveal:
    """Revealing secrets exactly once."""

    def test_ledger_lookup_failure_propagates(self, storage, vault, clock):
        """A failed lookup is raised and the content stays readable later."""
        flaky = FlakyLedger(storage)
        lifecycle = SecretLifecycle(vault, flaky, clock=clock)
        created = lifecycle.create_secret("hello", 1, "a@b.com", "1h")

        flaky.fail_lookup = True
        with pytest.raises(StorageUnavailableError):
            lifecycle.reveal_secret(created.token)
        assert created.token in vault

        flaky.fail_lookup = False
        assert lifecycle.reveal_secret(created.token) == "hello"

    def test_second_reveal_is_already_used(self, lifecycle, ledger):
        created = lifecycle.create_secret("hello", 1, "a@b.com")
        assert lifecycle.reveal_secret(created.token) == "hello"

        with pytest.raises(SecretAlreadyUsedError):
            lifecycle.reveal_secret(created.token)

        record = ledger.get(created.record_id)
        assert record.status == STATUS_USED
        assert record.used is True

    def test_never_created(self, lifecycle):
        with pytest.raises(SecretNotFoundError):
            lifecycle.reveal_secret("f" * 32)

    def test_lost_after_restart(self, ledger, clock):
        """A fresh vault (process restart) turns a live record into not found."""
        before = SecretLifecycle(SecretVault(), ledger, clock=clock)
        created = before.create_secret("hello", 1, "a@b.com")

        after = SecretLifecycle(SecretVault(), ledger, clock=clock)
        with pytest.raises(SecretNotFoundError):
            after.reveal_secret(created.token)
        assert ledger.get(created.record_id).status == STATUS_ACTIVE

    def test_lazy_expiration(self, lifecycle, ledger, vault, clock):
        created = lifecycle.create_secret("hello", 1, "a@b.com", "1m")
        clock.advance(minutes=2)

        with pytest.raises(SecretExpiredError):
            lifecycle.reveal_secret(created.token)

        assert ledger.get(created.record_id).status == STATUS_EXPIRED
        # The ledger refused before the vault was touched
        assert created.token in vault

    def test_swept_record_stays_expired(self, lifecycle, clock):
        created = lifecycle.create_secret("hello", 1, "a@b.com", "5m")
        clock.advance(minutes=6)
        assert lifecycle.sweep_expired() == 1

        with pytest.raises(SecretExpiredError):
            lifecycle.reveal_secret(created.token)
        with pytest.raises(SecretExpiredError):
            lifecycle.reveal_secret(created.token)

    def test_reveal_before_expiration(self, lifecycle, clock):
        created = lifecycle.create_secret("hello", 1, "a@b.com", "10m")
        clock.advance(minutes=9)
        assert lifecycle.reveal_secret(created.token) == "hello"

    def test_used_record_does_not_touch_vault(self, lifecycle, ledger, vault):
        """A used ledger record wins even if the vault still has content."""
        created = lifecycle.create_secret("hello", 1, "a@b.com")
        ledger.mark_used(created.record_id)

        with pytest.raises(SecretAlreadyUsedError):
            lifecycle.reveal_secret(created.token)
        assert created.token in vault

    def test_mark_used_failure_still_returns_secret(self, storage, clock):
        vault = SecretVault()
        ledger = FlakyLedger(storage)
        lifecycle = SecretLifecycle(vault, ledger, clock=clock)
        created = lifecycle.create_secret("hello", 1, "a@b.com")

        ledger.fail_mark_used = True
        assert lifecycle.reveal_secret(created.token) == "hello"
        # Content is gone even though the ledger still says active
        with pytest.raises(SecretNotFoundError):
            lifecycle.reveal_secret(created.token)

    def test_concurrent_reveals(self, lifecycle):
        created = lifecycle.create_secret("race", 1, "a@b.com")
        workers = 12
        barrier = threading.Barrier(workers)
        outcomes = []
        lock = threading.Lock()

        def worker():
            barrier.wait()
            try:
                outcome = lifecycle.reveal_secret(created.token)
            except (SecretNotFoundError, SecretAlreadyUsedError) as e:
                outcome = type(e)
            with lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=worker) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert outcomes.count("race") == 1
        assert len(outcomes) == workers


class TestDashboardOperations:
    """Listing, stats and deletion through the lifecycle."""

    def test_list_secrets_pages(self, lifecycle, clock):
        for i in range(23):
            lifecycle.create_secret(f"s{i}", 1, "a@b.com")
            clock.advance(seconds=1)

        page = lifecycle.list_secrets(1, page=3, page_size=10)
        assert page.total == 23
        assert page.total_pages == 3
        assert len(page.items) == 3

    def test_empty_listing_has_one_page(self, lifecycle):
        page = lifecycle.list_secrets(1)
        assert page.items == []
        assert page.total_pages == 1

    def test_stats_and_delete(self, lifecycle):
        created = lifecycle.create_secret("hello", 1, "a@b.com")
        lifecycle.reveal_secret(created.token)
        lifecycle.create_secret("other", 1, "a@b.com")

        stats = lifecycle.stats(1)
        assert (stats.total, stats.used, stats.active) == (2, 1, 1)

        assert lifecycle.delete_secret(created.record_id, 2) is False
        assert lifecycle.delete_secret(created.record_id, 1) is True
        assert lifecycle.stats(1).total == 1
