"""
Lifecycle of a one-time secret.

Ties the in-memory vault (content) to the ledger (validity). Creation writes
the vault first and then the ledger; the two writes are not one transaction,
and a ledger failure leaves an orphaned vault entry that can still be read
once. Reveal consults the ledger before taking from the vault, which is what
lets "already used" and "expired" be told apart from "never existed" after
the content is gone.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from exceptions import (
    DeliveryFailedError,
    InvalidSecretRequestError,
    SecretAlreadyUsedError,
    SecretExpiredError,
    StorageUnavailableError,
)
from ledger import Ledger
from mailer import Mailer
from models import CreatedSecret, Page, SecretStats, STATUS_EXPIRED, STATUS_USED
from storage import utc_now
from vault import SecretVault

# Configure logging
logger = logging.getLogger(__name__)

NEVER = 'never'

TTL_OPTIONS: Dict[str, Optional[timedelta]] = {
    '1m': timedelta(minutes=1),
    '5m': timedelta(minutes=5),
    '10m': timedelta(minutes=10),
    '30m': timedelta(minutes=30),
    '1h': timedelta(hours=1),
    '24h': timedelta(hours=24),
    '7d': timedelta(days=7),
    NEVER: None,
}

SECRET_PATH = '/password/'

def expiration_for(ttl: Optional[str], now: datetime) -> Optional[datetime]:
    """
    Turn a named duration into an expiration time.

    Args:
        ttl: One of TTL_OPTIONS; empty means never
        now: Creation time

    Returns:
        Expiration time, or None if the secret never expires

    Raises:
        InvalidSecretRequestError: If ttl is not a known duration
    """
    if not ttl:
        ttl = NEVER
    if ttl not in TTL_OPTIONS:
        raise InvalidSecretRequestError(f"Unknown expiration '{ttl}'. Choose one of: {', '.join(TTL_OPTIONS)}")
    delta = TTL_OPTIONS[ttl]
    return now + delta if delta is not None else None

class SecretLifecycle:
    """Creates, reveals and tracks one-time secrets."""

    def __init__(self, vault: SecretVault, ledger: Ledger, mailer: Optional[Mailer] = None,
                 base_url: str = "", clock: Callable[[], datetime] = utc_now):
        """
        Args:
            vault: Holds secret content
            ledger: Holds secret metadata and status
            mailer: Sends links to recipients (optional)
            base_url: Prefix turning a secret path into an absolute link
            clock: Returns the current aware UTC time
        """
        self.vault = vault
        self.ledger = ledger
        self.mailer = mailer
        self.base_url = base_url.rstrip('/')
        self.clock = clock

    def create_secret(self, plaintext: str, owner: Optional[int], recipient: str,
                      ttl: Optional[str] = NEVER) -> CreatedSecret:
        """
        Store a secret and record it in the ledger.

        Args:
            plaintext: Secret to share
            owner: User ID of the sender, or None when anonymous
            recipient: Recipient email address
            ttl: Named expiration (see TTL_OPTIONS)

        Returns:
            CreatedSecret with the token and its path

        Raises:
            InvalidSecretRequestError: If the secret or recipient is empty or ttl is unknown
        """
        if not plaintext:
            raise InvalidSecretRequestError("Secret cannot be empty")
        if not recipient:
            raise InvalidSecretRequestError("Recipient email is required")

        now = self.clock()
        expires_at = expiration_for(ttl, now)

        token = self.vault.put(plaintext)
        created = CreatedSecret(token=token, url=f"{SECRET_PATH}{token}", expires_at=expires_at)

        try:
            created.record_id = self.ledger.record(token, owner, recipient, expires_at, now=now)
        except StorageUnavailableError as e:
            logger.warning(
                "Ledger write failed for secret %s...; vault entry is untracked: %s",
                token[:8], e
            )

        return created

    def link_for(self, created: CreatedSecret) -> str:
        return f"{self.base_url}{created.url}"

    def deliver(self, created: CreatedSecret, recipient: str, sender_name: Optional[str] = None) -> bool:
        """
        Email the link to the recipient.

        A failure is logged and leaves the secret valid.

        Returns:
            True if the email was sent
        """
        if self.mailer is None:
            logger.info("No mailer configured, secret %s... not emailed", created.token[:8])
            return False

        try:
            sent = self.mailer.send_secret_link(
                recipient, self.link_for(created), created.expires_at, sender_name
            )
        except DeliveryFailedError as e:
            logger.error("Delivery of secret %s... failed: %s", created.token[:8], e)
            return False

        if sent and created.record_id is not None:
            try:
                self.ledger.record_delivery(created.record_id, now=self.clock())
            except StorageUnavailableError as e:
                logger.warning("Could not record delivery of secret %s: %s", created.record_id, e)
        return sent

    def reveal_secret(self, token: str) -> str:
        """
        Return a secret exactly once.

        Raises:
            SecretAlreadyUsedError: The ledger says it was already revealed
            SecretExpiredError: The ledger expiration has passed
            SecretNotFoundError: The vault has no such token
            StorageUnavailableError: The ledger lookup failed
        """
        now = self.clock()
        record = self.ledger.find_by_token(token)

        if record is not None:
            if record.status == STATUS_USED:
                logger.info("Refused reveal of used secret %s", record.id)
                raise SecretAlreadyUsedError("This password has already been used")

            if record.status == STATUS_EXPIRED or record.is_past_expiration(now):
                if record.status != STATUS_EXPIRED:
                    try:
                        self.ledger.expire(record.id, now=now)
                    except StorageUnavailableError as e:
                        logger.warning("Could not mark secret %s expired: %s", record.id, e)
                logger.info("Refused reveal of expired secret %s", record.id)
                raise SecretExpiredError("This password has expired")

        plaintext = self.vault.take(token)

        if record is not None:
            try:
                self.ledger.mark_used(record.id, now=now)
            except StorageUnavailableError as e:
                logger.error("Secret %s was revealed but could not be marked used: %s", record.id, e)
        else:
            logger.warning("Revealed secret %s... has no ledger record", token[:8])

        return plaintext

    def sweep_expired(self) -> int:
        """Expire every lapsed active record."""
        return self.ledger.sweep_expired(now=self.clock())

    def list_secrets(self, owner: Optional[int], page: int = 1, page_size: int = 10) -> Page:
        """
        One page of an owner's secrets, newest first.

        Args:
            owner: User ID, or None for anonymous secrets
            page: 1-based page number
            page_size: Records per page
        """
        page = max(page, 1)
        items = self.ledger.list_by_owner(owner, limit=page_size, offset=(page - 1) * page_size)
        total = self.ledger.count_by_owner(owner)
        return Page(items=items, page=page, page_size=page_size, total=total)

    def stats(self, owner: Optional[int]) -> SecretStats:
        return self.ledger.stats(owner)

    def delete_secret(self, record_id: int, owner: int) -> bool:
        """Remove a record from its owner's history (the vault is untouched)."""
        return self.ledger.delete_owned(record_id, owner)
