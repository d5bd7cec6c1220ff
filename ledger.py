"""
Durable ledger of shared secrets.

Holds per-token metadata (owner, recipient, expiration, status) in the
``passwords`` table. It never sees the secret content, which lives only in
the vault. Status moves active -> used or active -> expired and never back;
every transition is a single UPDATE qualified by the current status, so
concurrent reveals and sweeps converge on the same end state.
"""
import sqlite3
import logging
from datetime import datetime
from typing import List, Optional

from models import SharedSecret, SecretStats, STATUS_ACTIVE, STATUS_EXPIRED, STATUS_USED
from storage import Storage, format_timestamp, parse_timestamp, utc_now

# Configure logging
logger = logging.getLogger(__name__)

_STATS_COLUMNS = """
    COUNT(*) AS total,
    COALESCE(SUM(CASE WHEN is_used = 1 THEN 1 ELSE 0 END), 0) AS used,
    COALESCE(SUM(CASE WHEN status = 'active' THEN 1 ELSE 0 END), 0) AS active,
    COALESCE(SUM(CASE WHEN status = 'expired' THEN 1 ELSE 0 END), 0) AS expired
"""

def _owner_clause(owner: Optional[int]):
    """WHERE fragment selecting an owner's rows, or anonymous rows for None."""
    if owner is None:
        return "user_id IS NULL", []
    return "user_id = ?", [owner]

class Ledger:
    """Repository over the passwords table of an injected Storage."""

    def __init__(self, storage: Storage):
        self.storage = storage

    def _row_to_record(self, row: sqlite3.Row) -> SharedSecret:
        return SharedSecret(
            id=row['id'],
            token=row['password_key'],
            recipient_email=row['recipient_email'],
            created_at=parse_timestamp(row['created_at']),
            user_id=row['user_id'],
            expires_at=parse_timestamp(row['expires_at']),
            used=bool(row['is_used']),
            used_at=parse_timestamp(row['used_at']),
            status=row['status'],
            email_sent=bool(row['email_sent']),
            email_sent_at=parse_timestamp(row['email_sent_at'])
        )

    def record(self, token: str, owner: Optional[int], recipient: str,
               expires_at: Optional[datetime] = None, now: Optional[datetime] = None) -> int:
        """
        Insert a new active record for a token.

        Args:
            token: Vault token
            owner: User ID, or None for an anonymous sender
            recipient: Recipient email address
            expires_at: Expiration time, or None for never
            now: Creation time (defaults to the current time)

        Returns:
            Record ID
        """
        cursor = self.storage.execute(
            """INSERT INTO passwords
            (user_id, recipient_email, password_key, created_at, expires_at, status)
            VALUES (?, ?, ?, ?, ?, ?)""",
            (owner, recipient, token, format_timestamp(now or utc_now()),
             format_timestamp(expires_at), STATUS_ACTIVE)
        )

        record_id = cursor.lastrowid
        logger.info("Recorded secret %s for owner %s", record_id, owner)
        return record_id

    def find_by_token(self, token: str) -> Optional[SharedSecret]:
        """Point lookup by token."""
        row = self.storage.query_one(
            "SELECT * FROM passwords WHERE password_key = ? LIMIT 1",
            (token,)
        )
        if row:
            return self._row_to_record(row)
        return None

    def get(self, record_id: int) -> Optional[SharedSecret]:
        """Point lookup by record ID."""
        row = self.storage.query_one(
            "SELECT * FROM passwords WHERE id = ?",
            (record_id,)
        )
        if row:
            return self._row_to_record(row)
        return None

    def mark_used(self, record_id: int, now: Optional[datetime] = None):
        """
        Record that the secret has been revealed.

        The used flag and first read time are always written. The status only
        moves to used from active, so an expired record keeps its terminal
        status.
        """
        self.storage.execute(
            """UPDATE passwords
            SET is_used = 1,
                used_at = COALESCE(used_at, ?),
                status = CASE WHEN status = ? THEN ? ELSE status END
            WHERE id = ?""",
            (format_timestamp(now or utc_now()), STATUS_ACTIVE, STATUS_USED, record_id)
        )
        logger.info("Marked secret %s as used", record_id)

    def expire(self, record_id: int, now: Optional[datetime] = None) -> bool:
        """
        Expire a single lapsed record.

        Returns:
            True if this call changed the status
        """
        cursor = self.storage.execute(
            """UPDATE passwords SET status = ?
            WHERE id = ? AND status = ?
            AND expires_at IS NOT NULL AND expires_at <= ?""",
            (STATUS_EXPIRED, record_id, STATUS_ACTIVE, format_timestamp(now or utc_now()))
        )
        if cursor.rowcount > 0:
            logger.info("Secret %s expired on access", record_id)
            return True
        return False

    def sweep_expired(self, now: Optional[datetime] = None) -> int:
        """
        Expire every active record whose expiration has passed.

        Returns:
            Number of records changed
        """
        cursor = self.storage.execute(
            """UPDATE passwords SET status = ?
            WHERE status = ?
            AND expires_at IS NOT NULL
            AND expires_at <= ?""",
            (STATUS_EXPIRED, STATUS_ACTIVE, format_timestamp(now or utc_now()))
        )

        count = cursor.rowcount
        if count > 0:
            logger.info("%d secret(s) marked as expired", count)
        return count

    def list_by_owner(self, owner: Optional[int], limit: int = 50, offset: int = 0) -> List[SharedSecret]:
        """
        List records newest first.

        Args:
            owner: User ID, or None for anonymous records
            limit: Page size
            offset: Number of records to skip
        """
        where, params = _owner_clause(owner)
        rows = self.storage.query_all(
            f"""SELECT * FROM passwords
            WHERE {where}
            ORDER BY created_at DESC, id DESC
            LIMIT ? OFFSET ?""",
            params + [limit, offset]
        )
        return [self._row_to_record(row) for row in rows]

    def count_by_owner(self, owner: Optional[int]) -> int:
        where, params = _owner_clause(owner)
        row = self.storage.query_one(
            f"SELECT COUNT(*) AS count FROM passwords WHERE {where}",
            params
        )
        return row['count']

    def stats(self, owner: Optional[int]) -> SecretStats:
        """Aggregate counts for an owner (or for anonymous records)."""
        where, params = _owner_clause(owner)
        row = self.storage.query_one(
            f"SELECT {_STATS_COLUMNS} FROM passwords WHERE {where}",
            params
        )
        return SecretStats(
            total=row['total'],
            used=row['used'],
            active=row['active'],
            expired=row['expired']
        )

    def delete_owned(self, record_id: int, owner: int) -> bool:
        """
        Remove a record from its owner's history.

        Returns:
            False if the record does not exist or belongs to someone else
        """
        with self.storage.transaction() as cursor:
            cursor.execute(
                "SELECT id FROM passwords WHERE id = ? AND user_id = ?",
                (record_id, owner)
            )
            if cursor.fetchone() is None:
                logger.info("Delete refused: secret %s not owned by user %s", record_id, owner)
                return False

            cursor.execute(
                "DELETE FROM passwords WHERE id = ? AND user_id = ?",
                (record_id, owner)
            )
            deleted = cursor.rowcount > 0

        if deleted:
            logger.info("Deleted secret %s for user %s", record_id, owner)
        return deleted

    def record_delivery(self, record_id: int, now: Optional[datetime] = None):
        """Note that the link email went out."""
        self.storage.execute(
            "UPDATE passwords SET email_sent = 1, email_sent_at = ? WHERE id = ?",
            (format_timestamp(now or utc_now()), record_id)
        )
