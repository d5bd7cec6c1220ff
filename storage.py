"""
Database storage layer for BurnVault.
Uses SQLite for user accounts and the shared-secret ledger.
"""
import sqlite3
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, List, Optional, Sequence

from exceptions import StorageUnavailableError
from models import User

# Configure logging
logger = logging.getLogger(__name__)

def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)

def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """
    Serialize a datetime for storage.

    Every value is converted to UTC and written with a fixed width so that
    SQL string comparison matches chronological order.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(sep=' ', timespec='microseconds')

def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Inverse of format_timestamp."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed

class Storage:
    """SQLite storage handler for BurnVault."""

    def __init__(self, db_path: str = "burnvault.db"):
        """
        Initialize SQLite database connection.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self.conn = None
        # One connection is shared by all request threads
        self._lock = threading.RLock()

    def connect(self) -> sqlite3.Connection:
        """Establish database connection."""
        if self.conn is None:
            try:
                self.conn = sqlite3.connect(
                    self.db_path,
                    check_same_thread=False,
                    isolation_level=None
                )
            except sqlite3.Error as e:
                raise StorageUnavailableError(f"Cannot open database {self.db_path}: {e}") from e
            self.conn.row_factory = sqlite3.Row
        return self.conn

    def close(self):
        """Close database connection."""
        with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None

    def execute(self, query: str, params: Sequence = ()) -> sqlite3.Cursor:
        """
        Run a single autocommitted statement.

        Raises:
            StorageUnavailableError: If SQLite reports an error
        """
        with self._lock:
            try:
                return self.connect().execute(query, params)
            except sqlite3.Error as e:
                logger.error("Database error: %s", e)
                raise StorageUnavailableError(str(e)) from e

    def query_one(self, query: str, params: Sequence = ()) -> Optional[sqlite3.Row]:
        """Run a SELECT and return its first row."""
        with self._lock:
            return self.execute(query, params).fetchone()

    def query_all(self, query: str, params: Sequence = ()) -> List[sqlite3.Row]:
        """Run a SELECT and return every row."""
        with self._lock:
            return self.execute(query, params).fetchall()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        """
        Run several statements atomically.

        Holds the write lock from the first statement, so a check followed by
        a write inside the block cannot interleave with another writer.
        """
        with self._lock:
            conn = self.connect()
            try:
                cursor = conn.cursor()
                cursor.execute("BEGIN IMMEDIATE")
                try:
                    yield cursor
                except BaseException:
                    conn.rollback()
                    raise
                conn.commit()
            except sqlite3.Error as e:
                if conn.in_transaction:
                    conn.rollback()
                logger.error("Database transaction failed: %s", e)
                raise StorageUnavailableError(str(e)) from e

    def init_db(self):
        """Initialize database tables."""
        with self.transaction() as cursor:
            # Users table
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    username TEXT UNIQUE NOT NULL,
                    email TEXT UNIQUE NOT NULL,
                    password_hash TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'active',
                    created_at TEXT NOT NULL,
                    updated_at TEXT,
                    last_login TEXT
                )
            """)

            # Shared secrets ledger
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS passwords (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER,
                    recipient_email TEXT NOT NULL,
                    password_key TEXT UNIQUE NOT NULL,
                    created_at TEXT NOT NULL,
                    expires_at TEXT,
                    is_used BOOLEAN NOT NULL DEFAULT 0,
                    used_at TEXT,
                    status TEXT NOT NULL DEFAULT 'active'
                        CHECK (status IN ('active', 'used', 'expired')),
                    email_sent BOOLEAN NOT NULL DEFAULT 0,
                    email_sent_at TEXT,
                    FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE
                )
            """)

            # Create indexes
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_passwords_user_id ON passwords(user_id)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_passwords_status_expires ON passwords(status, expires_at)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_passwords_created ON passwords(created_at)")

        logger.info("Database initialized successfully")

    def add_user(self, username: str, email: str, password_hash: str) -> int:
        """
        Add a new user to the database.

        Args:
            username: Unique login name
            email: Unique email address
            password_hash: Argon2 hash of the account password

        Returns:
            User ID
        """
        cursor = self.execute(
            "INSERT INTO users (username, email, password_hash, created_at) VALUES (?, ?, ?, ?)",
            (username, email, password_hash, format_timestamp(utc_now()))
        )

        user_id = cursor.lastrowid
        logger.info("Added new user %s", user_id)
        return user_id

    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=row['id'],
            username=row['username'],
            email=row['email'],
            password_hash=row['password_hash'],
            status=row['status'],
            created_at=parse_timestamp(row['created_at']),
            updated_at=parse_timestamp(row['updated_at']),
            last_login=parse_timestamp(row['last_login'])
        )

    def _get_user_by(self, column: str, value) -> Optional[User]:
        row = self.query_one(
            f"SELECT * FROM users WHERE {column} = ?",
            (value,)
        )
        if row:
            return self._row_to_user(row)
        return None

    def get_user(self, user_id: int) -> Optional[User]:
        """Get user by ID."""
        return self._get_user_by('id', user_id)

    def find_user_by_email(self, email: str) -> Optional[User]:
        """Get user by email address."""
        return self._get_user_by('email', email)

    def find_user_by_username(self, username: str) -> Optional[User]:
        """Get user by username."""
        return self._get_user_by('username', username)

    def update_last_login(self, user_id: int):
        """
        Record a successful login.

        Args:
            user_id: User ID
        """
        self.execute(
            "UPDATE users SET last_login = ? WHERE id = ?",
            (format_timestamp(utc_now()), user_id)
        )
        logger.info("Updated last login for user %s", user_id)

    def update_profile(self, user_id: int, username: str, email: str):
        """
        Update a user's profile fields.

        Args:
            user_id: User ID
            username: New username
            email: New email address
        """
        self.execute(
            "UPDATE users SET username = ?, email = ?, updated_at = ? WHERE id = ?",
            (username, email, format_timestamp(utc_now()), user_id)
        )
        logger.info("Updated profile for user %s", user_id)
