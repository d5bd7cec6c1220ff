"""
Utility functions for BurnVault.
"""
import re
import logging
import secrets
import threading
from datetime import datetime, timedelta
from typing import Dict, Any, Optional

from storage import utc_now

# Configure logging
logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6

_EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')

def validate_password_strength(password: str) -> tuple:
    """
    Validate an account password.

    Args:
        password: Password to validate

    Returns:
        Tuple of (is_valid, message)
    """
    if len(password) < MIN_PASSWORD_LENGTH:
        return False, f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"

    return True, "Password is valid"

def is_valid_email(email: str) -> bool:
    return bool(email) and len(email) <= 254 and bool(_EMAIL_RE.match(email))

def parse_page(raw: Optional[str]) -> int:
    """Parse a 1-based page number, falling back to the first page."""
    try:
        page = int(raw)
    except (TypeError, ValueError):
        return 1
    return page if page > 0 else 1

class PendingLoginStore:
    """Server-side state for logins waiting on an emailed code.

    The browser only carries the opaque login id; the code secret never
    leaves the server.
    """

    def __init__(self, timeout_seconds: int = 600, max_attempts: int = 5,
                 clock=utc_now):
        """
        Initialize the store.

        Args:
            timeout_seconds: How long a code stays valid
            max_attempts: Wrong codes allowed before the login is dropped
            clock: Returns the current aware UTC time
        """
        self.logins: Dict[str, Dict[str, Any]] = {}
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max_attempts
        self.clock = clock
        self._lock = threading.Lock()

    def create(self, data: Dict[str, Any]) -> str:
        """
        Start a pending login.

        Args:
            data: User details and code secret

        Returns:
            Login id to keep in the session cookie
        """
        login_id = secrets.token_urlsafe(24)
        with self._lock:
            self.logins[login_id] = {
                'data': data,
                'attempts': 0,
                'expires_at': self.clock() + timedelta(seconds=self.timeout_seconds)
            }
        logger.info("Created pending login for user %s", data.get('user_id'))
        return login_id

    def get(self, login_id: Optional[str]) -> Optional[Dict[str, Any]]:
        """
        Get pending login data if it exists and has not expired.

        Returns:
            Login data or None if expired or not found
        """
        if not login_id:
            return None
        with self._lock:
            login = self.logins.get(login_id)
            if login and self.clock() < login['expires_at']:
                return login['data']

            # Remove expired login
            if login_id in self.logins:
                del self.logins[login_id]
                logger.info("Pending login expired for user %s", login['data'].get('user_id'))
        return None

    def refresh(self, login_id: str, data: Dict[str, Any]) -> bool:
        """Replace the data of a live login and restart its timer (code resend).

        Wrong-code attempts carry over, so resending does not reset the lockout.
        """
        with self._lock:
            login = self.logins.get(login_id)
            if not login or self.clock() >= login['expires_at']:
                return False
            login['data'] = data
            login['expires_at'] = self.clock() + timedelta(seconds=self.timeout_seconds)
        return True

    def record_failure(self, login_id: str) -> int:
        """
        Count a wrong code.

        Returns:
            Attempts left; the login is removed when none remain
        """
        with self._lock:
            login = self.logins.get(login_id)
            if not login:
                return 0
            login['attempts'] += 1
            remaining = self.max_attempts - login['attempts']
            if remaining <= 0:
                del self.logins[login_id]
                logger.info("Too many code attempts for user %s", login['data'].get('user_id'))
                return 0
        return remaining

    def remove(self, login_id: Optional[str]) -> None:
        """
        Remove a pending login.

        Args:
            login_id: Login id
        """
        with self._lock:
            if login_id in self.logins:
                del self.logins[login_id]

    def cleanup(self, now: Optional[datetime] = None) -> int:
        """Drop every expired login."""
        now = now or self.clock()
        with self._lock:
            expired = [
                login_id for login_id, login in self.logins.items()
                if now >= login['expires_at']
            ]
            for login_id in expired:
                del self.logins[login_id]
        if expired:
            logger.info("Cleaned up %d expired pending login(s)", len(expired))
        return len(expired)
