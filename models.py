"""
Data models for BurnVault.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

STATUS_ACTIVE = 'active'
STATUS_USED = 'used'
STATUS_EXPIRED = 'expired'

@dataclass
class User:
    """Registered account."""
    id: int
    username: str
    email: str
    password_hash: str
    status: str = 'active'
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_login: Optional[datetime] = None

@dataclass
class SharedSecret:
    """Ledger record describing one shared secret (never its content)."""
    id: int
    token: str
    recipient_email: str
    created_at: datetime
    user_id: Optional[int] = None
    expires_at: Optional[datetime] = None
    used: bool = False
    used_at: Optional[datetime] = None
    status: str = STATUS_ACTIVE
    email_sent: bool = False
    email_sent_at: Optional[datetime] = None

    def is_past_expiration(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'token': self.token,
            'recipient_email': self.recipient_email,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'expires_at': self.expires_at.isoformat() if self.expires_at else None,
            'used_at': self.used_at.isoformat() if self.used_at else None,
            'status': self.status,
            'email_sent': self.email_sent,
        }

@dataclass
class SecretStats:
    """Aggregate counts for a dashboard."""
    total: int = 0
    used: int = 0
    active: int = 0
    expired: int = 0

@dataclass
class CreatedSecret:
    """Result of creating a secret."""
    token: str
    url: str
    record_id: Optional[int] = None
    expires_at: Optional[datetime] = None

@dataclass
class Page:
    """One page of ledger records."""
    items: List[SharedSecret] = field(default_factory=list)
    page: int = 1
    page_size: int = 10
    total: int = 0

    @property
    def total_pages(self) -> int:
        if self.total <= 0:
            return 1
        return (self.total + self.page_size - 1) // self.page_size
