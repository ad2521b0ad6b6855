"""
Data models for SecureVault.
"""
import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


@dataclass(frozen=True)
class Principal:
    """Authenticated identity returned by the identity provider."""
    id: str
    email: str


@dataclass(frozen=True)
class CredentialRecord:
    """A stored website/username/password entry."""
    id: str
    website: str
    username: str
    secret: str = field(repr=False)
    created_at: datetime

    @classmethod
    def create(cls, website: str, username: str, secret: str) -> 'CredentialRecord':
        """Create a new record with a fresh id and creation timestamp."""
        return cls(
            id=uuid.uuid4().hex,
            website=website,
            username=username,
            secret=secret,
            created_at=datetime.now(timezone.utc)
        )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'website': self.website,
            'username': self.username,
            'secret': self.secret,
            'created_at': self.created_at.isoformat()
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'CredentialRecord':
        return cls(
            id=str(data['id']),
            website=str(data['website']),
            username=str(data['username']),
            secret=str(data['secret']),
            created_at=datetime.fromisoformat(data['created_at'])
        )


class SessionState(enum.Enum):
    ANONYMOUS = 'anonymous'
    AUTHENTICATING = 'authenticating'
    AUTHENTICATED = 'authenticated'
    AUTH_ERROR = 'auth_error'


class AuthErrorReason(enum.Enum):
    INVALID_CREDENTIALS = 'invalid_credentials'
    UNKNOWN_ACCOUNT = 'unknown_account'
    EMAIL_ALREADY_IN_USE = 'email_already_in_use'
    WEAK_SECRET = 'weak_secret'
    UNAVAILABLE = 'unavailable'
    OTHER = 'other'


class ProviderErrorCode(enum.Enum):
    """Stable error codes reported by an identity provider."""
    EMAIL_ALREADY_IN_USE = 'auth/email-already-in-use'
    INVALID_EMAIL = 'auth/invalid-email'
    WEAK_PASSWORD = 'auth/weak-password'
    USER_NOT_FOUND = 'auth/user-not-found'
    WRONG_PASSWORD = 'auth/wrong-password'
    NETWORK_FAILURE = 'auth/network-request-failed'
    UNKNOWN = 'auth/unknown'


@dataclass(frozen=True)
class Session:
    """Snapshot of the session gate's state."""
    state: SessionState = SessionState.ANONYMOUS
    principal: Optional[Principal] = None
    error_reason: Optional[AuthErrorReason] = None
    error_message: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.state is SessionState.AUTHENTICATED


@dataclass
class Account:
    """Account row kept by the local identity provider."""
    id: str
    email: str
    password_hash: str
    created_at: Optional[datetime] = None
    last_login: Optional[datetime] = None
