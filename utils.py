"""
Utility functions for SecureVault.
Input validation and the presentation-side view model.
"""
import re
import logging
from typing import Dict, List, Any, Optional
from urllib.parse import urlsplit

from errors import ValidationError

# Configure logging
logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r'^\S+@\S+\.\S+$')
MIN_SECRET_LENGTH = 6
MASK = '•' * 8


def display_host(website: str) -> Optional[str]:
    """Return the hostname of an absolute URL, or None if it has none."""
    try:
        parts = urlsplit(website.strip())
        host = parts.hostname
    except ValueError:
        return None
    if not parts.scheme or not host:
        return None
    if any(ch.isspace() for ch in host):
        return None
    return host


def validate_record_fields(website: str, username: str, secret: str) -> None:
    """
    Validate a credential candidate.

    Raises:
        ValidationError: Naming the first invalid field, in the order
            website, username, secret
    """
    if not isinstance(website, str) or not website.strip():
        raise ValidationError('website', "Website is required")
    if display_host(website) is None:
        raise ValidationError('website', "Website must be an absolute URL such as https://example.com")

    if not isinstance(username, str) or not username.strip():
        raise ValidationError('username', "Username is required")

    if not isinstance(secret, str) or not secret:
        raise ValidationError('secret', "Password is required")


def validate_auth_form(email: str, password: str, confirmation: Optional[str] = None,
                       registering: bool = False) -> None:
    """
    Validate a sign-in or sign-up form before contacting the identity provider.

    Every failing field is collected into ``ValidationError.errors``; ``field``
    names the first one, checking password, then email, then confirmation.

    Raises:
        ValidationError: If any field is invalid
    """
    errors: Dict[str, str] = {}

    if not password:
        errors['secret'] = "Password is required"
    elif len(password) < MIN_SECRET_LENGTH:
        errors['secret'] = f"Password must be at least {MIN_SECRET_LENGTH} characters"

    if not email or not email.strip():
        errors['email'] = "Email is required"
    elif not EMAIL_PATTERN.match(email):
        errors['email'] = "Email is invalid"

    if registering and password != confirmation:
        errors['confirmation'] = "Passwords do not match"

    if errors:
        field = next(iter(errors))
        raise ValidationError(field, errors[field], errors=errors)


def format_vault(rows: List[Dict[str, Any]]) -> str:
    """
    Format view rows for display.

    Args:
        rows: Rows produced by VaultView.rows()

    Returns:
        Formatted string
    """
    if not rows:
        return "No passwords saved yet."

    result = "Saved passwords:\n\n"
    for row in rows:
        result += f"• {row['host']}\n"
        result += f"  Username: {row['username']}\n"
        result += f"  Password: {row['secret']}\n"
        result += f"  Added: {row['created_at'].strftime('%Y-%m-%d %H:%M')}\n\n"

    return result


class VaultView:
    """
    View model over an open vault.

    Holds which records currently show their password. The flags live only here
    and are never handed to the vault store.
    """

    def __init__(self, store):
        """
        Args:
            store: An open VaultStore
        """
        self.store = store
        self.visible: Dict[str, bool] = {}

    def toggle(self, record_id: str) -> bool:
        """Flip the visibility of one record's password and return the new flag."""
        # Raises NotFoundError for unknown ids before any flag is stored.
        self.store.reveal(record_id)
        self.visible[record_id] = not self.visible.get(record_id, False)
        return self.visible[record_id]

    def is_visible(self, record_id: str) -> bool:
        return self.visible.get(record_id, False)

    def rows(self) -> List[Dict[str, Any]]:
        """Return display rows in vault order, masking hidden passwords."""
        records = self.store.list()
        live_ids = {record.id for record in records}
        for stale in [rid for rid in self.visible if rid not in live_ids]:
            del self.visible[stale]

        rows = []
        for record in records:
            shown = self.visible.get(record.id, False)
            rows.append({
                'id': record.id,
                'host': display_host(record.website) or record.website,
                'website': record.website,
                'username': record.username,
                'secret': self.store.reveal(record.id) if shown else MASK,
                'visible': shown,
                'created_at': record.created_at
            })
        return rows
