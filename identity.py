"""
Identity providers for SecureVault.
"""
import abc
import asyncio
import logging
import sqlite3
import uuid

from crypto_utils import CryptoUtils
from errors import ProviderError, StorageIOError
from models import Principal, ProviderErrorCode
from storage import Storage
from utils import EMAIL_PATTERN, MIN_SECRET_LENGTH

# Configure logging
logger = logging.getLogger(__name__)


class IdentityProvider(abc.ABC):
    """
    External service that owns accounts.

    Every failure is raised as ProviderError carrying a ProviderErrorCode.
    """

    @abc.abstractmethod
    async def create_account(self, email: str, password: str) -> Principal:
        """Register a new account and return its principal."""

    @abc.abstractmethod
    async def authenticate(self, email: str, password: str) -> Principal:
        """Check credentials and return the matching principal."""

    @abc.abstractmethod
    async def sign_out(self, principal: Principal) -> None:
        """End the provider-side session for a principal."""


class LocalIdentityProvider(IdentityProvider):
    """Identity provider backed by the local SQLite accounts table."""

    def __init__(self, crypto: CryptoUtils, storage: Storage):
        """
        Args:
            crypto: CryptoUtils used for Argon2 password hashing
            storage: Storage holding the accounts table
        """
        self.crypto = crypto
        self.storage = storage

    def _check_input(self, email: str, password: str):
        if not EMAIL_PATTERN.match(email or ''):
            raise ProviderError(ProviderErrorCode.INVALID_EMAIL, "Invalid email address")
        if len(password or '') < MIN_SECRET_LENGTH:
            raise ProviderError(ProviderErrorCode.WEAK_PASSWORD, "Password should be at least 6 characters")

    def _create_account(self, email: str, password: str) -> Principal:
        self._check_input(email, password)
        try:
            account = self.storage.add_account(uuid.uuid4().hex, email, self.crypto.hash_password(password))
        except sqlite3.IntegrityError as e:
            raise ProviderError(ProviderErrorCode.EMAIL_ALREADY_IN_USE, "Email already in use") from e
        except StorageIOError as e:
            raise ProviderError(ProviderErrorCode.NETWORK_FAILURE, str(e)) from e
        return Principal(id=account.id, email=account.email)

    def _authenticate(self, email: str, password: str) -> Principal:
        self._check_input(email, password)
        try:
            account = self.storage.get_account(email)
            if account is None:
                raise ProviderError(ProviderErrorCode.USER_NOT_FOUND, "User not found")
            if not self.crypto.verify_password(account.password_hash, password):
                raise ProviderError(ProviderErrorCode.WRONG_PASSWORD, "Incorrect password")
            self.storage.update_last_login(account.id)
        except StorageIOError as e:
            raise ProviderError(ProviderErrorCode.NETWORK_FAILURE, str(e)) from e
        return Principal(id=account.id, email=account.email)

    async def create_account(self, email: str, password: str) -> Principal:
        principal = await asyncio.to_thread(self._create_account, email, password)
        logger.info("Created account %s", principal.id)
        return principal

    async def authenticate(self, email: str, password: str) -> Principal:
        principal = await asyncio.to_thread(self._authenticate, email, password)
        logger.info("Authenticated account %s", principal.id)
        return principal

    async def sign_out(self, principal: Principal) -> None:
        logger.info("Signed out account %s", principal.id)
