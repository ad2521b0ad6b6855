"""
Session gate for SecureVault.
Owns sign-in, sign-up and sign-out, and hands out the vault only to an
authenticated principal.
"""
import asyncio
import logging
from typing import Optional

from crypto_utils import CryptoUtils, VaultCipher
from errors import AuthenticationError, NotAuthenticatedError, ProviderError, StorageIOError
from identity import IdentityProvider
from models import AuthErrorReason, Principal, ProviderErrorCode, Session, SessionState
from storage import Storage
from utils import validate_auth_form
from vault import VaultStore

# Configure logging
logger = logging.getLogger(__name__)

REASON_BY_CODE = {
    ProviderErrorCode.EMAIL_ALREADY_IN_USE: AuthErrorReason.EMAIL_ALREADY_IN_USE,
    ProviderErrorCode.INVALID_EMAIL: AuthErrorReason.INVALID_CREDENTIALS,
    ProviderErrorCode.WEAK_PASSWORD: AuthErrorReason.WEAK_SECRET,
    ProviderErrorCode.USER_NOT_FOUND: AuthErrorReason.UNKNOWN_ACCOUNT,
    ProviderErrorCode.WRONG_PASSWORD: AuthErrorReason.INVALID_CREDENTIALS,
    ProviderErrorCode.NETWORK_FAILURE: AuthErrorReason.UNAVAILABLE,
}

MESSAGE_BY_CODE = {
    ProviderErrorCode.EMAIL_ALREADY_IN_USE: "Email already in use",
    ProviderErrorCode.INVALID_EMAIL: "Invalid email address",
    ProviderErrorCode.WEAK_PASSWORD: "Password should be at least 6 characters",
    ProviderErrorCode.USER_NOT_FOUND: "User not found",
    ProviderErrorCode.WRONG_PASSWORD: "Incorrect password",
    ProviderErrorCode.NETWORK_FAILURE: "Sign-in service is unavailable, please try again",
}


def map_provider_error(error: ProviderError) -> AuthenticationError:
    """Translate a provider rejection into a user-facing reason and message."""
    code = error.code
    if not isinstance(code, ProviderErrorCode):
        try:
            code = ProviderErrorCode(code)
        except ValueError:
            code = ProviderErrorCode.UNKNOWN

    reason = REASON_BY_CODE.get(code, AuthErrorReason.OTHER)
    message = MESSAGE_BY_CODE.get(code, error.message)
    return AuthenticationError(reason, message)


class SessionGate:
    """
    Authentication state machine in front of the vault.

    ANONYMOUS -> AUTHENTICATING -> AUTHENTICATED | AUTH_ERROR, back to
    ANONYMOUS on sign-out or cancellation. The vault is only built after the
    provider has confirmed the principal.
    """

    def __init__(self, provider: IdentityProvider, storage: Storage, crypto: CryptoUtils,
                 provider_timeout: float = 10.0):
        """
        Args:
            provider: Identity provider that owns accounts
            storage: Durable storage for vault blobs
            crypto: CryptoUtils used to derive vault keys
            provider_timeout: Seconds to wait on any provider call
        """
        self.provider = provider
        self.storage = storage
        self.crypto = crypto
        self.provider_timeout = provider_timeout

        self._session = Session()
        self._vault: Optional[VaultStore] = None
        self._lock = asyncio.Lock()

    def current_state(self) -> Session:
        return self._session

    @property
    def vault(self) -> VaultStore:
        """The open vault of the signed-in principal."""
        if self._vault is None or not self._session.is_authenticated:
            raise NotAuthenticatedError("Sign in to access the vault")
        return self._vault

    def _fail(self, reason: AuthErrorReason, message: str):
        self._session = Session(
            state=SessionState.AUTH_ERROR,
            error_reason=reason,
            error_message=message
        )

    def _open_vault(self, principal: Principal, password: str) -> VaultStore:
        existing = self.storage.read_blob(principal.id)
        cipher = VaultCipher.for_principal(self.crypto, password, principal.id, existing)
        return VaultStore(principal, self.storage, cipher)

    def _close_vault(self):
        if self._vault is not None:
            self._vault.close()
            self._vault = None

    async def _release(self, principal: Principal):
        """Sign out a principal the provider confirmed but whose vault could not be opened."""
        try:
            await asyncio.wait_for(self.provider.sign_out(principal), timeout=self.provider_timeout)
        except (ProviderError, asyncio.TimeoutError) as e:
            logger.warning("Could not sign out principal %s after failed sign-in: %s", principal.id, e)
        else:
            logger.info("Signed out principal %s after failed sign-in", principal.id)

    async def _authenticate(self, call, email: str, password: str) -> VaultStore:
        async with self._lock:
            if self._session.principal is not None:
                await self._end_session()

            self._session = Session(state=SessionState.AUTHENTICATING)
            principal = None
            try:
                principal = await asyncio.wait_for(call(email, password), timeout=self.provider_timeout)
                vault = await asyncio.to_thread(self._open_vault, principal, password)
            except asyncio.CancelledError:
                self._session = Session()
                logger.info("Authentication cancelled")
                raise
            except asyncio.TimeoutError as e:
                logger.warning("Identity provider timed out after %ss", self.provider_timeout)
                error = AuthenticationError(AuthErrorReason.UNAVAILABLE,
                                            "Sign-in service is unavailable, please try again")
                self._fail(error.reason, error.message)
                raise error from e
            except ProviderError as e:
                error = map_provider_error(e)
                logger.info("Authentication rejected: %s", error.reason.value)
                self._fail(error.reason, error.message)
                raise error from e
            except StorageIOError as e:
                logger.error("Vault storage unavailable during sign-in: %s", e)
                self._fail(AuthErrorReason.UNAVAILABLE, str(e))
                if principal is not None:
                    await self._release(principal)
                raise
            except Exception as e:
                logger.exception("Unexpected failure during sign-in")
                self._fail(AuthErrorReason.OTHER, str(e))
                if principal is not None:
                    await self._release(principal)
                raise

            self._vault = vault
            self._session = Session(state=SessionState.AUTHENTICATED, principal=principal)
            logger.info("Principal %s authenticated", principal.id)
            return vault

    async def sign_in(self, email: str, password: str) -> VaultStore:
        """
        Sign in an existing account and open its vault.

        Raises:
            ValidationError: If the form fails local checks; the provider is not contacted
            AuthenticationError: If the provider rejects the credentials or is unreachable
        """
        validate_auth_form(email, password)
        return await self._authenticate(self.provider.authenticate, email, password)

    async def sign_up(self, email: str, password: str, confirmation: str) -> VaultStore:
        """
        Register a new account and open its empty vault.

        Raises:
            ValidationError: If the form fails local checks, including a
                confirmation mismatch; the provider is not contacted
            AuthenticationError: If the provider rejects the registration
        """
        validate_auth_form(email, password, confirmation, registering=True)
        return await self._authenticate(self.provider.create_account, email, password)

    async def _end_session(self):
        principal = self._session.principal
        self._close_vault()
        self._session = Session()
        if principal is not None:
            await asyncio.wait_for(self.provider.sign_out(principal), timeout=self.provider_timeout)
            logger.info("Principal %s signed out", principal.id)

    async def sign_out(self):
        """Close the vault, forget the principal and return to ANONYMOUS."""
        async with self._lock:
            await self._end_session()
