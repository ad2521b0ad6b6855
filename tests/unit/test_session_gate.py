from __future__ import annotations

import asyncio

import pytest

from errors import (
    AuthenticationError,
    CorruptStoreError,
    NotAuthenticatedError,
    ProviderError,
    StorageIOError,
    ValidationError,
    VaultClosedError,
)
from crypto_utils import pack_blob
from identity import IdentityProvider
from models import AuthErrorReason, Principal, ProviderErrorCode, SessionState
from session_gate import SessionGate, map_provider_error


class FakeProvider(IdentityProvider):
    """In-memory identity provider that records every call."""

    def __init__(self) -> None:
        self.accounts = {}
        self.calls = []
        self.fail_with = None
        self.delay = 0.0

    async def _maybe_fail(self):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with

    async def create_account(self, email, password):
        self.calls.append(("create_account", email))
        await self._maybe_fail()
        if email in self.accounts:
            raise ProviderError(ProviderErrorCode.EMAIL_ALREADY_IN_USE)
        self.accounts[email] = password
        return Principal(id=f"id-{email}", email=email)

    async def authenticate(self, email, password):
        self.calls.append(("authenticate", email))
        await self._maybe_fail()
        if email not in self.accounts:
            raise ProviderError(ProviderErrorCode.USER_NOT_FOUND)
        if self.accounts[email] != password:
            raise ProviderError(ProviderErrorCode.WRONG_PASSWORD)
        return Principal(id=f"id-{email}", email=email)

    async def sign_out(self, principal):
        self.calls.append(("sign_out", principal.email))


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def gate(provider, storage, crypto):
    return SessionGate(provider, storage, crypto, provider_timeout=1.0)


def test_starts_anonymous(gate):
    session = gate.current_state()
    assert session.state is SessionState.ANONYMOUS
    assert session.principal is None
    with pytest.raises(NotAuthenticatedError):
        gate.vault


def test_short_password_rejected_before_provider(gate, provider):
    with pytest.raises(ValidationError) as exc:
        asyncio.run(gate.sign_up("bad@x", "12345", "12345"))
    assert exc.value.field == "secret"
    assert provider.calls == []
    assert gate.current_state().state is SessionState.ANONYMOUS


@pytest.mark.parametrize(
    "email,password,confirmation,field",
    [
        ("not-an-email", "hunter22", "hunter22", "email"),
        ("", "hunter22", "hunter22", "email"),
        ("user@example.com", "hunter22", "hunter23", "confirmation"),
        ("user@example.com", "", "", "secret"),
    ],
)
def test_sign_up_prevalidation(gate, provider, email, password, confirmation, field):
    with pytest.raises(ValidationError) as exc:
        asyncio.run(gate.sign_up(email, password, confirmation))
    assert exc.value.field == field
    assert provider.calls == []


def test_prevalidation_reports_every_failing_field(gate):
    with pytest.raises(ValidationError) as exc:
        asyncio.run(gate.sign_up("nope", "123", "456"))
    assert set(exc.value.errors) == {"secret", "email", "confirmation"}


def test_sign_in_does_not_check_confirmation(gate, provider):
    provider.accounts["user@example.com"] = "hunter22"
    vault = asyncio.run(gate.sign_in("user@example.com", "hunter22"))
    assert vault is gate.vault


def test_sign_up_opens_empty_vault(gate, provider):
    vault = asyncio.run(gate.sign_up("user@example.com", "hunter22", "hunter22"))

    session = gate.current_state()
    assert session.state is SessionState.AUTHENTICATED
    assert session.principal == Principal(id="id-user@example.com", email="user@example.com")
    assert vault.load() == []
    assert provider.calls == [("create_account", "user@example.com")]


def test_sign_in_restores_previous_vault(gate, provider):
    async def scenario():
        vault = await gate.sign_up("user@example.com", "hunter22", "hunter22")
        added = [
            vault.add("https://a.example.com", "a", "pa"),
            vault.add("https://b.example.com", "b", "pb"),
            vault.add("https://c.example.com", "c", "pc"),
        ]
        await gate.sign_out()
        vault = await gate.sign_in("user@example.com", "hunter22")
        return added, vault.load()

    added, loaded = asyncio.run(scenario())
    assert loaded == added


@pytest.mark.parametrize(
    "code,reason",
    [
        (ProviderErrorCode.WRONG_PASSWORD, AuthErrorReason.INVALID_CREDENTIALS),
        (ProviderErrorCode.USER_NOT_FOUND, AuthErrorReason.UNKNOWN_ACCOUNT),
        (ProviderErrorCode.EMAIL_ALREADY_IN_USE, AuthErrorReason.EMAIL_ALREADY_IN_USE),
        (ProviderErrorCode.WEAK_PASSWORD, AuthErrorReason.WEAK_SECRET),
        (ProviderErrorCode.NETWORK_FAILURE, AuthErrorReason.UNAVAILABLE),
        (ProviderErrorCode.UNKNOWN, AuthErrorReason.OTHER),
    ],
)
def test_provider_errors_map_to_reasons(gate, provider, code, reason):
    provider.fail_with = ProviderError(code, "provider said no")
    with pytest.raises(AuthenticationError) as exc:
        asyncio.run(gate.sign_in("user@example.com", "hunter22"))

    assert exc.value.reason is reason
    session = gate.current_state()
    assert session.state is SessionState.AUTH_ERROR
    assert session.error_reason is reason
    assert session.principal is None
    with pytest.raises(NotAuthenticatedError):
        gate.vault


def test_unmapped_code_keeps_provider_message():
    error = map_provider_error(ProviderError("auth/too-many-requests", "Slow down"))
    assert error.reason is AuthErrorReason.OTHER
    assert error.message == "Slow down"


def test_string_codes_are_normalised():
    error = map_provider_error(ProviderError("auth/wrong-password", "nope"))
    assert error.reason is AuthErrorReason.INVALID_CREDENTIALS
    assert error.message == "Incorrect password"


def test_retry_after_error_succeeds(gate, provider):
    provider.accounts["user@example.com"] = "hunter22"

    async def scenario():
        with pytest.raises(AuthenticationError):
            await gate.sign_in("user@example.com", "wrong-password")
        assert gate.current_state().state is SessionState.AUTH_ERROR
        await gate.sign_in("user@example.com", "hunter22")

    asyncio.run(scenario())
    assert gate.current_state().state is SessionState.AUTHENTICATED


def test_duplicate_sign_up_rejected(gate, provider):
    provider.accounts["user@example.com"] = "hunter22"
    with pytest.raises(AuthenticationError) as exc:
        asyncio.run(gate.sign_up("user@example.com", "hunter22", "hunter22"))
    assert exc.value.reason is AuthErrorReason.EMAIL_ALREADY_IN_USE


def test_provider_timeout_is_unavailable(gate, provider):
    provider.accounts["user@example.com"] = "hunter22"
    provider.delay = 5.0
    gate.provider_timeout = 0.05

    with pytest.raises(AuthenticationError) as exc:
        asyncio.run(gate.sign_in("user@example.com", "hunter22"))
    assert exc.value.reason is AuthErrorReason.UNAVAILABLE
    assert gate.current_state().state is SessionState.AUTH_ERROR


def test_cancelled_sign_in_returns_to_anonymous(gate, provider):
    provider.accounts["user@example.com"] = "hunter22"
    provider.delay = 0.5

    async def scenario():
        task = asyncio.create_task(gate.sign_in("user@example.com", "hunter22"))
        await asyncio.sleep(0.05)
        assert gate.current_state().state is SessionState.AUTHENTICATING
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())
    assert gate.current_state().state is SessionState.ANONYMOUS
    with pytest.raises(NotAuthenticatedError):
        gate.vault


def test_sign_out_invalidates_outstanding_vault(gate, provider):
    async def scenario():
        vault = await gate.sign_up("user@example.com", "hunter22", "hunter22")
        record = vault.add("https://a.example.com", "a", "pa")
        await gate.sign_out()
        return vault, record

    vault, record = asyncio.run(scenario())

    assert gate.current_state().state is SessionState.ANONYMOUS
    assert ("sign_out", "user@example.com") in provider.calls
    with pytest.raises(VaultClosedError):
        vault.add("https://b.example.com", "b", "pb")
    with pytest.raises(VaultClosedError):
        vault.reveal(record.id)


def test_signing_in_as_another_user_closes_previous_vault(gate, provider, storage):
    async def scenario():
        first = await gate.sign_up("one@example.com", "hunter22", "hunter22")
        first.add("https://a.example.com", "a", "pa")
        second = await gate.sign_up("two@example.com", "hunter33", "hunter33")
        return first, second

    first, second = asyncio.run(scenario())
    assert first.closed
    assert second.load() == []
    assert gate.current_state().principal.email == "two@example.com"


def test_storage_failure_after_confirmation_signs_principal_out(gate, provider, storage, monkeypatch):
    provider.accounts["user@example.com"] = "hunter22"

    def broken_read(principal_id):
        raise StorageIOError("disk unavailable")

    monkeypatch.setattr(storage, "read_blob", broken_read)

    with pytest.raises(StorageIOError):
        asyncio.run(gate.sign_in("user@example.com", "hunter22"))

    session = gate.current_state()
    assert session.state is SessionState.AUTH_ERROR
    assert session.error_reason is AuthErrorReason.UNAVAILABLE
    assert provider.calls == [("authenticate", "user@example.com"), ("sign_out", "user@example.com")]


def test_costly_kdf_header_surfaces_as_corrupt_store(gate, provider, storage):
    provider.accounts["user@example.com"] = "hunter22"
    header = {"kdf": {"algorithm": "pbkdf2_sha256", "salt": "00" * 16, "iterations": 10 ** 9}}
    storage.write_blob("id-user@example.com", pack_blob(header, b"n" * 12, b"ciphertext"))

    vault = asyncio.run(gate.sign_in("user@example.com", "hunter22"))

    assert gate.current_state().state is SessionState.AUTHENTICATED
    with pytest.raises(CorruptStoreError):
        vault.load()
    with pytest.raises(CorruptStoreError):
        vault.list()
