from __future__ import annotations

import asyncio

import pytest

from errors import AuthenticationError, ProviderError
from identity import LocalIdentityProvider
from models import AuthErrorReason, ProviderErrorCode, SessionState
from session_gate import SessionGate


@pytest.fixture
def provider(crypto, storage):
    return LocalIdentityProvider(crypto, storage)


def _code(call):
    with pytest.raises(ProviderError) as exc:
        asyncio.run(call)
    return exc.value.code


def test_create_then_authenticate(provider, storage):
    created = asyncio.run(provider.create_account("user@example.com", "hunter22"))
    signed_in = asyncio.run(provider.authenticate("user@example.com", "hunter22"))

    assert created == signed_in
    account = storage.get_account("user@example.com")
    assert account.id == created.id
    assert "hunter22" not in account.password_hash
    assert account.last_login is not None


def test_duplicate_email(provider):
    asyncio.run(provider.create_account("user@example.com", "hunter22"))
    assert _code(provider.create_account("user@example.com", "other-pass")) is ProviderErrorCode.EMAIL_ALREADY_IN_USE


def test_unknown_account(provider):
    assert _code(provider.authenticate("ghost@example.com", "hunter22")) is ProviderErrorCode.USER_NOT_FOUND


def test_wrong_password(provider):
    asyncio.run(provider.create_account("user@example.com", "hunter22"))
    assert _code(provider.authenticate("user@example.com", "hunter23")) is ProviderErrorCode.WRONG_PASSWORD


def test_provider_checks_its_own_input(provider):
    assert _code(provider.create_account("user@example.com", "123")) is ProviderErrorCode.WEAK_PASSWORD
    assert _code(provider.create_account("nobody", "hunter22")) is ProviderErrorCode.INVALID_EMAIL


def test_database_failure_is_network_failure(crypto, tmp_path):
    from storage import Storage

    missing = Storage(str(tmp_path / "uninitialised.db"))
    provider = LocalIdentityProvider(crypto, missing)
    assert _code(provider.authenticate("user@example.com", "hunter22")) is ProviderErrorCode.NETWORK_FAILURE


def test_gate_with_local_provider_end_to_end(provider, storage, crypto):
    gate = SessionGate(provider, storage, crypto)

    async def scenario():
        vault = await gate.sign_up("user@example.com", "hunter22", "hunter22")
        vault.add("https://example.com", "alice", "pw")
        await gate.sign_out()

        with pytest.raises(AuthenticationError) as exc:
            await gate.sign_in("user@example.com", "hunter23")
        assert exc.value.reason is AuthErrorReason.INVALID_CREDENTIALS

        vault = await gate.sign_in("user@example.com", "hunter22")
        return vault.load()

    records = asyncio.run(scenario())
    assert [(r.website, r.username, r.secret) for r in records] == [("https://example.com", "alice", "pw")]
    assert gate.current_state().state is SessionState.AUTHENTICATED
