import os
import sys

import pytest


def pytest_configure():
    # Ensure the repository root is importable for the top-level modules
    root = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    if root not in sys.path:
        sys.path.insert(0, root)


@pytest.fixture
def crypto():
    from crypto_utils import CryptoUtils

    # Minimal Argon2 cost so tests stay fast
    return CryptoUtils("test-pepper", time_cost=1, memory_cost=64, parallelism=1)


@pytest.fixture
def storage(tmp_path):
    from storage import Storage

    store = Storage(str(tmp_path / "vault.db"))
    store.init_db()
    yield store
    store.close()
