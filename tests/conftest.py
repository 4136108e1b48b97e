# tests/conftest.py
"""
Shared fixtures: an in-memory ledger, a throwaway SQLite repository and a
temporary audit log so tests never touch real RPC endpoints or files.
"""
from pathlib import Path
from unittest.mock import patch

import pytest

from app.storage.repository import SQLiteRepository
from app.x402.tokens import AccessTokenCodec
from app.x402.verifier import ReceiptVerifier
from tests.fakes import FakeChainClient, make_asset


@pytest.fixture(autouse=True)
def audit_log(tmp_path):
    """Redirect the audit log into the test's temp directory."""
    log_path = tmp_path / "audit.jsonl"
    with patch("app.x402.audit.settings") as mock_settings:
        mock_settings.AUDIT_ENABLED = True
        mock_settings.AUDIT_LOG_PATH = str(log_path)
        yield Path(log_path)


@pytest.fixture
def repository(tmp_path):
    repo = SQLiteRepository(str(tmp_path / "gateway.db"))
    yield repo
    repo.close()


@pytest.fixture
def chain():
    return FakeChainClient()


@pytest.fixture
def codec():
    return AccessTokenCodec("test-secret")


@pytest.fixture
def asset(repository):
    a = make_asset()
    repository.save_asset(a)
    return a


@pytest.fixture
def payments():
    """Collects (payer, amount) pairs passed to the post-payment hook."""
    return []


@pytest.fixture
def verifier(repository, chain, codec, payments):
    return ReceiptVerifier(
        repository,
        chain,
        codec,
        on_payment=lambda payer, recipient, amount: payments.append((payer, amount)),
    )
