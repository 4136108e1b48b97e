# tests/test_api.py
"""
Integration tests for the HTTP API.

Service dependencies are overridden with a temp SQLite repository and the
in-memory FakeChainClient, so the full request flow runs without a ledger.
"""
import pytest
from fastapi.testclient import TestClient

from app.api.deps import (
    get_agent_service,
    get_chain_client,
    get_receipt_verifier,
    get_repository,
    get_reputation_engine,
    get_token_codec,
)
from app.main import app
from app.reputation.engine import ReputationEngine
from app.wallet.agent import AgentWalletService
from app.wallet.vault import KeyVault
from tests.fakes import PAYER, PRICE, RECIPIENT, TOKEN, make_asset

API = "/api/v1"


@pytest.fixture
def client(repository, chain, codec, verifier, asset):
    service = AgentWalletService(repository, chain, KeyVault(), verifier, default_token_address=TOKEN)
    app.dependency_overrides = {
        get_repository: lambda: repository,
        get_chain_client: lambda: chain,
        get_token_codec: lambda: codec,
        get_receipt_verifier: lambda: verifier,
        get_agent_service: lambda: service,
        get_reputation_engine: lambda: ReputationEngine(repository),
    }
    yield TestClient(app)
    app.dependency_overrides = {}


def challenge_for(client, asset_id="asset-1"):
    response = client.get(f"{API}/assets/{asset_id}")
    assert response.status_code == 402
    return response.json()


class TestHealthCheck:

    def test_root(self, client):
        body = client.get("/").json()
        assert body["status"] == "ok"
        assert "version" in body


class TestAssets:
    """Test the challenge / download gate."""

    def test_402_challenge(self, client):
        body = challenge_for(client)

        assert body["error"] == "Payment Required"
        assert body["code"] == "402"
        assert body["paymentRequestToken"]
        assert body["challenge"]["amount"] == str(PRICE)
        assert body["challenge"]["recipient"] == RECIPIENT
        assert body["challenge"]["mint"] == TOKEN
        assert body["challenge"]["assetId"] == "asset-1"
        assert body["metadata"]["title"] == "Photo asset-1"

    def test_unknown_asset(self, client):
        response = client.get(f"{API}/assets/missing")
        assert response.status_code == 404
        assert response.json()["error"] == "asset_not_found"

    def test_free_asset(self, client, repository):
        repository.save_asset(make_asset("free-1", price=0))
        response = client.get(f"{API}/assets/free-1")
        assert response.status_code == 200
        assert response.json() == {"url": f"{API}/assets/free-1/full", "price": 0}

    def test_valid_token_returns_url(self, client, codec):
        token = codec.issue("asset-1")
        response = client.get(f"{API}/assets/asset-1", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 200
        assert response.json()["url"] == f"{API}/assets/asset-1/full"

    def test_valid_token_for_removed_asset_is_404(self, client, codec):
        token = codec.issue("gone")
        response = client.get(f"{API}/assets/gone", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 404
        assert response.json()["error"] == "asset_not_found"

    def test_token_for_other_asset_gets_challenge(self, client, codec, repository):
        repository.save_asset(make_asset("asset-2"))
        token = codec.issue("asset-2")
        response = client.get(f"{API}/assets/asset-1", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 402

    def test_expired_token_gets_challenge(self, client, codec):
        token = codec.issue("asset-1", ttl=-10)
        response = client.get(f"{API}/assets/asset-1", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 402

    def test_list_assets(self, client):
        body = client.get(f"{API}/assets/").json()
        assert body["count"] == 1
        assert body["assets"][0]["price"] == str(PRICE)

    def test_download_requires_token(self, client):
        response = client.get(f"{API}/assets/asset-1/full")
        assert response.status_code == 401
        assert response.json()["error"] == "unauthorized"

    def test_download_redirects_with_access_param(self, client, codec):
        token = codec.issue("asset-1")
        response = client.get(f"{API}/assets/asset-1/full?access={token}", follow_redirects=False)
        assert response.status_code == 302
        assert response.headers["location"] == "https://ipfs.test/ipfs/asset-1"


class TestReceipt:
    """Test receipt submission."""

    def test_end_to_end_payment(self, client, chain, repository):
        """402 -> pay on chain -> receipt -> download."""
        body = challenge_for(client)
        chain.add_transfer("sig1")

        response = client.post(f"{API}/receipt", json={
            "signature": "sig1",
            "paymentRequestToken": body["paymentRequestToken"],
            "imageId": "asset-1",
            "challenge": {"expiresAt": body["challenge"]["expiresAt"]},
        })
        assert response.status_code == 200
        token = response.json()["accessToken"]

        granted = client.get(f"{API}/assets/asset-1", headers={"Authorization": f"Bearer {token}"})
        assert granted.status_code == 200

        replay = client.post(f"{API}/receipt", json={
            "signature": "sig1",
            "paymentRequestToken": body["paymentRequestToken"],
            "imageId": "asset-1",
        })
        assert replay.status_code == 200
        assert len(repository.list_payments()) == 1

    def test_bad_amount(self, client, chain):
        chain.add_transfer("sig1", amount=PRICE // 2)
        response = client.post(f"{API}/receipt", json={
            "signature": "sig1", "paymentRequestToken": "prt", "imageId": "asset-1",
        })
        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "bad_amount"
        assert body["required"] == str(PRICE)
        assert body["received"] == str(PRICE // 2)

    def test_expired_challenge(self, client, chain):
        chain.add_transfer("sig1")
        response = client.post(f"{API}/receipt", json={
            "signature": "sig1", "paymentRequestToken": "prt", "imageId": "asset-1",
            "challenge": {"expiresAt": 1},
        })
        assert response.status_code == 400
        assert response.json()["error"] == "challenge_expired"

    def test_missing_fields(self, client):
        response = client.post(f"{API}/receipt", json={"signature": "sig1"})
        assert response.status_code == 400
        assert response.json()["error"] == "bad_request"

    def test_unknown_transaction(self, client):
        response = client.post(f"{API}/receipt", json={
            "signature": "nope", "paymentRequestToken": "prt", "imageId": "asset-1",
        })
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_tx"
        assert response.json()["explorerUrl"].endswith("/nope")


class TestAgentEndpoints:
    """Test the agent wallet flow over HTTP."""

    def test_create_fund_pay_list(self, client, chain, codec):
        created = client.post(f"{API}/agent/create", json={"userId": "user-1", "password": "hunter2hunter2"})
        assert created.status_code == 200
        agent = created.json()["agent"]
        assert "encryptedPrivateKey" not in agent

        chain.add_transfer("fund-1", destination=agent["agentAddress"])
        chain.set_balance(agent["agentAddress"], TOKEN, 2 * PRICE)
        funded = client.post(f"{API}/agent/fund", json={
            "agentId": agent["id"], "fromWallet": PAYER, "signature": "fund-1",
        })
        assert funded.json()["balance"] == 2 * PRICE

        body = challenge_for(client)
        paid = client.post(f"{API}/agent/pay", json={
            "agentId": agent["id"],
            "password": "hunter2hunter2",
            "assetId": "asset-1",
            "paymentChallenge": body["challenge"],
            "paymentRequestToken": body["paymentRequestToken"],
        })
        assert paid.status_code == 200
        result = paid.json()
        assert result["success"]
        assert codec.is_authorized(result["accessToken"], "asset-1")
        assert result["agent"]["totalPurchases"] == 1
        assert result["agent"]["balance"] == PRICE

        listed = client.get(f"{API}/agent/list", params={"userId": "user-1"}).json()
        assert listed["count"] == 1

    def test_wrong_password_is_401(self, client):
        agent = client.post(f"{API}/agent/create", json={
            "userId": "user-1", "password": "hunter2hunter2",
        }).json()["agent"]
        body = challenge_for(client)

        response = client.post(f"{API}/agent/pay", json={
            "agentId": agent["id"],
            "password": "wrong-password",
            "assetId": "asset-1",
            "paymentChallenge": body["challenge"],
            "paymentRequestToken": body["paymentRequestToken"],
        })
        assert response.status_code == 401
        assert response.json()["error"] == "unauthorized"

    def test_insufficient_balance_is_400(self, client):
        agent = client.post(f"{API}/agent/create", json={
            "userId": "user-1", "password": "hunter2hunter2",
        }).json()["agent"]
        body = challenge_for(client)

        response = client.post(f"{API}/agent/pay", json={
            "agentId": agent["id"],
            "password": "hunter2hunter2",
            "assetId": "asset-1",
            "paymentChallenge": body["challenge"],
            "paymentRequestToken": body["paymentRequestToken"],
        })
        assert response.status_code == 400
        assert response.json()["error"] == "insufficient_balance"

    def test_unknown_agent_is_404(self, client):
        response = client.post(f"{API}/agent/fund", json={
            "agentId": "missing", "fromWallet": PAYER, "signature": "fund-1",
        })
        assert response.status_code == 404
        assert response.json()["error"] == "agent_not_found"


class TestReputationAndEarnings:

    def test_reputation_after_payment(self, client, chain):
        chain.add_transfer("sig1")
        client.post(f"{API}/receipt", json={
            "signature": "sig1", "paymentRequestToken": "prt", "imageId": "asset-1",
        })

        body = client.get(f"{API}/reputation/{PAYER}").json()
        assert body["totalPayments"] == 1
        assert body["score"] == 11
        assert body["level"] == "newcomer"
        assert body["formattedScore"] == "11 (Newcomer)"
        assert body["nfts"] == []

    def test_provider_earnings(self, client, chain):
        chain.add_transfer("sig1")
        client.post(f"{API}/receipt", json={
            "signature": "sig1", "paymentRequestToken": "prt", "imageId": "asset-1",
        })

        body = client.get(f"{API}/provider/earnings", params={"recipient": RECIPIENT}).json()
        assert body["totalEarnings"] == PRICE
        assert body["totalEarningsFormatted"] == "1"
        assert body["earningsByAsset"][0]["paymentCount"] == 1

    def test_provider_earnings_requires_recipient(self, client):
        response = client.get(f"{API}/provider/earnings")
        assert response.status_code == 400
