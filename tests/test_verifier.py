# tests/test_verifier.py
"""
Unit tests for receipt verification.

The ledger is the in-memory FakeChainClient; the repository is a real
SQLite database in a temp directory.
"""
import time
from unittest.mock import patch

import pytest

from app.core.errors import (
    AssetNotFoundError,
    BadAmountError,
    BadRequestError,
    ChallengeExpiredError,
    InvalidTransactionError,
    NoTransferFoundError,
    SelfPaymentError,
)
from app.storage.records import PaymentRecord
from app.x402.audit import AuditEventType, read_audit_log
from app.x402.verifier import ReceiptVerifier, amount_within_tolerance
from tests.fakes import PAYER, PRICE, RECIPIENT, make_asset


class TestAmountTolerance:
    """Test the 0.01% amount tolerance."""

    def test_exact_amount(self):
        assert amount_within_tolerance(PRICE, PRICE)

    def test_one_basis_point_over_accepted(self):
        assert amount_within_tolerance(PRICE + PRICE // 10000, PRICE)

    def test_one_basis_point_under_accepted(self):
        assert amount_within_tolerance(PRICE - PRICE // 10000, PRICE)

    def test_ten_basis_points_over_rejected(self):
        assert not amount_within_tolerance(PRICE + PRICE // 1000, PRICE)

    def test_underpayment_rejected(self):
        assert not amount_within_tolerance(PRICE // 2, PRICE)


class TestVerifySuccess:
    """Test the happy path."""

    def test_issues_token_for_asset(self, verifier, chain, codec, asset):
        chain.add_transfer("sig1")

        result = verifier.verify("sig1", "prt-1", asset.id)

        assert not result.replayed
        assert result.asset_id == asset.id
        assert result.payer == PAYER
        assert codec.is_authorized(result.access_token, asset.id)

    def test_records_payment(self, verifier, chain, repository, asset):
        chain.add_transfer("sig1")
        verifier.verify("sig1", "prt-1", asset.id)

        record = repository.get_payment_by_signature("sig1")
        assert record.asset_id == asset.id
        assert record.payer == PAYER
        assert record.amount == PRICE
        assert record.recipient == RECIPIENT
        assert record.payment_request_token == "prt-1"

    def test_fee_payer_preferred_over_transfer_source(self, verifier, chain, asset):
        fee_payer = "0x3333333333333333333333333333333333333333"
        chain.add_transfer("sig1", fee_payer=fee_payer)
        assert verifier.verify("sig1", "prt-1", asset.id).payer == fee_payer

    def test_recipient_compared_case_insensitively(self, verifier, chain, repository):
        mixed = "0xAbCdEf0000000000000000000000000000000001"
        repository.save_asset(make_asset("asset-2", recipient=mixed))
        chain.add_transfer("sig1", destination=mixed.lower())
        assert verifier.verify("sig1", "prt-1", "asset-2").asset_id == "asset-2"

    def test_amount_within_tolerance_accepted(self, verifier, chain, asset):
        chain.add_transfer("sig1", amount=1_000_100)
        assert verifier.verify("sig1", "prt-1", asset.id).amount == 1_000_100

    def test_unexpired_challenge_accepted(self, verifier, chain, asset):
        chain.add_transfer("sig1")
        result = verifier.verify("sig1", "prt-1", asset.id, challenge_expires_at=int(time.time()) + 60)
        assert result.asset_id == asset.id

    def test_post_payment_hook_called(self, verifier, chain, asset, payments):
        chain.add_transfer("sig1")
        verifier.verify("sig1", "prt-1", asset.id)
        assert payments == [(PAYER, PRICE)]

    def test_hook_receives_payee(self, repository, chain, codec, asset):
        calls = []
        verifier = ReceiptVerifier(repository, chain, codec, on_payment=lambda *args: calls.append(args))
        chain.add_transfer("sig1")

        verifier.verify("sig1", "prt-1", asset.id)
        assert calls == [(PAYER, RECIPIENT, PRICE)]

    def test_hook_failure_does_not_fail_payment(self, repository, chain, codec, asset):
        def explode(payer, recipient, amount):
            raise RuntimeError("minter down")

        verifier = ReceiptVerifier(repository, chain, codec, on_payment=explode)
        chain.add_transfer("sig1")

        result = verifier.verify("sig1", "prt-1", asset.id)
        assert result.access_token
        assert repository.get_payment_by_signature("sig1") is not None

    def test_audits_verified_payment(self, verifier, chain, asset):
        chain.add_transfer("sig1")
        verifier.verify("sig1", "prt-1", asset.id)

        events = read_audit_log(event_type=AuditEventType.PAYMENT_VERIFIED)
        assert len(events) == 1
        assert events[0]["wallet_address"] == PAYER
        assert events[0]["data"]["signature"] == "sig1"


class TestIdempotentReplay:
    """Re-submitting a recorded signature."""

    def test_replay_returns_same_grant(self, verifier, chain, codec, repository, asset, payments):
        chain.add_transfer("sig1")
        first = verifier.verify("sig1", "prt-1", asset.id)
        second = verifier.verify("sig1", "prt-1", asset.id)

        assert second.replayed
        assert second.asset_id == first.asset_id
        assert codec.is_authorized(second.access_token, asset.id)
        assert len(repository.list_payments(payer=PAYER)) == 1
        assert len(payments) == 1

    def test_replay_skips_chain(self, verifier, chain, asset):
        chain.add_transfer("sig1")
        verifier.verify("sig1", "prt-1", asset.id)
        lookups = len(chain.lookups)

        verifier.verify("sig1", "prt-1", asset.id)
        assert len(chain.lookups) == lookups

    def test_replay_for_other_asset_rejected(self, verifier, chain, repository, asset):
        repository.save_asset(make_asset("asset-2"))
        chain.add_transfer("sig1")
        verifier.verify("sig1", "prt-1", asset.id)

        with pytest.raises(BadRequestError) as exc:
            verifier.verify("sig1", "prt-2", "asset-2")
        assert exc.value.context["assetId"] == asset.id

    def test_concurrent_duplicate_insert_is_replay(self, verifier, chain, repository, asset):
        """Losing the unique-insert race yields the stored grant."""
        chain.add_transfer("sig1")
        stored = PaymentRecord(
            asset_id=asset.id, signature="sig1", payer=PAYER, amount=PRICE,
            timestamp=1, payment_request_token="prt-0", recipient=RECIPIENT,
        )
        repository.append_payment_unique(stored)

        with patch.object(repository, "get_payment_by_signature", side_effect=[None, stored]):
            result = verifier.verify("sig1", "prt-1", asset.id)

        assert result.replayed
        assert result.payer == PAYER
        assert len(repository.list_payments()) == 1


class TestVerifyFailures:
    """Typed failures for invalid receipts."""

    def test_missing_fields(self, verifier):
        with pytest.raises(BadRequestError):
            verifier.verify("", "prt-1", "asset-1")
        with pytest.raises(BadRequestError):
            verifier.verify("sig1", "", "asset-1")

    def test_expired_challenge_rejected_even_if_transfer_valid(self, verifier, chain, repository, asset):
        chain.add_transfer("sig1")
        with pytest.raises(ChallengeExpiredError):
            verifier.verify("sig1", "prt-1", asset.id, challenge_expires_at=int(time.time()) - 1)
        assert repository.get_payment_by_signature("sig1") is None

    def test_unknown_asset(self, verifier, chain):
        chain.add_transfer("sig1")
        with pytest.raises(AssetNotFoundError):
            verifier.verify("sig1", "prt-1", "missing")

    def test_transaction_not_found(self, verifier, asset):
        with pytest.raises(InvalidTransactionError) as exc:
            verifier.verify("nope", "prt-1", asset.id)
        assert exc.value.context["explorerUrl"] == "https://explorer.test/tx/nope"

    def test_failed_transaction(self, verifier, chain, asset):
        chain.add_transfer("sig1", success=False)
        with pytest.raises(InvalidTransactionError):
            verifier.verify("sig1", "prt-1", asset.id)

    def test_transfer_to_other_recipient(self, verifier, chain, asset):
        chain.add_transfer("sig1", destination="0x9999999999999999999999999999999999999999")
        with pytest.raises(NoTransferFoundError):
            verifier.verify("sig1", "prt-1", asset.id)

    def test_transfer_of_other_token(self, verifier, chain, asset):
        chain.add_transfer("sig1", token="0x4444444444444444444444444444444444444444")
        with pytest.raises(NoTransferFoundError):
            verifier.verify("sig1", "prt-1", asset.id)

    def test_amount_outside_tolerance(self, verifier, chain, repository, asset):
        chain.add_transfer("sig1", amount=1_001_000)
        with pytest.raises(BadAmountError) as exc:
            verifier.verify("sig1", "prt-1", asset.id)

        assert exc.value.context == {
            "received": "1001000",
            "required": str(PRICE),
            "destination": RECIPIENT,
        }
        assert repository.get_payment_by_signature("sig1") is None

    def test_failure_is_audited(self, verifier, chain, asset):
        chain.add_transfer("sig1", amount=1)
        with pytest.raises(BadAmountError):
            verifier.verify("sig1", "prt-1", asset.id)

        events = read_audit_log(event_type=AuditEventType.PAYMENT_FAILED)
        assert events[0]["data"]["reason"] == "bad_amount"


class TestSelfPaymentPolicy:
    """Payments where payer == recipient."""

    def test_rejected_by_default(self, verifier, chain, repository, asset):
        chain.add_transfer("sig1", source=RECIPIENT)
        with pytest.raises(SelfPaymentError):
            verifier.verify("sig1", "prt-1", asset.id)
        assert repository.get_payment_by_signature("sig1") is None

    def test_flag_policy_accepts_with_flag(self, repository, chain, codec, asset):
        verifier = ReceiptVerifier(repository, chain, codec, self_payment_policy="flag")
        chain.add_transfer("sig1", source=RECIPIENT)

        result = verifier.verify("sig1", "prt-1", asset.id)
        assert result.flags == ["self_payment"]

        events = read_audit_log(event_type=AuditEventType.PAYMENT_VERIFIED)
        assert events[0]["data"]["flags"] == ["self_payment"]

    def test_allow_policy(self, repository, chain, codec, asset):
        verifier = ReceiptVerifier(repository, chain, codec, self_payment_policy="allow")
        chain.add_transfer("sig1", source=RECIPIENT)
        assert verifier.verify("sig1", "prt-1", asset.id).flags == []

    def test_unknown_policy(self, repository, chain, codec):
        with pytest.raises(ValueError):
            ReceiptVerifier(repository, chain, codec, self_payment_policy="maybe")
