# tests/test_audit.py
"""
Unit tests for payment audit logging.
"""
import json
from unittest.mock import patch

from app.x402.audit import (
    AuditEventType,
    create_audit_event,
    generate_request_id,
    get_audit_stats,
    log_agent_payment,
    log_audit_event,
    log_challenge_issued,
    log_error,
    log_payment_failed,
    log_payment_verified,
    read_audit_log,
)


class TestCreateAuditEvent:
    """Test audit event creation."""

    def test_event_structure(self):
        event = create_audit_event(
            AuditEventType.PAYMENT_VERIFIED, {"signature": "sig1"},
            wallet_address="0x1234", request_id="abc12345",
        )
        assert event["event_type"] == "payment_verified"
        assert event["request_id"] == "abc12345"
        assert event["wallet_address"] == "0x1234"
        assert event["data"] == {"signature": "sig1"}
        assert event["timestamp"].endswith("+00:00")

    def test_request_ids_unique(self):
        ids = {generate_request_id() for _ in range(100)}
        assert len(ids) == 100
        assert all(len(i) == 8 for i in ids)


class TestLogAuditEvent:
    """Test writing events to the JSON-lines file."""

    def test_writes_json_lines(self, audit_log):
        log_audit_event(AuditEventType.CHALLENGE_ISSUED, {"n": 1})
        log_audit_event(AuditEventType.ERROR, {"n": 2})

        lines = audit_log.read_text().splitlines()
        assert [json.loads(line)["data"]["n"] for line in lines] == [1, 2]

    def test_creates_directory(self, tmp_path):
        log_path = tmp_path / "nested" / "dir" / "audit.jsonl"
        with patch("app.x402.audit.settings") as mock_settings:
            mock_settings.AUDIT_ENABLED = True
            mock_settings.AUDIT_LOG_PATH = str(log_path)
            assert log_audit_event(AuditEventType.ERROR, {}) is not None
        assert log_path.exists()

    def test_disabled(self, tmp_path):
        log_path = tmp_path / "audit.jsonl"
        with patch("app.x402.audit.settings") as mock_settings:
            mock_settings.AUDIT_ENABLED = False
            mock_settings.AUDIT_LOG_PATH = str(log_path)
            assert log_audit_event(AuditEventType.ERROR, {}) is None
        assert not log_path.exists()

    def test_write_failure_swallowed(self, tmp_path):
        with patch("app.x402.audit.settings") as mock_settings:
            mock_settings.AUDIT_ENABLED = True
            # A directory cannot be opened for appending
            mock_settings.AUDIT_LOG_PATH = str(tmp_path)
            assert log_audit_event(AuditEventType.ERROR, {}) is None


class TestConvenienceFunctions:

    def test_challenge_issued(self):
        log_challenge_issued("a1", 1_000_000, "USDC", "base-sepolia", "0xrec", "prt-1", 123)
        event = read_audit_log()[0]
        assert event["event_type"] == "challenge_issued"
        assert event["data"]["amount"] == "1000000"

    def test_payment_verified_carries_payer(self):
        log_payment_verified("sig1", "a1", "0xPayer", 1_000_000, flags=["self_payment"])
        event = read_audit_log()[0]
        assert event["wallet_address"] == "0xPayer"
        assert event["data"]["flags"] == ["self_payment"]

    def test_agent_payment_failure(self):
        log_agent_payment("agent-1", "0xagent", "a1", "", 1, success=False, reason="unauthorized")
        event = read_audit_log(event_type=AuditEventType.AGENT_PAYMENT)[0]
        assert event["data"]["success"] is False
        assert event["data"]["reason"] == "unauthorized"

    def test_shared_request_id(self):
        request_id = log_payment_failed("sig1", "a1", "bad_amount", {"received": "1"})
        log_error("oops", "details", request_id=request_id)
        assert {e["request_id"] for e in read_audit_log()} == {request_id}


class TestReadAuditLog:

    def test_most_recent_first_and_filters(self):
        log_payment_verified("sig1", "a1", "0xAAA", 1)
        log_payment_verified("sig2", "a1", "0xBBB", 1)
        log_error("oops", "details")

        events = read_audit_log()
        assert events[0]["event_type"] == "error"
        assert len(read_audit_log(max_entries=2)) == 2
        assert len(read_audit_log(event_type=AuditEventType.PAYMENT_VERIFIED)) == 2
        assert read_audit_log(wallet_address="0xaaa")[0]["data"]["signature"] == "sig1"

    def test_missing_file(self):
        assert read_audit_log() == []

    def test_skips_corrupt_lines(self, audit_log):
        log_error("oops", "details")
        with open(audit_log, "a") as f:
            f.write("{not json\n")
        assert len(read_audit_log()) == 1

    def test_stats(self):
        log_payment_verified("sig1", "a1", "0xAAA", 1)
        log_error("oops", "details")

        stats = get_audit_stats()
        assert stats["total_events"] == 2
        assert stats["events_by_type"] == {"payment_verified": 1, "error": 1}
        assert stats["log_exists"]
