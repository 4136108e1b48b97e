# app/x402/audit.py
"""
Audit logging for payment events.

Every challenge, receipt, verification outcome, agent payment and reputation
mint is appended here so a human can reconcile disputes against the chain.

Log format: JSON lines (one event per line)
Log location: Configured via AUDIT_LOG_PATH (disabled with AUDIT_ENABLED=false)

Events never contain passwords or key material.
"""
import json
import logging
import uuid
from collections import Counter
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from app.core.config import settings

logger = logging.getLogger(__name__)


class AuditEventType(Enum):
    """Types of audit events that can be logged."""
    CHALLENGE_ISSUED = "challenge_issued"
    RECEIPT_RECEIVED = "receipt_received"
    PAYMENT_VERIFIED = "payment_verified"
    PAYMENT_REPLAYED = "payment_replayed"
    PAYMENT_FAILED = "payment_failed"
    AGENT_CREATED = "agent_created"
    AGENT_FUNDED = "agent_funded"
    AGENT_PAYMENT = "agent_payment"
    REPUTATION_MINTED = "reputation_minted"
    ERROR = "error"


def generate_request_id() -> str:
    """Generate a short unique request ID for tracking."""
    return str(uuid.uuid4())[:8]


def get_audit_log_path() -> Path:
    return Path(settings.AUDIT_LOG_PATH)


def create_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    wallet_address: Optional[str] = None,
    request_id: Optional[str] = None
) -> Dict[str, Any]:
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type.value,
        "request_id": request_id or generate_request_id(),
        "wallet_address": wallet_address,
        "data": data
    }


def log_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    wallet_address: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """
    Append one event line to the audit log.

    Write failures are logged, never raised to the caller.

    Returns:
        The event's request_id, or None when auditing is off or the write failed
    """
    if not settings.AUDIT_ENABLED:
        return None

    event = create_audit_event(event_type, data, wallet_address, request_id)
    log_path = get_audit_log_path()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with log_path.open("a") as f:
            f.write(json.dumps(event) + "\n")
    except OSError as e:
        logger.error(f"Could not append {event_type.value} to {log_path}: {e}")
        return None

    logger.debug(f"Audited {event_type.value} [{event['request_id']}]")
    return event["request_id"]


# Convenience functions for specific event types

def log_challenge_issued(
    asset_id: str,
    amount: int,
    currency: str,
    network: str,
    recipient: str,
    payment_request_token: str,
    expires_at: int,
) -> Optional[str]:
    return log_audit_event(
        event_type=AuditEventType.CHALLENGE_ISSUED,
        data={
            "asset_id": asset_id,
            "amount": str(amount),
            "currency": currency,
            "network": network,
            "recipient": recipient,
            "payment_request_token": payment_request_token,
            "expires_at": expires_at,
        },
    )


def log_receipt_received(
    signature: str,
    asset_id: str,
    payment_request_token: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    return log_audit_event(
        event_type=AuditEventType.RECEIPT_RECEIVED,
        data={
            "signature": signature,
            "asset_id": asset_id,
            "payment_request_token": payment_request_token,
        },
        request_id=request_id
    )


def log_payment_verified(
    signature: str,
    asset_id: str,
    payer: str,
    amount: int,
    flags: Optional[List[str]] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_VERIFIED,
        data={
            "signature": signature,
            "asset_id": asset_id,
            "amount": str(amount),
            "flags": flags or [],
        },
        wallet_address=payer,
        request_id=request_id
    )


def log_payment_replayed(
    signature: str,
    asset_id: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_REPLAYED,
        data={"signature": signature, "asset_id": asset_id},
        request_id=request_id
    )


def log_payment_failed(
    signature: Optional[str],
    asset_id: Optional[str],
    reason: str,
    context: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_FAILED,
        data={
            "signature": signature,
            "asset_id": asset_id,
            "reason": reason,
            "context": context or {},
        },
        request_id=request_id
    )


def log_agent_created(agent_id: str, user_id: str, agent_address: str) -> Optional[str]:
    return log_audit_event(
        event_type=AuditEventType.AGENT_CREATED,
        data={"agent_id": agent_id, "user_id": user_id},
        wallet_address=agent_address,
    )


def log_agent_funded(
    agent_id: str,
    agent_address: str,
    from_wallet: str,
    signature: str,
    balance: int,
) -> Optional[str]:
    return log_audit_event(
        event_type=AuditEventType.AGENT_FUNDED,
        data={
            "agent_id": agent_id,
            "from_wallet": from_wallet,
            "signature": signature,
            "balance": str(balance),
        },
        wallet_address=agent_address,
    )


def log_agent_payment(
    agent_id: str,
    agent_address: str,
    asset_id: str,
    signature: str,
    amount: int,
    success: bool,
    reason: Optional[str] = None,
) -> Optional[str]:
    return log_audit_event(
        event_type=AuditEventType.AGENT_PAYMENT,
        data={
            "agent_id": agent_id,
            "asset_id": asset_id,
            "signature": signature,
            "amount": str(amount),
            "success": success,
            "reason": reason,
        },
        wallet_address=agent_address,
    )


def log_reputation_minted(wallet: str, mint: str, score: int, level: str) -> Optional[str]:
    return log_audit_event(
        event_type=AuditEventType.REPUTATION_MINTED,
        data={"mint": mint, "score": score, "level": level},
        wallet_address=wallet,
    )


def log_error(
    error_type: str,
    error_message: str,
    context: Optional[Dict[str, Any]] = None,
    wallet_address: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    return log_audit_event(
        event_type=AuditEventType.ERROR,
        data={
            "error_type": error_type,
            "error_message": error_message,
            "context": context or {},
        },
        wallet_address=wallet_address,
        request_id=request_id
    )


def _iter_events(log_path: Path) -> Iterator[Dict[str, Any]]:
    """Yield parsed events in file order, skipping blank and corrupt lines."""
    with log_path.open() as f:
        for line in f:
            if not line.strip():
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError:
                logger.debug(f"Skipping corrupt audit line in {log_path}")


def read_audit_log(
    max_entries: int = 100,
    event_type: Optional[AuditEventType] = None,
    wallet_address: Optional[str] = None
) -> List[Dict[str, Any]]:
    """
    Read entries from the audit log, most recent first.

    `wallet_address` matches case-insensitively.
    """
    log_path = get_audit_log_path()
    if not log_path.exists():
        return []

    wanted_wallet = wallet_address.lower() if wallet_address else None
    try:
        matching = [
            event for event in _iter_events(log_path)
            if (event_type is None or event.get("event_type") == event_type.value)
            and (wanted_wallet is None or (event.get("wallet_address") or "").lower() == wanted_wallet)
        ]
    except OSError as e:
        logger.error(f"Could not read audit log {log_path}: {e}")
        return []

    matching.reverse()
    return matching[:max_entries]


def get_audit_stats() -> Dict[str, Any]:
    """Event counts per type plus the first and last event times."""
    log_path = get_audit_log_path()
    stats: Dict[str, Any] = {
        "total_events": 0,
        "events_by_type": {},
        "first_event": None,
        "last_event": None,
        "log_path": str(log_path),
        "log_exists": log_path.exists(),
    }
    if not stats["log_exists"]:
        return stats

    counts = Counter()
    for event in _iter_events(log_path):
        counts[event.get("event_type", "unknown")] += 1
        stamp = event.get("timestamp")
        if stamp:
            stats["first_event"] = stats["first_event"] or stamp
            stats["last_event"] = stamp

    stats["total_events"] = sum(counts.values())
    stats["events_by_type"] = dict(counts)
    return stats
