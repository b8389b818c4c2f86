# app/paygate/audit.py
"""
Audit logging for payment gate events.

This module logs payment events for:
- Dispute resolution between creators and buyers
- Financial reconciliation of settlements
- Operator review of suspected transaction reuse

Log format: JSON lines (one event per line)
Log location: Configured via PAYGATE_AUDIT_LOG_PATH

Writing the audit log never fails a request; write errors are logged.
"""
import json
import logging
import threading
import uuid
from collections import Counter, deque
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Deque, Dict, Iterator, List, Optional

from app.core.config import settings

logger = logging.getLogger(__name__)

_write_lock = threading.Lock()


class AuditEventType(Enum):
    """Types of audit events that can be logged."""
    CHALLENGE_ISSUED = "challenge_issued"
    CHALLENGE_EXPIRED = "challenge_expired"
    PAYMENT_VERIFIED = "payment_verified"
    PAYMENT_SETTLED = "payment_settled"
    PAYMENT_REPLAYED = "payment_replayed"
    PAYMENT_FAILED = "payment_failed"
    FRAUD_FLAGGED = "fraud_flagged"


def generate_request_id() -> str:
    """Generate a unique request ID for tracking."""
    return str(uuid.uuid4())[:8]


def get_audit_log_path() -> Path:
    """Get the path to the audit log file."""
    return Path(settings.PAYGATE_AUDIT_LOG_PATH)


def create_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    resource_id: Optional[str] = None,
    transaction_id: Optional[str] = None,
    request_id: Optional[str] = None
) -> Dict[str, Any]:
    """Create an audit event dictionary."""
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type.value,
        "request_id": request_id or generate_request_id(),
        "resource_id": resource_id,
        "transaction_id": transaction_id,
        "data": data
    }


def log_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    resource_id: Optional[str] = None,
    transaction_id: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """
    Append an audit event to the audit log.

    Returns:
        The request_id used for this event, or None on error
    """
    event = create_audit_event(
        event_type=event_type,
        data=data,
        resource_id=resource_id,
        transaction_id=transaction_id,
        request_id=request_id
    )

    try:
        log_path = get_audit_log_path()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with _write_lock, open(log_path, "a") as f:
            f.write(json.dumps(event) + "\n")

        logger.debug(f"Audit event logged: {event_type.value} [{event['request_id']}]")
        return event["request_id"]

    except OSError as e:
        logger.error(f"Failed to write audit event: {e}")
        return None


# Convenience functions for specific event types

def log_challenge_issued(
    resource_id: str,
    challenge_id: str,
    amount_atomic: int,
    recipient_address: str,
    expires_at: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a challenge issued (payment required) event."""
    return log_audit_event(
        event_type=AuditEventType.CHALLENGE_ISSUED,
        data={
            "challenge_id": challenge_id,
            "amount_atomic": str(amount_atomic),
            "recipient_address": recipient_address,
            "expires_at": expires_at,
        },
        resource_id=resource_id,
        request_id=request_id
    )


def log_challenge_expired(
    resource_id: str,
    challenge_id: str,
    transaction_id: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a payment presented against an expired challenge."""
    return log_audit_event(
        event_type=AuditEventType.CHALLENGE_EXPIRED,
        data={"challenge_id": challenge_id},
        resource_id=resource_id,
        transaction_id=transaction_id,
        request_id=request_id
    )


def log_payment_verified(
    resource_id: str,
    transaction_id: str,
    amount_atomic: int,
    sender: Optional[str],
    confirmations: Optional[int],
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a successful on-chain verification."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_VERIFIED,
        data={
            "amount_atomic": str(amount_atomic),
            "sender": sender,
            "confirmations": confirmations,
        },
        resource_id=resource_id,
        transaction_id=transaction_id,
        request_id=request_id
    )


def log_payment_settled(
    resource_id: str,
    transaction_id: str,
    challenge_id: str,
    total_amount: int,
    creator_amount: int,
    platform_fee: int,
    replayed: bool = False,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a settlement, or an idempotent replay of one."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_REPLAYED if replayed else AuditEventType.PAYMENT_SETTLED,
        data={
            "challenge_id": challenge_id,
            "total_amount": str(total_amount),
            "creator_amount": str(creator_amount),
            "platform_fee": str(platform_fee),
        },
        resource_id=resource_id,
        transaction_id=transaction_id,
        request_id=request_id
    )


def log_payment_failed(
    resource_id: str,
    error_code: str,
    reason: str,
    retryable: bool,
    transaction_id: Optional[str] = None,
    challenge_id: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a payment verification or settlement failure."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_FAILED,
        data={
            "error_code": error_code,
            "reason": reason,
            "retryable": retryable,
            "challenge_id": challenge_id,
        },
        resource_id=resource_id,
        transaction_id=transaction_id,
        request_id=request_id
    )


def log_fraud_flagged(
    resource_id: str,
    transaction_id: str,
    details: Dict[str, Any],
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a suspected transaction reuse for operator review."""
    return log_audit_event(
        event_type=AuditEventType.FRAUD_FLAGGED,
        data=details,
        resource_id=resource_id,
        transaction_id=transaction_id,
        request_id=request_id
    )


def _scan_audit_log(log_path: Path) -> Iterator[Dict[str, Any]]:
    """Yield events in file order, skipping blank and corrupt lines."""
    with open(log_path, "r") as f:
        for line_number, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                event = json.loads(line)
            except json.JSONDecodeError:
                logger.warning(f"Skipping corrupt audit line {line_number} in {log_path}")
                continue
            if isinstance(event, dict):
                yield event


def read_audit_log(
    max_entries: int = 100,
    event_type: Optional[AuditEventType] = None,
    resource_id: Optional[str] = None
) -> List[Dict[str, Any]]:
    """
    Read the most recent entries from the audit log, newest first.

    Only the last ``max_entries`` matches are held while scanning.
    """
    log_path = get_audit_log_path()
    if not log_path.exists():
        return []

    recent: Deque[Dict[str, Any]] = deque(maxlen=max_entries)
    try:
        for event in _scan_audit_log(log_path):
            if event_type and event.get("event_type") != event_type.value:
                continue
            if resource_id and event.get("resource_id") != resource_id:
                continue
            recent.append(event)
    except OSError as e:
        logger.error(f"Failed to read audit log: {e}")
        return []

    return list(reversed(recent))


def get_audit_stats() -> Dict[str, Any]:
    """Event counts per type and the time span covered by the audit log."""
    log_path = get_audit_log_path()
    stats: Dict[str, Any] = {
        "total_events": 0,
        "events_by_type": {},
        "log_path": str(log_path),
        "log_exists": log_path.exists(),
    }
    if not stats["log_exists"]:
        return stats

    counts: Counter = Counter()
    first_event = last_event = None
    try:
        for event in _scan_audit_log(log_path):
            counts[event.get("event_type", "unknown")] += 1
            timestamp = event.get("timestamp")
            if timestamp:
                first_event = first_event or timestamp
                last_event = timestamp
    except OSError as e:
        logger.error(f"Failed to get audit stats: {e}")
        stats["error"] = str(e)
        return stats

    stats.update(
        total_events=sum(counts.values()),
        events_by_type=dict(counts),
        first_event=first_event,
        last_event=last_event,
    )
    return stats
