# oneshot_webhook/x402/audit.py
"""
Audit logging for x402 payments.

Every payment decision is appended to a JSON lines file so disputes and
unresolved settlements can be reconciled later. Settlements that ended
ambiguously are logged with the placeholder transaction hash and a distinct
event type so they can be found and resolved against the chain.

Log location: X402_AUDIT_LOG_PATH (auditing is off when empty)
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from oneshot_webhook.core.config import settings

logger = logging.getLogger(__name__)


class AuditEventType(Enum):
    """Types of audit events that can be logged."""
    PAYMENT_REQUIRED_SENT = "payment_required_sent"
    PAYMENT_REJECTED = "payment_rejected"
    PAYMENT_SETTLED = "payment_settled"
    SETTLEMENT_AMBIGUOUS = "settlement_ambiguous"
    ACCESS_BLOCKED = "access_blocked"
    BACKEND_ERROR = "backend_error"


def generate_request_id() -> str:
    """Generate a unique request ID for tracking."""
    return str(uuid.uuid4())[:8]


def get_audit_log_path() -> Optional[Path]:
    """Get the path to the audit log file, or None when auditing is off."""
    log_path = settings.X402_AUDIT_LOG_PATH
    if not log_path:
        return None
    return Path(log_path)


def create_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    request_id: Optional[str] = None
) -> Dict[str, Any]:
    """Create an audit event dictionary."""
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type.value,
        "request_id": request_id or generate_request_id(),
        "data": data,
    }


def log_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    request_id: Optional[str] = None
) -> Optional[str]:
    """
    Append an event to the audit log.

    Returns:
        The request_id used for this event, or None if auditing is off or
        the write failed. Audit failures never fail the request.
    """
    log_path = get_audit_log_path()
    if log_path is None:
        return None

    event = create_audit_event(event_type, data, request_id)
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(log_path, "a") as f:
            f.write(json.dumps(event) + "\n")
    except OSError as e:
        logger.error(f"Failed to write audit event: {e}")
        return None

    logger.debug(f"Audit event logged: {event_type.value} [{event['request_id']}]")
    return event["request_id"]


def log_payment_required(error: str, networks: List[str], resource: str,
                         request_id: Optional[str] = None) -> Optional[str]:
    """Log a 402 Payment Required response."""
    return log_audit_event(
        AuditEventType.PAYMENT_REQUIRED_SENT,
        {"error": error, "networks": networks, "resource": resource},
        request_id=request_id
    )


def log_payment_rejected(stage: str, reason: Optional[str], payer: Optional[str] = None,
                         request_id: Optional[str] = None) -> Optional[str]:
    """Log a payment rejected by verification or settlement."""
    return log_audit_event(
        AuditEventType.PAYMENT_REJECTED,
        {"stage": stage, "reason": reason, "payer": payer},
        request_id=request_id
    )


def log_payment_settled(tx_hash: Optional[str], network: str, amount: str,
                        payer: Optional[str] = None,
                        request_id: Optional[str] = None) -> Optional[str]:
    """Log a settled payment."""
    return log_audit_event(
        AuditEventType.PAYMENT_SETTLED,
        {"tx_hash": tx_hash, "network": network, "amount": amount, "payer": payer},
        request_id=request_id
    )


def log_settlement_ambiguous(tx_hash: str, network: str, amount: str, error: Optional[str],
                             payer: Optional[str] = None,
                             request_id: Optional[str] = None) -> Optional[str]:
    """Log a verified payment whose settlement outcome is unknown."""
    return log_audit_event(
        AuditEventType.SETTLEMENT_AMBIGUOUS,
        {"tx_hash": tx_hash, "network": network, "amount": amount, "error": error, "payer": payer},
        request_id=request_id
    )


def log_access_blocked(client_ips: List[str], request_id: Optional[str] = None) -> Optional[str]:
    """Log a request refused by the IP allowlist."""
    return log_audit_event(
        AuditEventType.ACCESS_BLOCKED,
        {"client_ips": client_ips},
        request_id=request_id
    )


def log_backend_error(operation: str, error: str,
                      request_id: Optional[str] = None) -> Optional[str]:
    """Log a failed 1Shot API call that ended the request."""
    return log_audit_event(
        AuditEventType.BACKEND_ERROR,
        {"operation": operation, "error": error},
        request_id=request_id
    )


def read_audit_log(limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """
    Read events back from the audit log, oldest first.

    Args:
        limit: Only return the last N events
    """
    log_path = get_audit_log_path()
    if log_path is None or not log_path.exists():
        return []

    events = []
    with open(log_path) as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                events.append(json.loads(line))
            except json.JSONDecodeError:
                logger.warning(f"Skipping malformed audit log line: {line[:80]}")

    if limit is not None:
        events = events[-limit:]
    return events
