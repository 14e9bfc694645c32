"""Audit logging for messaging - security and content-policy events.

Security guidelines:
- NEVER log message bodies
- Use IDs instead of raw data where possible
- Abuse rows keep a body digest and length, not the text
"""

import hashlib
import logging
from typing import Any

from erp_messaging.db.enums import SecurityEventType
from erp_messaging.services.messaging_store import MessagingStore
from erp_messaging.utils.datetime_parsing import utcnow

logger = logging.getLogger(__name__)


def body_fingerprint(body: str) -> dict[str, Any]:
    """Digest + length of a message body, safe to persist in audit rows."""
    text = body or ""
    return {
        "body_sha256": hashlib.sha256(text.encode("utf-8")).hexdigest(),
        "body_length": len(text),
    }


def log_security_event(
    store: MessagingStore,
    event: SecurityEventType,
    company_id: int | None,
    empid: str | None,
    details: dict[str, Any] | None = None,
) -> None:
    """Append a row to messaging_security_events."""
    store.insert_security_event({
        "company_id": company_id,
        "empid": empid,
        "event": event.value,
        "details": details or {},
        "created_at": utcnow(),
    })


def log_abuse_event(
    store: MessagingStore,
    company_id: int,
    empid: str,
    category: str,
    reason: str,
    body: str,
) -> None:
    """Append a content-policy rejection to messaging_abuse_audit."""
    store.insert_abuse_event({
        "company_id": company_id,
        "empid": empid,
        "category": category,
        "reason": reason,
        "payload": body_fingerprint(body),
        "created_at": utcnow(),
    })
    logger.warning(
        "Message rejected by content policy company_id=%s empid=%s category=%s",
        company_id, empid, category,
    )


# =============================================================================
# Convenience Functions for Common Events
# =============================================================================

def log_permission_denied(
    store: MessagingStore,
    company_id: int | None,
    empid: str | None,
    action: str,
    reason: str,
    rule_id: str | None = None,
    message_id: int | None = None,
) -> None:
    """Log a messaging permission denial."""
    log_security_event(
        store,
        SecurityEventType.PERMISSION_DENIED,
        company_id,
        empid,
        details={"action": action, "reason": reason, "rule_id": rule_id, "message_id": message_id},
    )
    logger.warning(
        "Messaging permission denied company_id=%s empid=%s action=%s reason=%s",
        company_id, empid, action, reason,
    )


def log_retention_updated(
    store: MessagingStore,
    company_id: int,
    empid: str,
    message_class: str,
    retention_days: int,
) -> None:
    log_security_event(
        store,
        SecurityEventType.RETENTION_UPDATED,
        company_id,
        empid,
        details={"message_class": message_class, "retention_days": retention_days},
    )


def log_legal_hold_created(
    store: MessagingStore,
    company_id: int,
    empid: str,
    hold_id: int,
    scope: str,
) -> None:
    log_security_event(
        store,
        SecurityEventType.LEGAL_HOLD_CREATED,
        company_id,
        empid,
        details={"hold_id": hold_id, "scope": scope},
    )


def log_legal_hold_released(
    store: MessagingStore,
    company_id: int,
    empid: str,
    hold_id: int,
) -> None:
    log_security_event(
        store,
        SecurityEventType.LEGAL_HOLD_RELEASED,
        company_id,
        empid,
        details={"hold_id": hold_id},
    )


def log_purge_executed(
    store: MessagingStore,
    company_id: int,
    empid: str,
    purge_run_id: str,
    action_count: int,
    certificate_digest: str,
) -> None:
    log_security_event(
        store,
        SecurityEventType.PURGE_EXECUTED,
        company_id,
        empid,
        details={
            "purge_run_id": purge_run_id,
            "action_count": action_count,
            "certificate_digest": certificate_digest,
        },
    )
