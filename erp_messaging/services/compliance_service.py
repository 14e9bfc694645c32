"""Compliance service - message retention policies, legal holds, and purges.

Purges run in two steps: preview_purge builds a plan from the stored
messages, holds and policy; execute_purge applies it behind the approval
gate, writes the chain of custody, hard-deletes the messages and issues a
deletion certificate. A purge run id can be applied once.
"""

import logging
from datetime import datetime
from typing import Any, Iterable, Mapping

from erp_messaging.core.config import settings
from erp_messaging.core.errors import (
    ConflictError,
    DuplicateKeyError,
    MessagingError,
    NotFound,
    UnsupportedClassError,
    ValidationError,
)
from erp_messaging.db.enums import HoldScope, HoldStatus, MessageClass
from erp_messaging.schemas.compliance import LegalHoldCreate
from erp_messaging.services import audit_service
from erp_messaging.services.custody_ledger import (
    build_custody_chain,
    build_deletion_certificate,
    chain_tail_hash,
)
from erp_messaging.services.messaging_store import MessagingStore
from erp_messaging.services.retention_service import (
    PurgePlan,
    apply_purge_plan,
    build_purge_plan,
    resolve_retention_days,
)
from erp_messaging.utils.datetime_parsing import isoformat_utc, to_utc, utcnow

logger = logging.getLogger(__name__)


def _serialize_row(row: Mapping[str, Any]) -> dict[str, Any]:
    data = dict(row)
    for key, value in data.items():
        if isinstance(value, datetime):
            data[key] = isoformat_utc(value)
    return data


# =============================================================================
# Retention Policies
# =============================================================================

def list_retention_policies(store: MessagingStore, company_id: int) -> list[dict[str, Any]]:
    """Effective retention per message class, flagging classes still on the default."""
    overrides = store.get_retention_policy(company_id)
    return [
        {
            "message_class": message_class.value,
            "retention_days": resolve_retention_days(message_class.value, overrides),
            "is_default": message_class.value not in overrides,
        }
        for message_class in MessageClass
    ]


def upsert_retention_policy(
    store: MessagingStore,
    company_id: int,
    empid: str,
    message_class: str,
    retention_days: int,
) -> dict[str, Any]:
    if not MessageClass.has_value(message_class):
        raise UnsupportedClassError(f"Unsupported message class: {message_class}")
    if retention_days < 1:
        raise ValidationError("retention_days must be at least 1", code="RETENTION_DAYS_INVALID")

    store.upsert_retention_days(company_id, message_class, retention_days, empid, utcnow())
    audit_service.log_retention_updated(store, company_id, empid, message_class, retention_days)
    store.commit()
    return {"message_class": message_class, "retention_days": retention_days, "is_default": False}


# =============================================================================
# Legal Holds
# =============================================================================

def list_legal_holds(
    store: MessagingStore, company_id: int, include_released: bool = True
) -> list[dict[str, Any]]:
    return [_serialize_row(h) for h in store.list_legal_holds(company_id, include_released)]


def _validate_hold_target(data: LegalHoldCreate) -> None:
    scope = data.scope
    if scope == HoldScope.USER.value and not data.target_user_empid:
        raise ValidationError("User holds need target_user_empid", code="HOLD_TARGET_REQUIRED")
    if scope == HoldScope.CONVERSATION.value and not data.conversation_id:
        raise ValidationError("Conversation holds need conversation_id", code="HOLD_TARGET_REQUIRED")
    if scope == HoldScope.LINKED_ENTITY.value and not (data.linked_entity_type and data.linked_entity_id):
        raise ValidationError(
            "Linked entity holds need linked_entity_type and linked_entity_id",
            code="HOLD_TARGET_REQUIRED",
        )


def create_legal_hold(
    store: MessagingStore,
    company_id: int,
    empid: str,
    data: LegalHoldCreate | Mapping[str, Any],
) -> dict[str, Any]:
    if not isinstance(data, LegalHoldCreate):
        data = LegalHoldCreate.model_validate(data)
    _validate_hold_target(data)

    now = utcnow()
    starts_at = to_utc(data.starts_at) or now
    ends_at = to_utc(data.ends_at)
    if ends_at is not None and ends_at <= starts_at:
        raise ValidationError("ends_at must be after starts_at", code="HOLD_WINDOW_INVALID")

    hold_id = store.insert_legal_hold({
        "company_id": company_id,
        "status": HoldStatus.ACTIVE.value,
        "scope": data.scope,
        "target_user_empid": data.target_user_empid,
        "conversation_id": data.conversation_id,
        "linked_entity_type": data.linked_entity_type,
        "linked_entity_id": data.linked_entity_id,
        "reason": data.reason,
        "starts_at": starts_at,
        "ends_at": ends_at,
        "created_by_empid": empid,
        "created_at": now,
    })
    audit_service.log_legal_hold_created(store, company_id, empid, hold_id, data.scope)
    store.commit()
    logger.info("Legal hold created company_id=%s hold_id=%s scope=%s", company_id, hold_id, data.scope)
    return _serialize_row(store.find_legal_hold(company_id, hold_id))


def release_legal_hold(
    store: MessagingStore,
    company_id: int,
    empid: str,
    hold_id: int,
) -> dict[str, Any]:
    hold = store.find_legal_hold(company_id, hold_id)
    if hold is None:
        raise NotFound("Legal hold not found", code="LEGAL_HOLD_NOT_FOUND")
    if hold["status"] != HoldStatus.ACTIVE.value:
        raise ConflictError("Legal hold already released", code="LEGAL_HOLD_ALREADY_RELEASED")

    store.release_legal_hold(company_id, hold_id, empid, utcnow())
    audit_service.log_legal_hold_released(store, company_id, empid, hold_id)
    store.commit()
    logger.info("Legal hold released company_id=%s hold_id=%s", company_id, hold_id)
    return _serialize_row(store.find_legal_hold(company_id, hold_id))


# =============================================================================
# Purge
# =============================================================================

def preview_purge(store: MessagingStore, company_id: int, as_of: datetime | None = None) -> PurgePlan:
    """Plan over every stored message of the company. Read-only."""
    return build_purge_plan(
        company_id,
        store.list_company_messages(company_id),
        store.get_retention_policy(company_id),
        store.list_legal_holds(company_id),
        to_utc(as_of) or utcnow(),
    )


def execute_purge(
    store: MessagingStore,
    company_id: int,
    purge_run_id: str,
    generated_by: str,
    approvals: Iterable[Any] = (),
    required_approvals: int | None = None,
    dry_run: bool = True,
    as_of: datetime | None = None,
) -> dict[str, Any]:
    """
    Apply a freshly built purge plan.

    The approval gate is checked before anything is written. A real run
    records the purge run (rejecting a reused id), persists one custody
    record per deleted message, hard-deletes the messages and stores the
    deletion certificate, all in one transaction.

    Returns:
        plan, result, custody records and certificate (None for dry runs)
    """
    required = required_approvals if required_approvals is not None else settings.PURGE_REQUIRED_APPROVALS
    plan = preview_purge(store, company_id, as_of)
    result = apply_purge_plan(plan, dry_run=dry_run, approvals=approvals, required_approvals=required)
    response: dict[str, Any] = {
        "purge_run_id": purge_run_id,
        "plan": plan.to_dict(),
        "result": result.to_dict(),
        "custody": [],
        "certificate": None,
    }
    if dry_run:
        return response

    message_ids = [action.message_id for action in result.actions]
    try:
        try:
            with store.atomic():
                store.insert_purge_run({
                    "purge_run_id": purge_run_id,
                    "company_id": company_id,
                    "approvals": result.approvals,
                    "generated_by": generated_by,
                    "action_count": 0,
                    "started_at": utcnow(),
                })
        except DuplicateKeyError as exc:
            raise ConflictError(
                "Purge run already applied",
                code="PURGE_RUN_ALREADY_APPLIED",
                details={"purge_run_id": purge_run_id},
            ) from exc

        chain = build_custody_chain(purge_run_id, company_id, message_ids)
        store.insert_custody_records([
            {**record.to_dict(), "sequence": sequence}
            for sequence, record in enumerate(chain, start=1)
        ])
        store.hard_delete_messages(company_id, message_ids)
        certificate = build_deletion_certificate(
            company_id=company_id,
            purge_run_id=purge_run_id,
            action_count=len(result.actions),
            chain_tail_hash=chain_tail_hash(chain),
            generated_by=generated_by,
        )
        store.insert_certificate(certificate.to_dict())
        store.complete_purge_run(purge_run_id, len(result.actions), utcnow())
        audit_service.log_purge_executed(
            store, company_id, generated_by, purge_run_id, len(result.actions), certificate.certificate_digest,
        )
        store.commit()
    except MessagingError:
        store.rollback()
        raise

    logger.info(
        "Purge executed company_id=%s purge_run_id=%s deleted=%s",
        company_id, purge_run_id, len(message_ids),
    )
    response["custody"] = [record.to_dict() for record in chain]
    response["certificate"] = certificate.to_dict()
    return response


def get_deletion_certificate(store: MessagingStore, company_id: int, purge_run_id: str) -> dict[str, Any]:
    certificate = store.find_certificate(company_id, purge_run_id)
    if certificate is None:
        raise NotFound("Deletion certificate not found", code="CERTIFICATE_NOT_FOUND")
    return _serialize_row(certificate)
