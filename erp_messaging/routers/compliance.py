"""Compliance router - message retention policies, legal holds, and purges."""

from fastapi import APIRouter, Depends, Request

from erp_messaging.core.deps import get_store, require_moderator
from erp_messaging.core.rate_limit import limiter
from erp_messaging.schemas.compliance import (
    LegalHoldCreate,
    LegalHoldRead,
    PurgeExecuteRequest,
    PurgePreviewRequest,
    RetentionPolicyRead,
    RetentionPolicyUpsert,
)
from erp_messaging.services import compliance_service
from erp_messaging.services.messaging_service import SessionContext
from erp_messaging.services.messaging_store import MessagingStore


router = APIRouter(prefix="/messaging/compliance", tags=["Messaging Compliance"])


@router.get("/retention-policies", response_model=list[RetentionPolicyRead])
def list_policies(
    ctx: SessionContext = Depends(require_moderator),
    store: MessagingStore = Depends(get_store),
) -> list[dict]:
    """Effective retention days per message class."""
    return compliance_service.list_retention_policies(store, ctx.company_id)


@router.put("/retention-policies", response_model=RetentionPolicyRead)
def upsert_policy(
    payload: RetentionPolicyUpsert,
    ctx: SessionContext = Depends(require_moderator),
    store: MessagingStore = Depends(get_store),
) -> dict:
    return compliance_service.upsert_retention_policy(
        store,
        company_id=ctx.company_id,
        empid=ctx.empid,
        message_class=payload.message_class,
        retention_days=payload.retention_days,
    )


@router.get("/legal-holds", response_model=list[LegalHoldRead])
def list_legal_holds(
    ctx: SessionContext = Depends(require_moderator),
    store: MessagingStore = Depends(get_store),
) -> list[dict]:
    return compliance_service.list_legal_holds(store, ctx.company_id)


@router.post("/legal-holds", response_model=LegalHoldRead, status_code=201)
def create_legal_hold(
    payload: LegalHoldCreate,
    ctx: SessionContext = Depends(require_moderator),
    store: MessagingStore = Depends(get_store),
) -> dict:
    return compliance_service.create_legal_hold(store, ctx.company_id, ctx.empid, payload)


@router.post("/legal-holds/{hold_id}/release", response_model=LegalHoldRead)
def release_legal_hold(
    hold_id: int,
    ctx: SessionContext = Depends(require_moderator),
    store: MessagingStore = Depends(get_store),
) -> dict:
    return compliance_service.release_legal_hold(store, ctx.company_id, ctx.empid, hold_id)


@router.post("/purge/preview")
def preview_purge(
    payload: PurgePreviewRequest | None = None,
    ctx: SessionContext = Depends(require_moderator),
    store: MessagingStore = Depends(get_store),
) -> dict:
    """Which messages a purge would delete now, and why the rest are kept."""
    as_of = payload.as_of if payload else None
    return compliance_service.preview_purge(store, ctx.company_id, as_of).to_dict()


@router.post("/purge/execute")
@limiter.limit("5/minute")
def execute_purge(
    request: Request,
    payload: PurgeExecuteRequest,
    ctx: SessionContext = Depends(require_moderator),
    store: MessagingStore = Depends(get_store),
) -> dict:
    """Apply a purge. Real runs need distinct approvers (see PURGE_REQUIRED_APPROVALS)."""
    return compliance_service.execute_purge(
        store,
        company_id=ctx.company_id,
        purge_run_id=payload.purge_run_id,
        generated_by=ctx.empid,
        approvals=payload.approvals,
        dry_run=payload.dry_run,
        as_of=payload.as_of,
    )


@router.get("/purge/{purge_run_id}/certificate")
def get_certificate(
    purge_run_id: str,
    ctx: SessionContext = Depends(require_moderator),
    store: MessagingStore = Depends(get_store),
) -> dict:
    return compliance_service.get_deletion_certificate(store, ctx.company_id, purge_run_id)
