"""Messaging router - company messages, threads, presence and permissions.

Every HTTP route is scoped by the company_id query parameter; the caller
is identified by the X-Employee-Id header.
"""

import logging

from fastapi import APIRouter, Depends, Query, Request, Response, WebSocket, WebSocketDisconnect
from prometheus_client import CONTENT_TYPE_LATEST

from erp_messaging.core import metrics
from erp_messaging.core.deps import (
    EMPLOYEE_HEADER,
    get_correlation_id,
    get_current_user,
    get_messaging_service,
    get_session_resolver,
)
from erp_messaging.core.permissions import (
    Actor,
    Resource,
    evaluate_messaging_permission,
    get_messaging_permission_matrix,
)
from erp_messaging.core.rate_limit import limiter
from erp_messaging.schemas.messaging import (
    EditMessageInput,
    PermissionEvaluateRequest,
    PostMessageInput,
    PresenceHeartbeatInput,
)
from erp_messaging.services.messaging_service import MessagingService, SessionResolver, to_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messaging", tags=["Messaging"])

IDEMPOTENCY_HEADER = "Idempotency-Key"


@router.get("/messages")
def list_messages(
    company_id: int = Query(...),
    limit: int | None = Query(None),
    cursor: int | None = Query(None),
    linked_type: str | None = Query(None),
    linked_id: str | None = Query(None),
    user: dict = Depends(get_current_user),
    service: MessagingService = Depends(get_messaging_service),
    correlation_id: str = Depends(get_correlation_id),
) -> dict:
    """Newest page of messages with conversations and online employees."""
    return service.get_messages(
        user,
        company_id,
        limit=limit,
        cursor=cursor,
        linked_type=linked_type,
        linked_id=linked_id,
        correlation_id=correlation_id,
    )


@router.post("/messages", status_code=201)
def post_message(
    request: Request,
    payload: PostMessageInput,
    company_id: int = Query(...),
    user: dict = Depends(get_current_user),
    service: MessagingService = Depends(get_messaging_service),
    correlation_id: str = Depends(get_correlation_id),
) -> dict:
    """Create a message, or a reply when parent_message_id is set."""
    return service.post_message(
        user,
        company_id,
        payload,
        idempotency_key=request.headers.get(IDEMPOTENCY_HEADER),
        correlation_id=correlation_id,
    )


@router.get("/messages/{message_id}/thread")
def get_thread(
    message_id: int,
    company_id: int = Query(...),
    user: dict = Depends(get_current_user),
    service: MessagingService = Depends(get_messaging_service),
    correlation_id: str = Depends(get_correlation_id),
) -> dict:
    return service.get_thread(user, company_id, message_id, correlation_id=correlation_id)


@router.patch("/messages/{message_id}")
def edit_message(
    message_id: int,
    payload: EditMessageInput,
    company_id: int = Query(...),
    user: dict = Depends(get_current_user),
    service: MessagingService = Depends(get_messaging_service),
    correlation_id: str = Depends(get_correlation_id),
) -> dict:
    return service.edit_message(user, company_id, message_id, payload, correlation_id=correlation_id)


@router.delete("/messages/{message_id}")
def delete_message(
    message_id: int,
    company_id: int = Query(...),
    user: dict = Depends(get_current_user),
    service: MessagingService = Depends(get_messaging_service),
    correlation_id: str = Depends(get_correlation_id),
) -> dict:
    return service.delete_message(user, company_id, message_id, correlation_id=correlation_id)


# =============================================================================
# Presence
# =============================================================================

@router.post("/presence")
def presence_heartbeat(
    payload: PresenceHeartbeatInput,
    company_id: int = Query(...),
    user: dict = Depends(get_current_user),
    service: MessagingService = Depends(get_messaging_service),
    correlation_id: str = Depends(get_correlation_id),
) -> dict:
    return service.presence_heartbeat(user, company_id, payload.status, correlation_id=correlation_id)


@router.get("/presence")
def get_presence(
    company_id: int = Query(...),
    user_ids: str | None = Query(None),
    user: dict = Depends(get_current_user),
    service: MessagingService = Depends(get_messaging_service),
) -> dict:
    return service.get_presence(user, company_id, user_ids)


@router.post("/company-context")
def switch_company_context(
    company_id: int = Query(...),
    user: dict = Depends(get_current_user),
    service: MessagingService = Depends(get_messaging_service),
) -> dict:
    return service.switch_company_context(user, company_id)


# =============================================================================
# Permissions
# =============================================================================

@router.post("/permissions/evaluate")
@limiter.limit("30/minute")
def evaluate_permission(
    request: Request,
    payload: PermissionEvaluateRequest,
    user: dict = Depends(get_current_user),
) -> dict:
    """Dry-run a permission decision for admin tooling."""
    actor = Actor(
        empid=payload.actor.empid,
        company_id=payload.actor.company_id,
        department_ids=frozenset(str(d) for d in payload.actor.department_ids),
        project_ids=frozenset(str(p) for p in payload.actor.project_ids),
    )
    resource = Resource(
        company_id=payload.resource.company_id,
        department_id=None if payload.resource.department_id is None else str(payload.resource.department_id),
        project_id=None if payload.resource.project_id is None else str(payload.resource.project_id),
        linked_type=payload.resource.linked_type,
        linked_owner_empid=payload.resource.linked_owner_empid,
    )
    decision = evaluate_messaging_permission(payload.role, payload.action, actor, resource, payload.policy)
    return decision.to_dict()


@router.get("/permissions/matrix")
def permission_matrix(user: dict = Depends(get_current_user)) -> dict:
    return get_messaging_permission_matrix()


# =============================================================================
# Metrics
# =============================================================================

@router.get("/metrics")
def metrics_endpoint() -> Response:
    return Response(content=metrics.render_latest(), media_type=CONTENT_TYPE_LATEST)


# =============================================================================
# Realtime
# =============================================================================

@router.websocket("/ws")
async def messaging_socket(
    websocket: WebSocket,
    company_id: int | None = Query(None),
    empid: str | None = Query(None),
    get_session: SessionResolver = Depends(get_session_resolver),
):
    """
    Company room subscription.

    Identity comes from the X-Employee-Id header (or ?empid= for browser
    clients). Joins the company:<id> room and marks the employee online
    until the socket closes.
    """
    caller = (websocket.headers.get(EMPLOYEE_HEADER) or empid or "").strip()
    scoped_company_id = to_id(company_id)
    if not caller or not scoped_company_id:
        await websocket.close(code=4001, reason="Authentication required")
        return
    if not get_session(caller, scoped_company_id):
        await websocket.close(code=4003, reason="No active membership in company")
        return

    manager = websocket.app.state.connection_manager
    presence = websocket.app.state.presence
    await manager.connect(websocket, scoped_company_id, caller)
    presence.mark_online(scoped_company_id, caller)
    try:
        while True:
            try:
                data = await websocket.receive_text()
                if data == "ping":
                    await websocket.send_text("pong")
            except WebSocketDisconnect:
                break
    finally:
        await manager.disconnect(websocket, scoped_company_id, caller)
        presence.mark_offline(scoped_company_id, caller)
        logger.debug("Messaging socket closed company_id=%s empid=%s", scoped_company_id, caller)
