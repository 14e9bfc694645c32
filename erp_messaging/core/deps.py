"""FastAPI dependencies for identity, database access and the messaging service."""

from typing import Any, Generator

from fastapi import Depends, Header, HTTPException, Query, Request
from sqlalchemy.orm import Session

from erp_messaging.core.errors import Forbidden
from erp_messaging.core.structured_logging import new_correlation_id
from erp_messaging.db.session import SessionLocal
from erp_messaging.services.messaging_service import (
    MembershipSessionResolver,
    MessagingService,
    SessionContext,
    SessionResolver,
)
from erp_messaging.services.messaging_store import MessagingStore

# Set by the upstream auth layer
EMPLOYEE_HEADER = "X-Employee-Id"
CORRELATION_HEADER = "X-Correlation-Id"


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_store(db: Session = Depends(get_db)) -> MessagingStore:
    return MessagingStore(db)


def get_current_user(
    x_employee_id: str | None = Header(default=None, alias=EMPLOYEE_HEADER),
) -> dict[str, Any]:
    """
    Caller identity as forwarded by the auth layer.

    Raises:
        HTTPException 401: header missing or blank
    """
    empid = (x_employee_id or "").strip()
    if not empid:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return {"empid": empid}


def get_correlation_id(request: Request) -> str:
    correlation_id = getattr(request.state, "correlation_id", None)
    return correlation_id or request.headers.get(CORRELATION_HEADER) or new_correlation_id()


def get_session_resolver(store: MessagingStore = Depends(get_store)) -> SessionResolver:
    return MembershipSessionResolver(store)


def get_messaging_service(
    request: Request,
    store: MessagingStore = Depends(get_store),
    get_session: SessionResolver = Depends(get_session_resolver),
) -> MessagingService:
    """Service wired to the app-wide realtime rooms, presence and sender limiter."""
    state = request.app.state
    return MessagingService(
        store=store,
        get_session=get_session,
        rooms=state.connection_manager,
        presence=state.presence,
        sender_limiter=state.sender_limiter,
    )


def require_moderator(
    company_id: int = Query(...),
    user: dict = Depends(get_current_user),
    service: MessagingService = Depends(get_messaging_service),
) -> SessionContext:
    """Session of a caller allowed to run compliance operations in company_id."""
    ctx = service.resolve_session(user, company_id)
    if not ctx.can_moderate:
        raise Forbidden("Compliance operations require messaging moderation rights")
    return ctx
