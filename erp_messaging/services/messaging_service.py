"""Messaging service - posting, threading, editing and deleting company messages.

Every operation resolves the caller's session for (empid, company_id)
first; all store lookups are then scoped to that company, so a message id
from another tenant behaves exactly like a missing one (NotFound).

Posting has no in-process locking. The unique key on message_idempotency
is the only concurrency control: a duplicate insert rolls its savepoint
back and the winning row is returned as a replay.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Mapping, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from erp_messaging.core import metrics
from erp_messaging.core.config import settings
from erp_messaging.core.errors import (
    ConflictError,
    ContentPolicyError,
    DuplicateKeyError,
    Forbidden,
    NotFound,
    UnsupportedClassError,
    ValidationError,
)
from erp_messaging.core.permissions import (
    ROLE_PRESETS,
    Actor,
    MessagingAction,
    MessagingRole,
    PermissionDecision,
    PermissionPolicy,
    Resource,
    evaluate_messaging_permission,
)
from erp_messaging.core.presence import PresenceRegistry, RealtimeRooms, safe_emit
from erp_messaging.core.rate_limit import SenderRateLimiter
from erp_messaging.core.structured_logging import build_log_context, new_correlation_id
from erp_messaging.db.enums import MessageClass, MessagingEvent, PresenceStatus, VisibilityScope
from erp_messaging.schemas.messaging import EditMessageInput, PostMessageInput
from erp_messaging.services import audit_service
from erp_messaging.services.conversation_projector import (
    collect_message_participants,
    filter_visible_messages,
    group_conversations,
    normalize_id,
)
from erp_messaging.services.messaging_store import MessagingStore
from erp_messaging.utils.datetime_parsing import to_utc, utcnow

logger = logging.getLogger(__name__)

SessionResolver = Callable[[str, int], "Mapping[str, Any] | None"]
ModelT = TypeVar("ModelT", bound=BaseModel)

LINKED_TYPE_MAX_LENGTH = 64
LINKED_ID_MAX_LENGTH = 128
TOPIC_MAX_LENGTH = 255
IDEMPOTENCY_KEY_MAX_LENGTH = 128

PROFANITY_PATTERN = re.compile(r"\b(fuck|shit|bitch|asshole)\b", re.IGNORECASE)
REPEATED_CHARACTER_PATTERN = re.compile(r"(.)\1{12,}")
LINK_FLOOD_PATTERN = re.compile(r"(?:https?://\S+\s*){4,}", re.IGNORECASE)


# =============================================================================
# Helpers
# =============================================================================

def to_id(value: Any) -> int | None:
    """Positive integer id, or None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    return parsed if parsed > 0 else None


def _user_field(user: Any, name: str) -> Any:
    if isinstance(user, Mapping):
        return user.get(name)
    return getattr(user, name, None)


def _coerce(model: type[ModelT], payload: Any) -> ModelT:
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload or {})
    except PydanticValidationError as exc:
        raise ValidationError(
            "Invalid payload",
            code="PAYLOAD_INVALID",
            details=exc.errors(include_url=False, include_context=False),
        ) from exc


def content_policy_category(body: str) -> str | None:
    """Return 'profanity' or 'spam' when the body violates policy."""
    if PROFANITY_PATTERN.search(body):
        return "profanity"
    if REPEATED_CHARACTER_PATTERN.search(body) or LINK_FLOOD_PATTERN.search(body):
        return "spam"
    return None


def serialize_message(row: Mapping[str, Any] | None) -> dict[str, Any] | None:
    if row is None:
        return None
    data = dict(row)
    for key, value in data.items():
        if isinstance(value, datetime):
            data[key] = value.isoformat()
    return data


def _unique_empids(values: Iterable[Any], exclude: str | None = None) -> list[str]:
    result: list[str] = []
    for value in values or ():
        empid = normalize_id(value)
        if empid and empid != exclude and empid not in result:
            result.append(empid)
    return result


# =============================================================================
# Session Context
# =============================================================================

@dataclass(frozen=True)
class SessionContext:
    """Caller's employment session, normalized once per operation."""
    empid: str
    company_id: int
    role: MessagingRole
    permissions: Mapping[str, Any]
    department_ids: frozenset[str]
    project_ids: frozenset[str]
    policy: PermissionPolicy

    @classmethod
    def from_session(cls, empid: str, company_id: int, session: Mapping[str, Any]) -> "SessionContext":
        return cls(
            empid=str(empid),
            company_id=company_id,
            role=MessagingRole.resolve(session.get("role")),
            permissions=dict(session.get("permissions") or {}),
            department_ids=frozenset(str(d) for d in session.get("department_ids") or ()),
            project_ids=frozenset(str(p) for p in session.get("project_ids") or ()),
            policy=PermissionPolicy.from_dict(session.get("messaging_policy")),
        )

    @property
    def can_moderate(self) -> bool:
        if self.permissions.get("messaging_admin") or self.permissions.get("system_settings"):
            return True
        preset = ROLE_PRESETS[self.role]
        return MessagingAction.ADMIN_MODERATE in preset.allow and MessagingAction.ADMIN_MODERATE not in preset.deny

    @property
    def actor(self) -> Actor:
        return Actor(
            empid=self.empid,
            company_id=self.company_id,
            department_ids=self.department_ids,
            project_ids=self.project_ids,
        )

    def summary(self) -> dict[str, Any]:
        return {
            "empid": self.empid,
            "role": self.role.value,
            "department_ids": sorted(self.department_ids),
            "project_ids": sorted(self.project_ids),
            "can_moderate": self.can_moderate,
        }


class MembershipSessionResolver:
    """Default session lookup backed by the company_memberships table."""

    def __init__(self, store: MessagingStore):
        self.store = store

    def __call__(self, empid: str, company_id: int) -> dict[str, Any] | None:
        row = self.store.find_membership(company_id, empid)
        if row is None:
            return None
        return {
            "empid": row["empid"],
            "company_id": row["company_id"],
            "role": row["role"],
            "permissions": row["permissions"] or {},
            "department_ids": row["department_ids"] or [],
            "project_ids": row["project_ids"] or [],
        }


@dataclass
class ThreadContext:
    root: dict[str, Any]
    participants: list[str]
    depth: int

    @property
    def visibility_scope(self) -> str:
        return self.root.get("visibility_scope") or VisibilityScope.COMPANY.value


# =============================================================================
# Service
# =============================================================================

class MessagingService:
    """Orchestrates sessions, permissions, the store and realtime fanout."""

    def __init__(
        self,
        store: MessagingStore,
        get_session: SessionResolver,
        rooms: RealtimeRooms | None = None,
        presence: PresenceRegistry | None = None,
        sender_limiter: SenderRateLimiter | None = None,
        clock: Callable[[], datetime] | None = None,
        max_thread_depth: int | None = None,
        edit_window_seconds: int | None = None,
    ):
        self.store = store
        self.get_session = get_session
        self.rooms = rooms
        self.presence = presence if presence is not None else PresenceRegistry(rooms)
        self.sender_limiter = sender_limiter if sender_limiter is not None else SenderRateLimiter()
        self.clock = clock or utcnow
        self.max_thread_depth = max_thread_depth or settings.MESSAGE_MAX_THREAD_DEPTH
        self.edit_window = timedelta(
            seconds=edit_window_seconds if edit_window_seconds is not None else settings.MESSAGE_EDIT_WINDOW_SECONDS
        )

    # -------------------------------------------------------------------------
    # Sessions and permissions
    # -------------------------------------------------------------------------

    def resolve_session(self, user: Any, company_id: Any) -> SessionContext:
        empid = normalize_id(_user_field(user, "empid"))
        if not empid:
            raise Forbidden("An authenticated employee is required", code="AUTH_REQUIRED")
        scoped_company_id = to_id(company_id) or to_id(_user_field(user, "company_id"))
        if not scoped_company_id:
            raise ValidationError("A valid company_id is required", code="COMPANY_CONTEXT_INVALID")
        session = self.get_session(empid, scoped_company_id)
        if not session:
            raise Forbidden("No active membership in company", code="COMPANY_MEMBERSHIP_REQUIRED")
        return SessionContext.from_session(empid, scoped_company_id, session)

    def _require_messaging(self, ctx: SessionContext) -> None:
        if ctx.permissions.get("messaging") is False:
            raise Forbidden("Messaging permission denied")

    def _authorize(
        self,
        ctx: SessionContext,
        action: MessagingAction,
        resource: Resource | None = None,
        message_id: int | None = None,
    ) -> PermissionDecision:
        resource = resource or Resource(company_id=ctx.company_id)
        decision = evaluate_messaging_permission(ctx.role, action, ctx.actor, resource, ctx.policy)
        if not decision.allowed:
            self._deny(ctx, action.value, decision.reason.value, decision.rule_id, message_id)
        return decision

    def _deny(
        self,
        ctx: SessionContext,
        action: str,
        reason: str,
        rule_id: str | None = None,
        message_id: int | None = None,
    ) -> None:
        audit_service.log_permission_denied(
            self.store, ctx.company_id, ctx.empid, action, reason, rule_id=rule_id, message_id=message_id,
        )
        self.store.commit()
        raise Forbidden(
            f"Permission denied for {action}",
            details={"action": action, "reason": reason, "rule_id": rule_id},
        )

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def _sanitize_body(self, value: Any) -> str:
        body = str(value or "").strip()
        if not body:
            raise ValidationError("Message body is required", code="MESSAGE_BODY_REQUIRED")
        if len(body) > settings.MESSAGE_MAX_LENGTH:
            raise ValidationError(
                f"Message body exceeds {settings.MESSAGE_MAX_LENGTH} characters",
                code="MESSAGE_BODY_TOO_LONG",
            )
        return body

    @staticmethod
    def _validate_linked_context(linked_type: Any, linked_id: Any) -> tuple[str | None, str | None]:
        safe_type = str(linked_type or "").strip()
        safe_id = str(linked_id if linked_id is not None else "").strip()
        if not safe_type and not safe_id:
            return None, None
        if not safe_type or not safe_id:
            raise ValidationError(
                "linked_type and linked_id must both be provided", code="LINKED_CONTEXT_INVALID"
            )
        if len(safe_type) > LINKED_TYPE_MAX_LENGTH or len(safe_id) > LINKED_ID_MAX_LENGTH:
            raise ValidationError(
                f"linked_type is limited to {LINKED_TYPE_MAX_LENGTH} characters "
                f"and linked_id to {LINKED_ID_MAX_LENGTH}",
                code="LINKED_CONTEXT_INVALID",
            )
        return safe_type, safe_id

    @staticmethod
    def _validate_topic(value: str | None) -> str | None:
        topic = " ".join((value or "").split())
        if len(topic) > TOPIC_MAX_LENGTH:
            raise ValidationError(f"Topic exceeds {TOPIC_MAX_LENGTH} characters", code="TOPIC_TOO_LONG")
        return topic or None

    @staticmethod
    def _validate_idempotency_key(value: Any) -> str | None:
        key = str(value or "").strip()
        if len(key) > IDEMPOTENCY_KEY_MAX_LENGTH:
            raise ValidationError(
                f"Idempotency key exceeds {IDEMPOTENCY_KEY_MAX_LENGTH} characters",
                code="IDEMPOTENCY_KEY_TOO_LONG",
            )
        return key or None

    def _enforce_content_policy(self, ctx: SessionContext, body: str) -> None:
        category = content_policy_category(body)
        if category is None:
            return
        audit_service.log_abuse_event(
            self.store, ctx.company_id, ctx.empid, category, "Content rejected by policy", body,
        )
        self.store.commit()
        raise ContentPolicyError("Message violates messaging policy", details={"category": category})

    # -------------------------------------------------------------------------
    # Threads
    # -------------------------------------------------------------------------

    def _resolve_thread(self, ctx: SessionContext, parent_id: int) -> ThreadContext:
        parent = self.store.find_message(ctx.company_id, parent_id)
        if parent is None or parent.get("deleted_at"):
            raise NotFound("Parent message not found")

        chain = [parent]
        visited = {parent["id"]}
        current = parent
        while current.get("parent_message_id"):
            if len(chain) >= self.max_thread_depth:
                raise ValidationError(
                    f"Thread depth exceeds {self.max_thread_depth}",
                    code="THREAD_DEPTH_EXCEEDED",
                )
            next_id = current["parent_message_id"]
            if next_id in visited:
                break
            visited.add(next_id)
            ancestor = self.store.find_message(ctx.company_id, next_id)
            if ancestor is None:
                break
            chain.append(ancestor)
            current = ancestor

        root_id = parent.get("conversation_id") or current["id"]
        root = next((m for m in chain if m["id"] == root_id), None)
        if root is None:
            root = self.store.find_message(ctx.company_id, root_id) or current

        participants: list[str] = []
        for message in [*chain, root]:
            for empid in collect_message_participants(message):
                if empid not in participants:
                    participants.append(empid)
        return ThreadContext(root=root, participants=participants, depth=len(chain))

    def _can_view(self, ctx: SessionContext, message: Mapping[str, Any]) -> bool:
        if ctx.can_moderate:
            return True
        return bool(filter_visible_messages([message], ctx.empid))

    # -------------------------------------------------------------------------
    # Realtime
    # -------------------------------------------------------------------------

    def _emit(self, company_id: int, event: MessagingEvent, payload: dict[str, Any], correlation_id: str) -> None:
        body = {"correlation_id": correlation_id, "company_id": company_id, "at": self.clock().isoformat()}
        body.update(payload)
        safe_emit(self.rooms, company_id, event.value, body)

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def _find_replay(self, ctx: SessionContext, key: str) -> dict[str, Any] | None:
        message_id = self.store.find_idempotent_message_id(ctx.company_id, ctx.empid, key)
        if not message_id:
            return None
        return self.store.find_message(ctx.company_id, message_id)

    def post_message(
        self,
        user: Any,
        company_id: Any,
        payload: PostMessageInput | Mapping[str, Any],
        idempotency_key: str | None = None,
        correlation_id: str | None = None,
    ) -> dict[str, Any]:
        """Create a message or a reply (when parent_message_id is set)."""
        started = time.perf_counter()
        correlation_id = correlation_id or new_correlation_id()
        ctx = self.resolve_session(user, company_id)
        self._require_messaging(ctx)
        data = _coerce(PostMessageInput, payload)

        key = self._validate_idempotency_key(idempotency_key or data.idempotency_key)
        if key:
            existing = self._find_replay(ctx, key)
            if existing is not None:
                return self._post_result(existing, True, correlation_id, data.client_temp_id)

        body = self._sanitize_body(data.body)
        linked_type, linked_id = self._validate_linked_context(data.linked_type, data.linked_id)
        message_class = (data.message_class or MessageClass.GENERAL.value).strip().lower()
        if not MessageClass.has_value(message_class):
            raise UnsupportedClassError(f"Unsupported message class: {message_class}")
        visibility = (data.visibility_scope or VisibilityScope.COMPANY.value).strip().lower()
        if not VisibilityScope.has_value(visibility):
            raise ValidationError(f"Unsupported visibility scope: {visibility}", code="VISIBILITY_SCOPE_INVALID")
        parent_id = to_id(data.parent_message_id)
        recipients = _unique_empids(data.recipient_empids, exclude=ctx.empid)
        if visibility == VisibilityScope.PRIVATE.value and not parent_id and not recipients:
            raise ValidationError("A private message needs at least one recipient", code="RECIPIENTS_REQUIRED")
        topic = self._validate_topic(data.topic)
        self._enforce_content_policy(ctx, body)

        action = MessagingAction.MESSAGE_REPLY if parent_id else MessagingAction.MESSAGE_CREATE
        self._authorize(ctx, action, Resource(company_id=ctx.company_id, linked_type=linked_type))

        conversation_id = None
        thread = self._resolve_thread(ctx, parent_id) if parent_id else None
        if thread is not None:
            visibility = thread.visibility_scope
            if (
                visibility == VisibilityScope.PRIVATE.value
                and ctx.empid not in thread.participants
                and not ctx.can_moderate
            ):
                self._deny(ctx, action.value, "NOT_THREAD_PARTICIPANT", message_id=parent_id)
            if not recipients:
                recipients = [empid for empid in thread.participants if empid != ctx.empid]
            conversation_id = thread.root["id"]
            linked_type = thread.root.get("linked_type")
            linked_id = thread.root.get("linked_id")
            topic = None

        # Throttle last: only a post that is about to be written counts against the sender.
        self.sender_limiter.check(ctx.company_id, ctx.empid, body)
        now = self.clock()
        values = {
            "company_id": ctx.company_id,
            "author_empid": ctx.empid,
            "parent_message_id": parent_id,
            "conversation_id": conversation_id,
            "linked_type": linked_type,
            "linked_id": linked_id,
            "body": body,
            "topic": topic,
            "message_class": message_class,
            "visibility_scope": visibility,
            "created_at": now,
            "updated_at": now,
        }
        try:
            with self.store.atomic():
                message_id = self.store.insert_message(values)
                self.store.insert_participants(ctx.company_id, message_id, recipients)
                if key:
                    self.store.insert_idempotency(ctx.company_id, ctx.empid, key, message_id)
        except DuplicateKeyError:
            existing = self._find_replay(ctx, key) if key else None
            if existing is None:
                raise
            logger.info(
                "Idempotent replay after concurrent post",
                extra=build_log_context(empid=ctx.empid, company_id=ctx.company_id, correlation_id=correlation_id),
            )
            return self._post_result(existing, True, correlation_id, data.client_temp_id)
        self.store.commit()
        self.sender_limiter.record(ctx.company_id, ctx.empid, body)

        message = serialize_message(self.store.find_message(ctx.company_id, message_id))
        event = MessagingEvent.THREAD_REPLY_CREATED if thread else MessagingEvent.MESSAGE_CREATED
        self._emit(
            ctx.company_id,
            event,
            {
                "message": message,
                "optimistic": {"temp_id": data.client_temp_id, "accepted": True, "replay": False},
            },
            correlation_id,
        )
        metrics.MESSAGE_CREATE_LATENCY.observe(time.perf_counter() - started)
        logger.info(
            "Message created message_id=%s",
            message_id,
            extra=build_log_context(empid=ctx.empid, company_id=ctx.company_id, correlation_id=correlation_id),
        )
        return {"correlation_id": correlation_id, "message": message, "idempotent_replay": False}

    def _post_result(
        self, message: Mapping[str, Any], replay: bool, correlation_id: str, temp_id: str | None = None
    ) -> dict[str, Any]:
        return {
            "correlation_id": correlation_id,
            "message": serialize_message(message),
            "idempotent_replay": replay,
            "optimistic": {"temp_id": temp_id, "accepted": True, "replay": replay},
        }

    def get_messages(
        self,
        user: Any,
        company_id: Any,
        limit: int | None = None,
        cursor: Any = None,
        linked_type: str | None = None,
        linked_id: str | None = None,
        correlation_id: str | None = None,
    ) -> dict[str, Any]:
        """Page of messages (newest page, ascending order) plus conversations and presence."""
        correlation_id = correlation_id or new_correlation_id()
        ctx = self.resolve_session(user, company_id)
        self._require_messaging(ctx)
        self._authorize(ctx, MessagingAction.MESSAGE_READ)

        try:
            page_size = int(limit) if limit is not None else settings.MESSAGE_PAGE_SIZE
        except (TypeError, ValueError):
            page_size = settings.MESSAGE_PAGE_SIZE
        page_size = min(max(page_size, 1), settings.MESSAGE_PAGE_CAP)
        cursor_id = to_id(cursor)

        rows = self.store.list_messages(
            ctx.company_id,
            page_size + 1,
            before_id=cursor_id,
            linked_type=linked_type,
            linked_id=linked_id,
        )
        has_more = len(rows) > page_size
        page = rows[:page_size]
        next_cursor = page[-1]["id"] if has_more and page else None
        page.reverse()

        if ctx.can_moderate:
            visible = page
            conversations = group_conversations(visible)
        else:
            visible = filter_visible_messages(page, ctx.empid)
            conversations = group_conversations(visible, viewer_empid=ctx.empid)

        return {
            "correlation_id": correlation_id,
            "presence": self.presence.list_online(ctx.company_id),
            "conversations": conversations,
            "messages": [serialize_message(m) for m in visible],
            "page_info": {"next_cursor": next_cursor, "has_more": has_more},
            "optimistic": {"cursor_echo": cursor_id},
        }

    def get_thread(
        self,
        user: Any,
        company_id: Any,
        message_id: Any,
        correlation_id: str | None = None,
    ) -> dict[str, Any]:
        """Root plus visible replies. Records the caller's read receipt."""
        correlation_id = correlation_id or new_correlation_id()
        ctx = self.resolve_session(user, company_id)
        self._require_messaging(ctx)
        self._authorize(ctx, MessagingAction.THREAD_READ)

        requested_id = to_id(message_id)
        message = self.store.find_message(ctx.company_id, requested_id) if requested_id else None
        if message is None or message.get("deleted_at"):
            raise NotFound("Message not found")
        root_id = message.get("conversation_id") or message["id"]
        rows = self.store.list_thread(ctx.company_id, root_id)
        root = next((row for row in rows if row["id"] == root_id), None)
        if root is None or not self._can_view(ctx, root):
            raise NotFound("Message not found")

        replies = [row for row in rows if row["id"] != root_id]
        if not ctx.can_moderate:
            # Replies inherit visibility from the root chain.
            replies = filter_visible_messages([root, *replies], ctx.empid)[1:]

        if self.store.insert_receipt(message["id"], ctx.empid, self.clock()):
            self.store.commit()
            self._emit(
                ctx.company_id,
                MessagingEvent.RECEIPT_READ,
                {"message_id": message["id"], "empid": ctx.empid},
                correlation_id,
            )

        return {
            "correlation_id": correlation_id,
            "root": serialize_message(root),
            "replies": [serialize_message(r) for r in replies],
        }

    def edit_message(
        self,
        user: Any,
        company_id: Any,
        message_id: Any,
        payload: EditMessageInput | Mapping[str, Any],
        correlation_id: str | None = None,
    ) -> dict[str, Any]:
        correlation_id = correlation_id or new_correlation_id()
        ctx = self.resolve_session(user, company_id)
        data = _coerce(EditMessageInput, payload)
        target_id = to_id(message_id)
        message = self.store.find_message(ctx.company_id, target_id) if target_id else None
        if message is None or message.get("deleted_at"):
            raise NotFound("Message not found")

        moderator = ctx.can_moderate
        if not moderator:
            if message["author_empid"] != ctx.empid:
                self._deny(ctx, MessagingAction.MESSAGE_EDIT.value, "NOT_AUTHOR", message_id=target_id)
            self._authorize(
                ctx,
                MessagingAction.MESSAGE_EDIT,
                Resource(company_id=ctx.company_id, linked_type=message.get("linked_type")),
                message_id=target_id,
            )
            created_at = to_utc(message.get("created_at"))
            if created_at is not None and self.clock() - created_at > self.edit_window:
                raise ConflictError("Message edit window expired", code="EDIT_WINDOW_EXPIRED")

        body = self._sanitize_body(data.body)
        self._enforce_content_policy(ctx, body)
        self.store.update_body(ctx.company_id, target_id, body, self.clock())
        self.store.commit()

        updated = serialize_message(self.store.find_message(ctx.company_id, target_id))
        self._emit(ctx.company_id, MessagingEvent.MESSAGE_UPDATED, {"message": updated}, correlation_id)
        return {"correlation_id": correlation_id, "message": updated}

    def delete_message(
        self,
        user: Any,
        company_id: Any,
        message_id: Any,
        correlation_id: str | None = None,
    ) -> dict[str, Any]:
        """Soft delete. Hard deletes belong to the compliance purge."""
        correlation_id = correlation_id or new_correlation_id()
        ctx = self.resolve_session(user, company_id)
        target_id = to_id(message_id)
        # Scoped re-fetch: another tenant's message is indistinguishable from a missing one.
        message = self.store.find_message(ctx.company_id, target_id) if target_id else None
        if message is None or message.get("deleted_at"):
            raise NotFound("Message not found")
        if message["author_empid"] != ctx.empid and not ctx.can_moderate:
            self._deny(ctx, MessagingAction.MESSAGE_DELETE.value, "NOT_AUTHOR_OR_MODERATOR", message_id=target_id)

        self.store.soft_delete(ctx.company_id, target_id, ctx.empid, self.clock())
        self.store.commit()
        self._emit(
            ctx.company_id,
            MessagingEvent.MESSAGE_DELETED,
            {"message_id": target_id, "deleted_by_empid": ctx.empid},
            correlation_id,
        )
        logger.info(
            "Message deleted message_id=%s",
            target_id,
            extra=build_log_context(empid=ctx.empid, company_id=ctx.company_id, correlation_id=correlation_id),
        )
        return {"correlation_id": correlation_id, "message_id": target_id, "deleted": True}

    def presence_heartbeat(
        self,
        user: Any,
        company_id: Any,
        status: str | None = PresenceStatus.ONLINE.value,
        correlation_id: str | None = None,
    ) -> dict[str, Any]:
        correlation_id = correlation_id or new_correlation_id()
        ctx = self.resolve_session(user, company_id)
        values = {s.value for s in PresenceStatus}
        safe_status = status if status in values else PresenceStatus.ONLINE.value
        if safe_status == PresenceStatus.OFFLINE.value:
            self.presence.mark_offline(ctx.company_id, ctx.empid)
        else:
            self.presence.mark_online(ctx.company_id, ctx.empid, safe_status)
        return {"correlation_id": correlation_id, "empid": ctx.empid, "status": safe_status}

    def get_presence(
        self,
        user: Any,
        company_id: Any,
        empids: str | Iterable[Any] | None = None,
    ) -> dict[str, Any]:
        ctx = self.resolve_session(user, company_id)
        self._authorize(ctx, MessagingAction.PRESENCE_READ)
        if isinstance(empids, str):
            empids = empids.split(",")
        requested = _unique_empids(empids or ())
        return {
            "company_id": ctx.company_id,
            "online": self.presence.list_online(ctx.company_id),
            "users": [
                {"empid": empid, "status": self.presence.status_of(ctx.company_id, empid)}
                for empid in requested
            ],
        }

    def switch_company_context(self, user: Any, company_id: Any) -> dict[str, Any]:
        ctx = self.resolve_session(user, company_id)
        return {"company_id": ctx.company_id, "membership": ctx.summary()}
