"""SQLAlchemy ORM models for messaging, compliance and tenant membership."""

from datetime import datetime

from sqlalchemy import (
    JSON, Boolean, ForeignKey, Index, Integer, String, Text, UniqueConstraint, func
)
from sqlalchemy.orm import Mapped, mapped_column

from erp_messaging.db.base import Base, BigIntId
from erp_messaging.db.enums import HoldStatus, MessageClass, VisibilityScope


# =============================================================================
# Tenant Models
# =============================================================================

class CompanyMembership(Base):
    """
    Employment session of an employee inside a company.

    Backs the default session resolver. Absence (or is_active=False)
    means the employee has no session in that tenant.
    """
    __tablename__ = "company_memberships"
    __table_args__ = (
        UniqueConstraint("company_id", "empid", name="uq_company_membership"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(Integer, nullable=False)
    empid: Mapped[str] = mapped_column(String(64), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="Staff")
    permissions: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    department_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    project_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


# =============================================================================
# Messaging Models
# =============================================================================

class Message(Base):
    """
    A message owned by a company.

    parent_message_id forms a forest; conversation_id (the thread root id)
    is authoritative over walking the parent chain. Only body and the
    soft-delete fields change after creation.
    """
    __tablename__ = "messages"
    __table_args__ = (
        Index("idx_messages_company_id_id", "company_id", "id"),
        Index("idx_messages_parent", "parent_message_id"),
        Index("idx_messages_link", "company_id", "linked_type", "linked_id"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(Integer, nullable=False)
    author_empid: Mapped[str] = mapped_column(String(64), nullable=False)
    parent_message_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    conversation_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    linked_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    linked_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    topic: Mapped[str | None] = mapped_column(String(255), nullable=True)
    message_class: Mapped[str] = mapped_column(
        String(32), nullable=False, default=MessageClass.GENERAL.value
    )
    visibility_scope: Mapped[str] = mapped_column(
        String(16), nullable=False, default=VisibilityScope.COMPANY.value
    )
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    deleted_by_empid: Mapped[str | None] = mapped_column(String(64), nullable=True)


class MessageParticipant(Base):
    """Explicit recipient of a message."""
    __tablename__ = "message_participants"

    message_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("messages.id", ondelete="CASCADE"), primary_key=True
    )
    empid: Mapped[str] = mapped_column(String(64), primary_key=True)
    company_id: Mapped[int] = mapped_column(Integer, nullable=False)


class MessageIdempotency(Base):
    """
    Maps a caller-supplied idempotency key to the message it created.

    The composite unique key is the only concurrency control for posting.
    """
    __tablename__ = "message_idempotency"
    __table_args__ = (
        UniqueConstraint("company_id", "empid", "idempotency_key", name="uq_message_idempotency"),
        Index("idx_idem_message", "message_id"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(Integer, nullable=False)
    empid: Mapped[str] = mapped_column(String(64), nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(128), nullable=False)
    message_id: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)


class MessageReceipt(Base):
    __tablename__ = "message_receipts"

    message_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    empid: Mapped[str] = mapped_column(String(64), primary_key=True)
    read_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)


# =============================================================================
# Compliance Models
# =============================================================================

class MessageRetentionPolicy(Base):
    """Per-company retention override for one message class."""
    __tablename__ = "message_retention_policies"
    __table_args__ = (
        UniqueConstraint("company_id", "message_class", name="uq_message_retention_policy"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(Integer, nullable=False)
    message_class: Mapped[str] = mapped_column(String(32), nullable=False)
    retention_days: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_by_empid: Mapped[str | None] = mapped_column(String(64), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)


class LegalHold(Base):
    """
    Legal hold suspending purges of matching messages.

    Scope selects which target column applies: company (none), user
    (target_user_empid), conversation (conversation_id) or linked_entity
    (linked_entity_type + linked_entity_id).
    """
    __tablename__ = "legal_holds"
    __table_args__ = (
        Index("idx_legal_holds_company_status", "company_id", "status"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=HoldStatus.ACTIVE.value)
    scope: Mapped[str] = mapped_column(String(32), nullable=False)
    target_user_empid: Mapped[str | None] = mapped_column(String(64), nullable=True)
    conversation_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    linked_entity_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    linked_entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    reason: Mapped[str] = mapped_column(Text, nullable=False, default="")
    starts_at: Mapped[datetime] = mapped_column(nullable=False)
    ends_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_by_empid: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    released_at: Mapped[datetime | None] = mapped_column(nullable=True)
    released_by_empid: Mapped[str | None] = mapped_column(String(64), nullable=True)


class MessagePurgeRun(Base):
    """Applied purge run. The primary key makes applying a run non-reentrant."""
    __tablename__ = "message_purge_runs"

    purge_run_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    company_id: Mapped[int] = mapped_column(Integer, nullable=False)
    approvals: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    generated_by: Mapped[str] = mapped_column(String(64), nullable=False)
    action_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    started_at: Mapped[datetime] = mapped_column(nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)


class ChainOfCustodyRecord(Base):
    """Append-only hash chain link for one purged message."""
    __tablename__ = "message_chain_of_custody"
    __table_args__ = (
        UniqueConstraint("purge_run_id", "sequence", name="uq_custody_run_sequence"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    purge_run_id: Mapped[str] = mapped_column(String(64), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    company_id: Mapped[int] = mapped_column(Integer, nullable=False)
    message_id: Mapped[int] = mapped_column(Integer, nullable=False)
    previous_hash: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    record_hash: Mapped[str] = mapped_column(String(64), nullable=False)


class DeletionCertificate(Base):
    __tablename__ = "message_deletion_certificates"

    purge_run_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    company_id: Mapped[int] = mapped_column(Integer, nullable=False)
    action_count: Mapped[int] = mapped_column(Integer, nullable=False)
    chain_tail_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    generated_by: Mapped[str] = mapped_column(String(64), nullable=False)
    issued_at: Mapped[str] = mapped_column(String(40), nullable=False)
    certificate_digest: Mapped[str] = mapped_column(String(64), nullable=False)


# =============================================================================
# Audit Models
# =============================================================================

class MessagingSecurityEvent(Base):
    """Security and compliance audit trail (denials, holds, purges)."""
    __tablename__ = "messaging_security_events"
    __table_args__ = (
        Index("idx_messaging_security_company_created", "company_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    company_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    empid: Mapped[str | None] = mapped_column(String(64), nullable=True)
    event: Mapped[str] = mapped_column(String(64), nullable=False)
    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)


class MessagingAbuseEvent(Base):
    """Content-policy rejections (profanity, spam)."""
    __tablename__ = "messaging_abuse_audit"
    __table_args__ = (
        Index("idx_abuse_company_empid", "company_id", "empid"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(Integer, nullable=False)
    empid: Mapped[str] = mapped_column(String(64), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
