"""Enum definitions for messaging constants."""

from enum import Enum


class MessageClass(str, Enum):
    """Retention class of a message; drives the retention window."""
    GENERAL = "general"
    FINANCIAL = "financial"
    HR_SENSITIVE = "hr_sensitive"
    LEGAL = "legal"

    @classmethod
    def has_value(cls, value: str) -> bool:
        return value in cls._value2member_map_


class VisibilityScope(str, Enum):
    """
    Who can see a message.

    - COMPANY: everyone with a session in the tenant
    - PRIVATE: author and explicit recipients (inherited by replies)
    """
    COMPANY = "company"
    PRIVATE = "private"

    @classmethod
    def has_value(cls, value: str) -> bool:
        return value in cls._value2member_map_


class HoldScope(str, Enum):
    USER = "user"
    CONVERSATION = "conversation"
    LINKED_ENTITY = "linked_entity"
    COMPANY = "company"


class HoldStatus(str, Enum):
    ACTIVE = "active"
    RELEASED = "released"


class LifecycleStatus(str, Enum):
    RETAINED = "retained"
    ELIGIBLE_FOR_PURGE = "eligible_for_purge"
    BLOCKED_BY_LEGAL_HOLD = "blocked_by_legal_hold"


class PresenceStatus(str, Enum):
    ONLINE = "online"
    AWAY = "away"
    OFFLINE = "offline"


class MessagingEvent(str, Enum):
    """Realtime event names emitted to company rooms."""
    MESSAGE_CREATED = "message.created"
    THREAD_REPLY_CREATED = "thread.reply.created"
    MESSAGE_UPDATED = "message.updated"
    MESSAGE_DELETED = "message.deleted"
    RECEIPT_READ = "receipt.read"
    PRESENCE_CHANGED = "presence.changed"


class SecurityEventType(str, Enum):
    PERMISSION_DENIED = "messaging.permission_denied"
    PURGE_EXECUTED = "messaging.purge_executed"
    LEGAL_HOLD_CREATED = "messaging.legal_hold_created"
    LEGAL_HOLD_RELEASED = "messaging.legal_hold_released"
    RETENTION_UPDATED = "messaging.retention_updated"


DEFAULT_RETENTION_DAYS: dict[str, int] = {
    MessageClass.GENERAL.value: 365,
    MessageClass.FINANCIAL.value: 2555,
    MessageClass.HR_SENSITIVE.value: 2555,
    MessageClass.LEGAL.value: 3650,
}
