"""Pydantic schemas for API request/response models."""

from erp_messaging.schemas.compliance import (
    LegalHoldCreate,
    LegalHoldRead,
    PurgePreviewRequest,
    PurgeExecuteRequest,
    RetentionPolicyRead,
    RetentionPolicyUpsert,
)
from erp_messaging.schemas.messaging import (
    EditMessageInput,
    PermissionEvaluateRequest,
    PostMessageInput,
    PresenceHeartbeatInput,
)

__all__ = [
    "EditMessageInput",
    "LegalHoldCreate",
    "LegalHoldRead",
    "PermissionEvaluateRequest",
    "PostMessageInput",
    "PresenceHeartbeatInput",
    "PurgeExecuteRequest",
    "PurgePreviewRequest",
    "RetentionPolicyRead",
    "RetentionPolicyUpsert",
]
