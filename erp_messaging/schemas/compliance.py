"""Schemas for message retention policies, legal holds, and purges."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class RetentionPolicyUpsert(BaseModel):
    message_class: str
    retention_days: int = Field(ge=1)


class RetentionPolicyRead(BaseModel):
    message_class: str
    retention_days: int
    is_default: bool


class LegalHoldCreate(BaseModel):
    scope: Literal["user", "conversation", "linked_entity", "company"]
    target_user_empid: str | None = None
    conversation_id: int | None = None
    linked_entity_type: str | None = None
    linked_entity_id: str | None = None
    reason: str = Field(min_length=1)
    starts_at: datetime | None = None
    ends_at: datetime | None = None


class LegalHoldRead(BaseModel):
    id: int
    company_id: int
    status: str
    scope: str
    target_user_empid: str | None
    conversation_id: int | None
    linked_entity_type: str | None
    linked_entity_id: str | None
    reason: str
    starts_at: datetime
    ends_at: datetime | None
    created_by_empid: str | None
    created_at: datetime
    released_at: datetime | None
    released_by_empid: str | None


class PurgePreviewRequest(BaseModel):
    as_of: datetime | None = None


class PurgeExecuteRequest(BaseModel):
    purge_run_id: str = Field(min_length=1, max_length=64)
    approvals: list[str] = Field(default_factory=list)
    dry_run: bool = True
    as_of: datetime | None = None
