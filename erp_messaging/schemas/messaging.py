"""Schemas for messaging posts, edits, presence and permission checks."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class PostMessageInput(BaseModel):
    """New message or reply. Business rules are enforced by the service."""

    model_config = ConfigDict(extra="ignore")

    body: str = ""
    parent_message_id: int | None = None
    linked_type: str | None = None
    linked_id: str | int | None = None
    topic: str | None = None
    message_class: str = "general"
    visibility_scope: str = "company"
    recipient_empids: list[str | int] = Field(default_factory=list)
    idempotency_key: str | None = None
    client_temp_id: str | None = None


class EditMessageInput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    body: str = ""


class PresenceHeartbeatInput(BaseModel):
    status: str = "online"


class ActorInput(BaseModel):
    empid: str
    company_id: int | None = None
    department_ids: list[str | int] = Field(default_factory=list)
    project_ids: list[str | int] = Field(default_factory=list)


class ResourceInput(BaseModel):
    company_id: int | None = None
    department_id: str | int | None = None
    project_id: str | int | None = None
    linked_type: str | None = None
    linked_owner_empid: str | None = None


class PermissionEvaluateRequest(BaseModel):
    role: str | None = None
    action: str
    actor: ActorInput
    resource: ResourceInput
    policy: dict[str, Any] | None = None
