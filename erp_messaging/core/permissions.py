"""Messaging permission engine: role presets, explicit rules and scope matching.

Precedence: rule deny > rule allow > role deny > role allow (+ scope) > deny
Unknown role: resolves to External (least privilege)
Unknown action: denied with UNKNOWN_ACTION, never raised

Pure computation, safe to call on every request without caching.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping


class MessagingAction(str, Enum):
    """Closed set of actions a caller can request on messaging resources."""
    MESSAGE_CREATE = "message:create"
    MESSAGE_READ = "message:read"
    MESSAGE_REPLY = "message:reply"
    MESSAGE_EDIT = "message:edit"
    MESSAGE_DELETE = "message:delete"
    THREAD_READ = "thread:read"
    PRESENCE_READ = "presence:read"
    ATTACHMENT_UPLOAD = "attachment:upload"
    ATTACHMENT_READ = "attachment:read"
    ADMIN_MODERATE = "admin:moderate"
    ADMIN_EXPORT = "admin:export"

    @classmethod
    def has_value(cls, value: str) -> bool:
        """Check if value is a known action."""
        return value in cls._value2member_map_


class MessagingRole(str, Enum):
    """
    Messaging roles with decreasing privilege levels.

    - OWNER: everything, including exports
    - ADMIN: everything except exports
    - MANAGER: full messaging within department and assigned projects
    - STAFF: messaging without delete, limited to own linked entities
    - EXTERNAL: read/reply only, never across companies
    """
    OWNER = "Owner"
    ADMIN = "Admin"
    MANAGER = "Manager"
    STAFF = "Staff"
    EXTERNAL = "External"

    @classmethod
    def resolve(cls, value: "str | MessagingRole | None") -> "MessagingRole":
        """Map a role name to a preset, failing closed to External."""
        if isinstance(value, MessagingRole):
            return value
        if value and value in cls._value2member_map_:
            return cls(value)
        return cls.EXTERNAL


class DecisionReason(str, Enum):
    UNKNOWN_ACTION = "UNKNOWN_ACTION"
    RULE_DENY = "RULE_DENY"
    RULE_ALLOW = "RULE_ALLOW"
    ROLE_DENY = "ROLE_DENY"
    ROLE_NOT_ALLOWED = "ROLE_NOT_ALLOWED"
    SCOPE_MISMATCH = "SCOPE_MISMATCH"
    ROLE_ALLOW = "ROLE_ALLOW"


# =============================================================================
# Scope, Actor and Resource
# =============================================================================

@dataclass(frozen=True)
class PermissionScope:
    """Filters a preset or rule applies to. Empty scope matches everything."""
    company: str | None = None  # "same" | "all"
    department: str | None = None  # "same"
    project: str | None = None  # "assigned"
    linked_entity_ownership: str | None = None  # "self"
    linked_types: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "PermissionScope":
        if not data:
            return cls()
        return cls(
            company=data.get("company"),
            department=data.get("department"),
            project=data.get("project"),
            linked_entity_ownership=data.get("linked_entity_ownership"),
            linked_types=tuple(data.get("linked_types") or ()),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.company:
            data["company"] = self.company
        if self.department:
            data["department"] = self.department
        if self.project:
            data["project"] = self.project
        if self.linked_entity_ownership:
            data["linked_entity_ownership"] = self.linked_entity_ownership
        if self.linked_types:
            data["linked_types"] = list(self.linked_types)
        return data


@dataclass(frozen=True)
class Actor:
    empid: str
    company_id: int | None
    department_ids: frozenset[str] = frozenset()
    project_ids: frozenset[str] = frozenset()


@dataclass(frozen=True)
class Resource:
    company_id: int | None
    department_id: str | None = None
    project_id: str | None = None
    linked_type: str | None = None
    linked_owner_empid: str | None = None


def matches_scope(scope: PermissionScope, actor: Actor, resource: Resource) -> bool:
    """Return True when the resource falls inside the scope for this actor."""
    if scope.company in ("same", "all") and actor.company_id != resource.company_id:
        return False
    if (
        scope.department == "same"
        and resource.department_id
        and resource.department_id not in actor.department_ids
    ):
        return False
    if (
        scope.project == "assigned"
        and resource.project_id
        and resource.project_id not in actor.project_ids
    ):
        return False
    if scope.linked_entity_ownership == "self":
        owner = resource.linked_owner_empid
        if owner and owner != actor.empid:
            return False
    if scope.linked_types and resource.linked_type not in scope.linked_types:
        return False
    return True


# =============================================================================
# Role Presets
# =============================================================================

@dataclass(frozen=True)
class RolePreset:
    allow: frozenset[MessagingAction]
    deny: frozenset[MessagingAction]
    scope: PermissionScope


A = MessagingAction
ALL_ACTIONS = frozenset(MessagingAction)

ROLE_PRESETS: dict[MessagingRole, RolePreset] = {
    MessagingRole.OWNER: RolePreset(
        allow=ALL_ACTIONS,
        deny=frozenset(),
        scope=PermissionScope(company="all"),
    ),
    MessagingRole.ADMIN: RolePreset(
        allow=ALL_ACTIONS - {A.ADMIN_EXPORT},
        deny=frozenset(),
        scope=PermissionScope(company="all"),
    ),
    MessagingRole.MANAGER: RolePreset(
        allow=frozenset({
            A.MESSAGE_CREATE, A.MESSAGE_READ, A.MESSAGE_REPLY, A.MESSAGE_EDIT,
            A.MESSAGE_DELETE, A.THREAD_READ, A.PRESENCE_READ,
            A.ATTACHMENT_UPLOAD, A.ATTACHMENT_READ,
        }),
        deny=frozenset({A.ADMIN_MODERATE, A.ADMIN_EXPORT}),
        scope=PermissionScope(company="same", department="same", project="assigned"),
    ),
    MessagingRole.STAFF: RolePreset(
        allow=frozenset({
            A.MESSAGE_CREATE, A.MESSAGE_READ, A.MESSAGE_REPLY, A.MESSAGE_EDIT,
            A.THREAD_READ, A.PRESENCE_READ, A.ATTACHMENT_UPLOAD, A.ATTACHMENT_READ,
        }),
        deny=frozenset({A.MESSAGE_DELETE, A.ADMIN_MODERATE, A.ADMIN_EXPORT}),
        scope=PermissionScope(
            company="same",
            department="same",
            project="assigned",
            linked_entity_ownership="self",
        ),
    ),
    MessagingRole.EXTERNAL: RolePreset(
        allow=frozenset({
            A.MESSAGE_CREATE, A.MESSAGE_READ, A.MESSAGE_REPLY, A.THREAD_READ,
            A.ATTACHMENT_READ,
        }),
        deny=frozenset({
            A.MESSAGE_EDIT, A.MESSAGE_DELETE, A.PRESENCE_READ,
            A.ATTACHMENT_UPLOAD, A.ADMIN_MODERATE, A.ADMIN_EXPORT,
        }),
        scope=PermissionScope(company="same", project="assigned", linked_entity_ownership="self"),
    ),
}


# =============================================================================
# Explicit Rules
# =============================================================================

@dataclass(frozen=True)
class PermissionRule:
    """Per-tenant explicit rule; evaluated before role presets."""
    effect: str  # "allow" | "deny"
    actions: frozenset[str]
    scope: PermissionScope = field(default_factory=PermissionScope)
    id: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PermissionRule":
        return cls(
            id=data.get("id"),
            effect=str(data.get("effect") or ""),
            actions=frozenset(data.get("actions") or ()),
            scope=PermissionScope.from_dict(data.get("scope")),
        )

    def matches(self, action: str, actor: Actor, resource: Resource) -> bool:
        return action in self.actions and matches_scope(self.scope, actor, resource)


@dataclass(frozen=True)
class PermissionPolicy:
    rules: tuple[PermissionRule, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "PermissionPolicy":
        if not data:
            return cls()
        return cls(rules=tuple(PermissionRule.from_dict(rule) for rule in data.get("rules") or ()))


@dataclass(frozen=True)
class PermissionDecision:
    allowed: bool
    reason: DecisionReason
    rule_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"allowed": self.allowed, "reason": self.reason.value, "rule_id": self.rule_id}


# =============================================================================
# Evaluation
# =============================================================================

def _first_rule(rules: Iterable[PermissionRule], effect: str, action: str, actor: Actor, resource: Resource):
    for rule in rules:
        if rule.effect == effect and rule.matches(action, actor, resource):
            return rule
    return None


def evaluate_messaging_permission(
    role: "str | MessagingRole | None",
    action: "str | MessagingAction",
    actor: Actor,
    resource: Resource,
    policy: "PermissionPolicy | Mapping[str, Any] | None" = None,
) -> PermissionDecision:
    """Decide whether actor may perform action on resource."""
    action_value = action.value if isinstance(action, MessagingAction) else str(action)
    if not MessagingAction.has_value(action_value):
        return PermissionDecision(False, DecisionReason.UNKNOWN_ACTION)
    action_enum = MessagingAction(action_value)

    if not isinstance(policy, PermissionPolicy):
        policy = PermissionPolicy.from_dict(policy)
    preset = ROLE_PRESETS[MessagingRole.resolve(role)]

    deny_rule = _first_rule(policy.rules, "deny", action_value, actor, resource)
    if deny_rule:
        return PermissionDecision(False, DecisionReason.RULE_DENY, deny_rule.id)

    allow_rule = _first_rule(policy.rules, "allow", action_value, actor, resource)
    if allow_rule:
        return PermissionDecision(True, DecisionReason.RULE_ALLOW, allow_rule.id)

    if action_enum in preset.deny:
        return PermissionDecision(False, DecisionReason.ROLE_DENY)
    if action_enum not in preset.allow:
        return PermissionDecision(False, DecisionReason.ROLE_NOT_ALLOWED)
    if not matches_scope(preset.scope, actor, resource):
        return PermissionDecision(False, DecisionReason.SCOPE_MISMATCH)
    return PermissionDecision(True, DecisionReason.ROLE_ALLOW)


def get_messaging_permission_matrix() -> dict[str, dict[str, Any]]:
    """Role presets as plain data for admin tooling."""
    return {
        role.value: {
            "allow": sorted(action.value for action in preset.allow),
            "deny": sorted(action.value for action in preset.deny),
            "scope": preset.scope.to_dict(),
        }
        for role, preset in ROLE_PRESETS.items()
    }
