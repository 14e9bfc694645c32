"""Retention windows, legal-hold matching and purge planning for messages.

Pure functions over in-memory message and hold lists. No I/O.

Legal-hold precedence is absolute: a matching active hold is checked before
the retention deadline is allowed to authorize deletion.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Mapping, Sequence

from erp_messaging.core.errors import ApprovalGateError, UnsupportedClassError, ValidationError
from erp_messaging.db.enums import (
    DEFAULT_RETENTION_DAYS,
    HoldScope,
    HoldStatus,
    LifecycleStatus,
    MessageClass,
)
from erp_messaging.utils.datetime_parsing import to_utc, utcnow


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

SKIP_REASON_DIFFERENT_COMPANY = "different_company"
ACTION_DELETE = "delete"
ACTION_WOULD_DELETE = "would_delete"


@dataclass
class LifecycleDecision:
    status: str
    purge_eligible: bool
    message_class: str
    retention_days: int
    retention_deadline: datetime
    hold_id: int | str | None
    reason: str

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["retention_deadline"] = self.retention_deadline.isoformat()
        return data


@dataclass
class PurgeCandidate:
    message_id: int
    decision: LifecycleDecision

    def to_dict(self) -> dict[str, Any]:
        return {"message_id": self.message_id, "decision": self.decision.to_dict()}


@dataclass
class PurgeSkip:
    message_id: int
    reason: str
    hold_id: int | str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class PurgePlan:
    company_id: int
    as_of: datetime
    candidates: list[PurgeCandidate] = field(default_factory=list)
    skipped: list[PurgeSkip] = field(default_factory=list)
    inspected: int = 0

    @property
    def summary(self) -> dict[str, int]:
        return {
            "inspected": self.inspected,
            "candidate_count": len(self.candidates),
            "skipped_count": len(self.skipped),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "company_id": self.company_id,
            "as_of": self.as_of.isoformat(),
            "summary": self.summary,
            "candidates": [c.to_dict() for c in self.candidates],
            "skipped": [s.to_dict() for s in self.skipped],
        }


@dataclass
class PurgeAction:
    message_id: int
    action: str
    acted_at: str


@dataclass
class PurgeResult:
    company_id: int
    dry_run: bool
    # None for dry runs: the gate was not applicable, which differs from failed.
    approval_gate_satisfied: bool | None
    approvals: list[str]
    actions: list[PurgeAction]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# =============================================================================
# Retention
# =============================================================================

def resolve_retention_days(
    message_class: str,
    company_policy: Mapping[str, Any] | None = None,
    defaults: Mapping[str, int] = DEFAULT_RETENTION_DAYS,
) -> int:
    """Company override when it is a whole number of days >= 1, else the class default."""
    if not MessageClass.has_value(message_class):
        raise UnsupportedClassError(f"Unsupported message class: {message_class}")
    explicit = (company_policy or {}).get(message_class)
    try:
        days = int(explicit) if explicit is not None else None
    except (TypeError, ValueError):
        days = None
    if days is not None and days >= 1:
        return days
    return defaults[message_class]


def is_hold_active(hold: Mapping[str, Any], as_of: datetime) -> bool:
    if hold.get("status") != HoldStatus.ACTIVE.value:
        return False
    starts_at = to_utc(hold.get("starts_at")) or EPOCH
    ends_at = to_utc(hold.get("ends_at"))
    if starts_at > as_of:
        return False
    if ends_at and ends_at <= as_of:
        return False
    return True


def hold_matches_message(hold: Mapping[str, Any], message: Mapping[str, Any]) -> bool:
    scope = hold.get("scope")
    if scope == HoldScope.COMPANY.value:
        return str(hold.get("company_id")) == str(message.get("company_id"))
    if scope == HoldScope.USER.value:
        return str(hold.get("target_user_empid")) == str(message.get("author_empid"))
    if scope == HoldScope.CONVERSATION.value:
        # A thread root is the conversation it anchors.
        conversation_id = message.get("conversation_id") or message.get("id")
        return str(hold.get("conversation_id")) == str(conversation_id)
    if scope == HoldScope.LINKED_ENTITY.value:
        return (
            str(hold.get("linked_entity_type")) == str(message.get("linked_type"))
            and str(hold.get("linked_entity_id")) == str(message.get("linked_id"))
        )
    return False


def evaluate_message_lifecycle(
    message: Mapping[str, Any],
    company_policy: Mapping[str, Any] | None = None,
    legal_holds: Iterable[Mapping[str, Any]] = (),
    as_of: datetime | None = None,
) -> LifecycleDecision:
    created_at = to_utc(message.get("created_at"))
    if created_at is None:
        raise ValidationError("message.created_at is required", code="CREATED_AT_REQUIRED")
    as_of = to_utc(as_of) or utcnow()
    message_class = message.get("message_class") or MessageClass.GENERAL.value
    retention_days = resolve_retention_days(message_class, company_policy)
    deadline = created_at + timedelta(days=retention_days)

    hold = next(
        (h for h in legal_holds if is_hold_active(h, as_of) and hold_matches_message(h, message)),
        None,
    )
    if hold is not None:
        return LifecycleDecision(
            status=LifecycleStatus.BLOCKED_BY_LEGAL_HOLD.value,
            purge_eligible=False,
            message_class=message_class,
            retention_days=retention_days,
            retention_deadline=deadline,
            hold_id=hold.get("id"),
            reason=f"Legal hold {hold.get('id')} ({hold.get('scope')}) blocks purge",
        )

    expired = deadline <= as_of
    return LifecycleDecision(
        status=(LifecycleStatus.ELIGIBLE_FOR_PURGE if expired else LifecycleStatus.RETAINED).value,
        purge_eligible=expired,
        message_class=message_class,
        retention_days=retention_days,
        retention_deadline=deadline,
        hold_id=None,
        reason="Retention deadline reached" if expired else "Retention window still active",
    )


# =============================================================================
# Purge Planning
# =============================================================================

def build_purge_plan(
    company_id: int,
    messages: Sequence[Mapping[str, Any]],
    company_policy: Mapping[str, Any] | None = None,
    legal_holds: Sequence[Mapping[str, Any]] = (),
    as_of: datetime | None = None,
) -> PurgePlan:
    """Partition messages into purge candidates and skipped entries.

    Messages of another company are skipped, never dropped, so
    candidate_count + skipped_count always equals inspected.
    """
    as_of = to_utc(as_of) or utcnow()
    plan = PurgePlan(company_id=company_id, as_of=as_of, inspected=len(messages))
    for message in messages:
        if str(message.get("company_id")) != str(company_id):
            plan.skipped.append(PurgeSkip(message["id"], SKIP_REASON_DIFFERENT_COMPANY))
            continue
        decision = evaluate_message_lifecycle(message, company_policy, legal_holds, as_of)
        if decision.purge_eligible:
            plan.candidates.append(PurgeCandidate(message["id"], decision))
        else:
            plan.skipped.append(PurgeSkip(message["id"], decision.status, decision.hold_id))
    return plan


def dedupe_approvals(approvals: Iterable[Any]) -> list[str]:
    seen: list[str] = []
    for approver in approvals:
        if approver is None or str(approver).strip() == "":
            continue
        value = str(approver).strip()
        if value not in seen:
            seen.append(value)
    return seen


def apply_purge_plan(
    purge_plan: PurgePlan,
    dry_run: bool = True,
    approvals: Iterable[Any] = (),
    required_approvals: int = 1,
    acted_at: datetime | None = None,
) -> PurgeResult:
    """Turn a plan into delete actions.

    A real run with fewer distinct approvers than required raises
    ApprovalGateError before any action is produced. Dry runs never
    enforce approvals.
    """
    unique_approvers = dedupe_approvals(approvals)
    if not dry_run and len(unique_approvers) < required_approvals:
        raise ApprovalGateError(required=required_approvals, actual=len(unique_approvers))

    stamp = (to_utc(acted_at) or utcnow()).isoformat()
    action = ACTION_WOULD_DELETE if dry_run else ACTION_DELETE
    return PurgeResult(
        company_id=purge_plan.company_id,
        dry_run=dry_run,
        approval_gate_satisfied=None if dry_run else len(unique_approvers) >= required_approvals,
        approvals=unique_approvers,
        actions=[PurgeAction(c.message_id, action, stamp) for c in purge_plan.candidates],
    )
