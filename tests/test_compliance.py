"""
Compliance service tests.

Tests cover:
- Retention policy listing and upserts
- Legal hold lifecycle (create, validation, release)
- Purge preview / execute: approval gate, hold precedence,
  chain of custody, deletion certificate, non-reentrant runs
"""

from datetime import datetime, timedelta, timezone

import pytest

from erp_messaging.core.errors import (
    ApprovalGateError,
    ConflictError,
    NotFound,
    UnsupportedClassError,
    ValidationError,
)
from erp_messaging.db.models import Message, MessagePurgeRun
from erp_messaging.services import compliance_service
from erp_messaging.services.custody_ledger import CustodyRecord, verify_custody_chain


# Messages in these tests are created at 2025-03-01 (FakeClock); default general retention is 365 days.
AFTER_RETENTION = datetime(2026, 4, 1, tzinfo=timezone.utc)
HOLD_START = datetime(2025, 1, 1, tzinfo=timezone.utc)
APPROVERS = ["ADM", "MOD"]


def _user_hold(empid: str, **extra) -> dict:
    data = {"scope": "user", "target_user_empid": empid, "reason": "litigation", "starts_at": HOLD_START}
    data.update(extra)
    return data


# =============================================================================
# Retention Policies
# =============================================================================


def test_retention_policies_default(store):
    policies = compliance_service.list_retention_policies(store, 1)
    assert {p["message_class"]: p["retention_days"] for p in policies} == {
        "general": 365,
        "financial": 2555,
        "hr_sensitive": 2555,
        "legal": 3650,
    }
    assert all(p["is_default"] for p in policies)


def test_upsert_retention_policy(store):
    compliance_service.upsert_retention_policy(store, 1, "ADM", "general", 90)
    compliance_service.upsert_retention_policy(store, 1, "ADM", "general", 30)

    policies = {p["message_class"]: p for p in compliance_service.list_retention_policies(store, 1)}
    assert policies["general"] == {"message_class": "general", "retention_days": 30, "is_default": False}
    assert policies["legal"]["is_default"] is True
    # Other tenants keep the defaults
    other = {p["message_class"]: p for p in compliance_service.list_retention_policies(store, 2)}
    assert other["general"]["retention_days"] == 365

    events = [e["event"] for e in store.list_security_events(1)]
    assert events == ["messaging.retention_updated", "messaging.retention_updated"]


def test_upsert_retention_policy_validation(store):
    with pytest.raises(UnsupportedClassError):
        compliance_service.upsert_retention_policy(store, 1, "ADM", "gossip", 30)
    with pytest.raises(ValidationError) as exc:
        compliance_service.upsert_retention_policy(store, 1, "ADM", "general", 0)
    assert exc.value.code == "RETENTION_DAYS_INVALID"


# =============================================================================
# Legal Holds
# =============================================================================


def test_create_and_list_legal_hold(store):
    hold = compliance_service.create_legal_hold(store, 1, "ADM", _user_hold("E2"))
    assert hold["status"] == "active"
    assert hold["created_by_empid"] == "ADM"

    holds = compliance_service.list_legal_holds(store, 1)
    assert [h["id"] for h in holds] == [hold["id"]]
    assert compliance_service.list_legal_holds(store, 2) == []
    assert store.list_security_events(1)[-1]["event"] == "messaging.legal_hold_created"


def test_legal_hold_requires_target(store):
    with pytest.raises(ValidationError) as exc:
        compliance_service.create_legal_hold(store, 1, "ADM", {"scope": "user", "reason": "x"})
    assert exc.value.code == "HOLD_TARGET_REQUIRED"
    with pytest.raises(ValidationError) as exc:
        compliance_service.create_legal_hold(
            store, 1, "ADM", {"scope": "linked_entity", "linked_entity_type": "transaction", "reason": "x"}
        )
    assert exc.value.code == "HOLD_TARGET_REQUIRED"


def test_legal_hold_window_must_be_ordered(store):
    with pytest.raises(ValidationError) as exc:
        compliance_service.create_legal_hold(
            store, 1, "ADM", _user_hold("E2", ends_at=HOLD_START - timedelta(days=1))
        )
    assert exc.value.code == "HOLD_WINDOW_INVALID"


def test_release_legal_hold(store):
    hold = compliance_service.create_legal_hold(store, 1, "ADM", _user_hold("E2"))
    released = compliance_service.release_legal_hold(store, 1, "MOD", hold["id"])
    assert released["status"] == "released"
    assert released["released_by_empid"] == "MOD"

    with pytest.raises(ConflictError) as exc:
        compliance_service.release_legal_hold(store, 1, "MOD", hold["id"])
    assert exc.value.code == "LEGAL_HOLD_ALREADY_RELEASED"


def test_release_hold_of_other_company_is_not_found(store):
    hold = compliance_service.create_legal_hold(store, 1, "ADM", _user_hold("E2"))
    with pytest.raises(NotFound) as exc:
        compliance_service.release_legal_hold(store, 2, "ADM", hold["id"])
    assert exc.value.code == "LEGAL_HOLD_NOT_FOUND"


# =============================================================================
# Purge Preview
# =============================================================================


def test_preview_respects_retention_window(store, post):
    post("E1", body="fresh enough")
    plan = compliance_service.preview_purge(store, 1, datetime(2025, 6, 1, tzinfo=timezone.utc))
    assert plan.candidates == []
    assert plan.skipped[0].reason == "retained"

    compliance_service.upsert_retention_policy(store, 1, "ADM", "general", 30)
    plan = compliance_service.preview_purge(store, 1, datetime(2025, 6, 1, tzinfo=timezone.utc))
    assert len(plan.candidates) == 1


def test_preview_hold_precedence(store, post):
    kept = post("E2", body="under hold")
    expired = post("E1", body="past retention")
    compliance_service.create_legal_hold(store, 1, "ADM", _user_hold("E2"))

    plan = compliance_service.preview_purge(store, 1, AFTER_RETENTION)
    assert [c.message_id for c in plan.candidates] == [expired["id"]]
    assert [(s.message_id, s.reason) for s in plan.skipped] == [(kept["id"], "blocked_by_legal_hold")]


def test_preview_includes_soft_deleted_messages(service, store, post):
    message = post("E1", body="soft deleted")
    service.delete_message({"empid": "E1"}, 1, message["id"])
    plan = compliance_service.preview_purge(store, 1, AFTER_RETENTION)
    assert [c.message_id for c in plan.candidates] == [message["id"]]


# =============================================================================
# Purge Execution
# =============================================================================


def test_dry_run_writes_nothing(store, db, post):
    post("E1", body="dry run target")
    result = compliance_service.execute_purge(store, 1, "run-dry", "ADM", as_of=AFTER_RETENTION)
    assert result["result"]["dry_run"] is True
    assert result["result"]["approval_gate_satisfied"] is None
    assert [a["action"] for a in result["result"]["actions"]] == ["would_delete"]
    assert result["certificate"] is None
    assert db.query(Message).count() == 1
    assert db.query(MessagePurgeRun).count() == 0


def test_real_purge_needs_distinct_approvals(store, db, post):
    post("E1", body="gated")
    with pytest.raises(ApprovalGateError):
        compliance_service.execute_purge(
            store, 1, "run-gate", "ADM", approvals=["ADM", "ADM"], required_approvals=2,
            dry_run=False, as_of=AFTER_RETENTION,
        )
    assert db.query(Message).count() == 1
    assert db.query(MessagePurgeRun).count() == 0


def test_real_purge_deletes_and_certifies(service, store, db, post):
    first = post("E1", body="purge one")
    second = post("E2", body="purge two")
    service.get_thread({"empid": "E3"}, 1, first["id"])
    other_company = post("E1", company_id=2, body="not this tenant")

    result = compliance_service.execute_purge(
        store, 1, "run-1", "ADM", approvals=APPROVERS, required_approvals=2,
        dry_run=False, as_of=AFTER_RETENTION,
    )

    assert result["result"]["approval_gate_satisfied"] is True
    assert [a["message_id"] for a in result["result"]["actions"]] == [first["id"], second["id"]]
    assert store.find_message(1, first["id"]) is None
    assert store.find_message(1, second["id"]) is None
    assert store.find_message(2, other_company["id"]) is not None

    stored = store.list_custody_records("run-1")
    assert [r["sequence"] for r in stored] == [1, 2]
    chain = [
        CustodyRecord(
            purge_run_id=r["purge_run_id"],
            company_id=r["company_id"],
            message_id=r["message_id"],
            previous_hash=r["previous_hash"],
            record_hash=r["record_hash"],
        )
        for r in stored
    ]
    assert verify_custody_chain(chain) is True
    assert [r.to_dict() for r in chain] == result["custody"]

    certificate = compliance_service.get_deletion_certificate(store, 1, "run-1")
    assert certificate["action_count"] == 2
    assert certificate["chain_tail_hash"] == chain[-1].record_hash
    assert certificate["certificate_digest"] == result["certificate"]["certificate_digest"]

    purge_run = db.query(MessagePurgeRun).one()
    assert purge_run.action_count == 2
    assert purge_run.approvals == APPROVERS
    assert purge_run.completed_at is not None
    assert store.list_security_events(1)[-1]["event"] == "messaging.purge_executed"


def test_purge_run_id_is_not_reentrant(store, post):
    post("E1", body="once only")
    compliance_service.execute_purge(
        store, 1, "run-once", "ADM", approvals=APPROVERS, required_approvals=2,
        dry_run=False, as_of=AFTER_RETENTION,
    )
    post("E1", body="arrived later")
    with pytest.raises(ConflictError) as exc:
        compliance_service.execute_purge(
            store, 1, "run-once", "ADM", approvals=APPROVERS, required_approvals=2,
            dry_run=False, as_of=AFTER_RETENTION,
        )
    assert exc.value.code == "PURGE_RUN_ALREADY_APPLIED"
    # The rejected run deleted nothing
    assert len(store.list_company_messages(1)) == 1
    assert len(store.list_custody_records("run-once")) == 1


def test_held_messages_survive_until_release(store, post):
    held = post("E2", body="held message")
    hold = compliance_service.create_legal_hold(store, 1, "ADM", _user_hold("E2"))

    result = compliance_service.execute_purge(
        store, 1, "run-held", "ADM", approvals=APPROVERS, required_approvals=2,
        dry_run=False, as_of=AFTER_RETENTION,
    )
    assert result["result"]["actions"] == []
    assert result["certificate"]["action_count"] == 0
    assert store.find_message(1, held["id"]) is not None

    compliance_service.release_legal_hold(store, 1, "ADM", hold["id"])
    compliance_service.execute_purge(
        store, 1, "run-released", "ADM", approvals=APPROVERS, required_approvals=2,
        dry_run=False, as_of=AFTER_RETENTION,
    )
    assert store.find_message(1, held["id"]) is None


def test_missing_certificate_is_not_found(store):
    with pytest.raises(NotFound) as exc:
        compliance_service.get_deletion_certificate(store, 1, "never-ran")
    assert exc.value.code == "CERTIFICATE_NOT_FOUND"
