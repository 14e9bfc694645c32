"""Chain-of-custody and deletion certificate tests."""

import hashlib
import re
from dataclasses import replace
from datetime import datetime, timezone

from erp_messaging.services.custody_ledger import (
    build_chain_of_custody_record,
    build_custody_chain,
    build_deletion_certificate,
    canonical_json,
    chain_tail_hash,
    verify_custody_chain,
)


HEX64 = re.compile(r"^[0-9a-f]{64}$")


def test_record_hash_is_deterministic():
    a = build_chain_of_custody_record("run-1", 1, 10)
    b = build_chain_of_custody_record("run-1", 1, 10)
    assert a.record_hash == b.record_hash
    assert HEX64.match(a.record_hash)
    assert a.previous_hash == ""
    assert a.record_hash == hashlib.sha256(b"run-1|1|10|").hexdigest()


def test_record_hash_depends_on_previous_hash():
    first = build_chain_of_custody_record("run-1", 1, 10)
    linked = build_chain_of_custody_record("run-1", 1, 10, first.record_hash)
    assert linked.record_hash != first.record_hash


def test_chain_links_records():
    records = build_custody_chain("run-1", 1, [10, 11, 12])
    assert records[0].previous_hash == ""
    assert records[1].previous_hash == records[0].record_hash
    assert records[2].previous_hash == records[1].record_hash
    assert chain_tail_hash(records) == records[2].record_hash
    assert verify_custody_chain(records) is True


def test_tampered_chain_fails_verification():
    records = build_custody_chain("run-1", 1, [10, 11])
    forged = replace(records[1], message_id=99)
    assert verify_custody_chain([records[0], forged]) is False
    assert verify_custody_chain([records[1], records[0]]) is False


def test_empty_chain_tail():
    assert chain_tail_hash([]) == ""
    assert verify_custody_chain([]) is True


def test_certificate_digest_covers_body():
    issued = datetime(2025, 6, 1, tzinfo=timezone.utc)
    cert = build_deletion_certificate(1, "run-1", 2, "ab" * 32, "ADM", issued_at=issued)
    body = {
        "company_id": 1,
        "purge_run_id": "run-1",
        "action_count": 2,
        "chain_tail_hash": "ab" * 32,
        "generated_by": "ADM",
        "issued_at": issued.isoformat(),
    }
    assert cert.certificate_digest == hashlib.sha256(canonical_json(body).encode()).hexdigest()
    again = build_deletion_certificate(1, "run-1", 2, "ab" * 32, "ADM", issued_at=issued)
    assert again.certificate_digest == cert.certificate_digest


def test_canonical_json_is_key_order_independent():
    assert canonical_json({"b": 1, "a": 2}) == canonical_json({"a": 2, "b": 1}) == '{"a":2,"b":1}'
    assert canonical_json(None) == "{}"
