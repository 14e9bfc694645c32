"""Chain of custody for purged messages, and deletion certificates.

Record hash = SHA256(purge_run_id|company_id|message_id|previous_hash)
The first record of a run uses an empty previous_hash. Callers thread
previous_hash sequentially so the chain can be re-verified later.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Iterable, Sequence

from erp_messaging.utils.datetime_parsing import to_utc, utcnow


@dataclass(frozen=True)
class CustodyRecord:
    purge_run_id: str
    company_id: int
    message_id: int
    previous_hash: str
    record_hash: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class DeletionCertificateData:
    company_id: int
    purge_run_id: str
    action_count: int
    chain_tail_hash: str
    generated_by: str
    issued_at: str
    certificate_digest: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def canonical_json(obj: dict | None) -> str:
    """
    Serialize object to canonical JSON for consistent hashing.

    Uses sorted keys, compact separators, and str() for non-JSON types.
    """
    return json.dumps(obj or {}, sort_keys=True, separators=(",", ":"), default=str)


def compute_record_hash(purge_run_id: str, company_id: int, message_id: int, previous_hash: str) -> str:
    payload = "|".join([str(purge_run_id), str(company_id), str(message_id), previous_hash or ""])
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def build_chain_of_custody_record(
    purge_run_id: str,
    company_id: int,
    message_id: int,
    previous_hash: str = "",
) -> CustodyRecord:
    previous_hash = previous_hash or ""
    return CustodyRecord(
        purge_run_id=purge_run_id,
        company_id=company_id,
        message_id=message_id,
        previous_hash=previous_hash,
        record_hash=compute_record_hash(purge_run_id, company_id, message_id, previous_hash),
    )


def build_custody_chain(purge_run_id: str, company_id: int, message_ids: Iterable[int]) -> list[CustodyRecord]:
    records: list[CustodyRecord] = []
    previous_hash = ""
    for message_id in message_ids:
        record = build_chain_of_custody_record(purge_run_id, company_id, message_id, previous_hash)
        records.append(record)
        previous_hash = record.record_hash
    return records


def verify_custody_chain(records: Sequence[CustodyRecord]) -> bool:
    """Recompute every hash and check each link points at its predecessor."""
    previous_hash = ""
    for record in records:
        if record.previous_hash != previous_hash:
            return False
        expected = compute_record_hash(
            record.purge_run_id, record.company_id, record.message_id, record.previous_hash
        )
        if record.record_hash != expected:
            return False
        previous_hash = record.record_hash
    return True


def chain_tail_hash(records: Sequence[CustodyRecord]) -> str:
    return records[-1].record_hash if records else ""


def build_deletion_certificate(
    company_id: int,
    purge_run_id: str,
    action_count: int,
    chain_tail_hash: str,
    generated_by: str,
    issued_at: datetime | None = None,
) -> DeletionCertificateData:
    """Issue the certificate for a completed purge run (after the chain is built)."""
    issued = (to_utc(issued_at) or utcnow()).isoformat()
    body = {
        "company_id": company_id,
        "purge_run_id": purge_run_id,
        "action_count": action_count,
        "chain_tail_hash": chain_tail_hash,
        "generated_by": generated_by,
        "issued_at": issued,
    }
    digest = hashlib.sha256(canonical_json(body).encode("utf-8")).hexdigest()
    return DeletionCertificateData(certificate_digest=digest, **body)
