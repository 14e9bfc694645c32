"""Persistence adapter for messaging, compliance and audit rows.

Thin layer over a SQLAlchemy Session: parameterized SQL in, plain dict
rows out. Driver errors surface as StoreError, unique violations as
DuplicateKeyError so callers can treat them as benign races.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Iterator, Mapping, Sequence

from sqlalchemy import bindparam, delete, insert, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.sql.expression import Executable

from erp_messaging.core.errors import DuplicateKeyError, StoreError
from erp_messaging.db.enums import HoldStatus
from erp_messaging.db.models import (
    ChainOfCustodyRecord,
    CompanyMembership,
    DeletionCertificate,
    LegalHold,
    Message,
    MessageIdempotency,
    MessageParticipant,
    MessagePurgeRun,
    MessageReceipt,
    MessageRetentionPolicy,
    MessagingAbuseEvent,
    MessagingSecurityEvent,
)
from erp_messaging.utils.datetime_parsing import to_utc


@dataclass
class QueryMeta:
    insert_id: int | None = None
    rowcount: int = 0


def _normalize_row(row: Mapping[str, Any]) -> dict[str, Any]:
    data = dict(row)
    for key, value in data.items():
        if key.endswith("_at") and value is not None:
            data[key] = to_utc(value)
    return data


class MessagingStore:
    """Query interface used by the messaging and compliance services."""

    def __init__(self, db: Session):
        self.db = db

    # -------------------------------------------------------------------------
    # Primitives
    # -------------------------------------------------------------------------

    def query(
        self,
        statement: str | Executable,
        params: Mapping[str, Any] | Sequence[Mapping[str, Any]] | None = None,
    ) -> tuple[list[dict[str, Any]], QueryMeta]:
        """Execute one statement; a list of params runs it as executemany."""
        if isinstance(statement, str):
            statement = text(statement)
        many = isinstance(params, (list, tuple))
        bound = [dict(p) for p in params] if many else dict(params or {})
        try:
            result = self.db.execute(statement, bound)
        except IntegrityError as exc:
            raise DuplicateKeyError(f"Unique constraint violated: {exc.orig}") from exc
        except SQLAlchemyError as exc:
            raise StoreError(f"Store query failed: {exc}") from exc

        rows: list[dict[str, Any]] = []
        if result.returns_rows:
            rows = [_normalize_row(row) for row in result.mappings()]
        insert_id = None
        if not many and getattr(result, "is_insert", False) and result.inserted_primary_key:
            insert_id = result.inserted_primary_key[0]
        return rows, QueryMeta(insert_id=insert_id, rowcount=result.rowcount or 0)

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """SAVEPOINT scope: everything inside commits or rolls back together."""
        try:
            savepoint = self.db.begin_nested()
        except SQLAlchemyError as exc:
            raise StoreError(f"Could not open savepoint: {exc}") from exc
        with savepoint:
            yield

    def commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreError(f"Commit failed: {exc}") from exc

    def rollback(self) -> None:
        self.db.rollback()

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    def find_membership(self, company_id: int, empid: str) -> dict[str, Any] | None:
        table = CompanyMembership.__table__
        rows, _ = self.query(
            select(table).where(
                table.c.company_id == company_id,
                table.c.empid == str(empid),
                table.c.is_active.is_(True),
            )
        )
        return rows[0] if rows else None

    # -------------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------------

    def find_message(self, company_id: int, message_id: int) -> dict[str, Any] | None:
        rows, _ = self.query(
            "SELECT * FROM messages WHERE id = :id AND company_id = :company_id",
            {"id": message_id, "company_id": company_id},
        )
        if not rows:
            return None
        return self.attach_recipients(company_id, rows)[0]

    def list_messages(
        self,
        company_id: int,
        limit: int,
        before_id: int | None = None,
        linked_type: str | None = None,
        linked_id: str | None = None,
    ) -> list[dict[str, Any]]:
        """Newest first, soft-deleted rows excluded."""
        filters = ["company_id = :company_id", "deleted_at IS NULL"]
        params: dict[str, Any] = {"company_id": company_id, "limit": limit}
        if linked_type and linked_id:
            filters.append("linked_type = :linked_type AND linked_id = :linked_id")
            params.update(linked_type=linked_type, linked_id=str(linked_id))
        if before_id:
            filters.append("id < :before_id")
            params["before_id"] = before_id
        rows, _ = self.query(
            f"SELECT * FROM messages WHERE {' AND '.join(filters)} ORDER BY id DESC LIMIT :limit",
            params,
        )
        return self.attach_recipients(company_id, rows)

    def list_thread(self, company_id: int, root_id: int) -> list[dict[str, Any]]:
        rows, _ = self.query(
            "SELECT * FROM messages WHERE company_id = :company_id "
            "AND (id = :root_id OR conversation_id = :root_id) "
            "AND deleted_at IS NULL ORDER BY id ASC",
            {"company_id": company_id, "root_id": root_id},
        )
        return self.attach_recipients(company_id, rows)

    def list_company_messages(self, company_id: int) -> list[dict[str, Any]]:
        """Every message row of a company, soft-deleted included (purge input)."""
        rows, _ = self.query(
            "SELECT * FROM messages WHERE company_id = :company_id ORDER BY id ASC",
            {"company_id": company_id},
        )
        return rows

    def attach_recipients(self, company_id: int, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        if not rows:
            return rows
        statement = text(
            "SELECT message_id, empid FROM message_participants "
            "WHERE company_id = :company_id AND message_id IN :ids ORDER BY empid"
        ).bindparams(bindparam("ids", expanding=True))
        participants, _ = self.query(
            statement, {"company_id": company_id, "ids": [row["id"] for row in rows]}
        )
        by_message: dict[int, list[str]] = {}
        for entry in participants:
            by_message.setdefault(entry["message_id"], []).append(entry["empid"])
        for row in rows:
            row["recipient_empids"] = by_message.get(row["id"], [])
        return rows

    def insert_message(self, values: Mapping[str, Any]) -> int:
        _, meta = self.query(insert(Message.__table__).values(**values))
        return meta.insert_id

    def insert_participants(self, company_id: int, message_id: int, empids: Iterable[str]) -> None:
        rows = [
            {"message_id": message_id, "company_id": company_id, "empid": str(empid)}
            for empid in dict.fromkeys(empids)
        ]
        if rows:
            self.query(insert(MessageParticipant.__table__), rows)

    def update_body(self, company_id: int, message_id: int, body: str, updated_at: datetime) -> int:
        table = Message.__table__
        _, meta = self.query(
            update(table)
            .where(table.c.id == message_id, table.c.company_id == company_id)
            .values(body=body, updated_at=updated_at)
        )
        return meta.rowcount

    def soft_delete(self, company_id: int, message_id: int, empid: str, deleted_at: datetime) -> int:
        table = Message.__table__
        _, meta = self.query(
            update(table)
            .where(
                table.c.id == message_id,
                table.c.company_id == company_id,
                table.c.deleted_at.is_(None),
            )
            .values(deleted_at=deleted_at, deleted_by_empid=empid)
        )
        return meta.rowcount

    def hard_delete_messages(self, company_id: int, message_ids: Sequence[int]) -> int:
        """Physically remove messages and their dependent rows. Purge pipeline only."""
        if not message_ids:
            return 0
        ids = list(message_ids)
        self.query(delete(MessageParticipant.__table__).where(
            MessageParticipant.__table__.c.company_id == company_id,
            MessageParticipant.__table__.c.message_id.in_(ids),
        ))
        self.query(delete(MessageReceipt.__table__).where(MessageReceipt.__table__.c.message_id.in_(ids)))
        self.query(delete(MessageIdempotency.__table__).where(
            MessageIdempotency.__table__.c.company_id == company_id,
            MessageIdempotency.__table__.c.message_id.in_(ids),
        ))
        _, meta = self.query(delete(Message.__table__).where(
            Message.__table__.c.company_id == company_id,
            Message.__table__.c.id.in_(ids),
        ))
        return meta.rowcount

    # -------------------------------------------------------------------------
    # Idempotency and receipts
    # -------------------------------------------------------------------------

    def find_idempotent_message_id(self, company_id: int, empid: str, key: str) -> int | None:
        rows, _ = self.query(
            "SELECT message_id FROM message_idempotency "
            "WHERE company_id = :company_id AND empid = :empid AND idempotency_key = :key",
            {"company_id": company_id, "empid": empid, "key": key},
        )
        return rows[0]["message_id"] if rows else None

    def insert_idempotency(self, company_id: int, empid: str, key: str, message_id: int) -> None:
        self.query(insert(MessageIdempotency.__table__).values(
            company_id=company_id, empid=empid, idempotency_key=key, message_id=message_id,
        ))

    def insert_receipt(self, message_id: int, empid: str, read_at: datetime) -> bool:
        """Record a first read. Returns False when the receipt already existed."""
        try:
            with self.atomic():
                self.query(insert(MessageReceipt.__table__).values(
                    message_id=message_id, empid=empid, read_at=read_at,
                ))
        except DuplicateKeyError:
            return False
        return True

    # -------------------------------------------------------------------------
    # Retention policies and legal holds
    # -------------------------------------------------------------------------

    def get_retention_policy(self, company_id: int) -> dict[str, int]:
        rows, _ = self.query(
            "SELECT message_class, retention_days FROM message_retention_policies "
            "WHERE company_id = :company_id",
            {"company_id": company_id},
        )
        return {row["message_class"]: row["retention_days"] for row in rows}

    def upsert_retention_days(
        self, company_id: int, message_class: str, retention_days: int, empid: str, updated_at: datetime
    ) -> None:
        table = MessageRetentionPolicy.__table__
        _, meta = self.query(
            update(table)
            .where(table.c.company_id == company_id, table.c.message_class == message_class)
            .values(retention_days=retention_days, updated_by_empid=empid, updated_at=updated_at)
        )
        if not meta.rowcount:
            self.query(insert(table).values(
                company_id=company_id,
                message_class=message_class,
                retention_days=retention_days,
                updated_by_empid=empid,
                updated_at=updated_at,
            ))

    def list_legal_holds(self, company_id: int, include_released: bool = False) -> list[dict[str, Any]]:
        sql = "SELECT * FROM legal_holds WHERE company_id = :company_id"
        params: dict[str, Any] = {"company_id": company_id}
        if not include_released:
            sql += " AND status = :status"
            params["status"] = HoldStatus.ACTIVE.value
        rows, _ = self.query(sql + " ORDER BY id ASC", params)
        return rows

    def find_legal_hold(self, company_id: int, hold_id: int) -> dict[str, Any] | None:
        rows, _ = self.query(
            "SELECT * FROM legal_holds WHERE id = :id AND company_id = :company_id",
            {"id": hold_id, "company_id": company_id},
        )
        return rows[0] if rows else None

    def insert_legal_hold(self, values: Mapping[str, Any]) -> int:
        _, meta = self.query(insert(LegalHold.__table__).values(**values))
        return meta.insert_id

    def release_legal_hold(self, company_id: int, hold_id: int, empid: str, released_at: datetime) -> int:
        table = LegalHold.__table__
        _, meta = self.query(
            update(table)
            .where(
                table.c.id == hold_id,
                table.c.company_id == company_id,
                table.c.status == HoldStatus.ACTIVE.value,
            )
            .values(status=HoldStatus.RELEASED.value, released_at=released_at, released_by_empid=empid)
        )
        return meta.rowcount

    # -------------------------------------------------------------------------
    # Purge runs
    # -------------------------------------------------------------------------

    def insert_purge_run(self, values: Mapping[str, Any]) -> None:
        self.query(insert(MessagePurgeRun.__table__).values(**values))

    def complete_purge_run(self, purge_run_id: str, action_count: int, completed_at: datetime) -> None:
        table = MessagePurgeRun.__table__
        self.query(
            update(table)
            .where(table.c.purge_run_id == purge_run_id)
            .values(action_count=action_count, completed_at=completed_at)
        )

    def insert_custody_records(self, records: Sequence[Mapping[str, Any]]) -> None:
        if records:
            self.query(insert(ChainOfCustodyRecord.__table__), list(records))

    def list_custody_records(self, purge_run_id: str) -> list[dict[str, Any]]:
        rows, _ = self.query(
            "SELECT * FROM message_chain_of_custody WHERE purge_run_id = :purge_run_id ORDER BY sequence ASC",
            {"purge_run_id": purge_run_id},
        )
        return rows

    def insert_certificate(self, values: Mapping[str, Any]) -> None:
        self.query(insert(DeletionCertificate.__table__).values(**values))

    def find_certificate(self, company_id: int, purge_run_id: str) -> dict[str, Any] | None:
        rows, _ = self.query(
            "SELECT * FROM message_deletion_certificates "
            "WHERE purge_run_id = :purge_run_id AND company_id = :company_id",
            {"purge_run_id": purge_run_id, "company_id": company_id},
        )
        return rows[0] if rows else None

    # -------------------------------------------------------------------------
    # Audit
    # -------------------------------------------------------------------------

    def insert_security_event(self, values: Mapping[str, Any]) -> None:
        self.query(insert(MessagingSecurityEvent.__table__).values(**values))

    def insert_abuse_event(self, values: Mapping[str, Any]) -> None:
        self.query(insert(MessagingAbuseEvent.__table__).values(**values))

    def list_security_events(self, company_id: int) -> list[dict[str, Any]]:
        table = MessagingSecurityEvent.__table__
        rows, _ = self.query(
            select(table).where(table.c.company_id == company_id).order_by(table.c.id)
        )
        return rows
