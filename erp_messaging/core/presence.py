"""Online-user tracking per company.

Owned by whoever builds the messaging service (the app at startup, a test
fixture) rather than living as a module singleton. Mutations are guarded
by a lock and broadcast best-effort; a failed broadcast never fails the
presence change itself.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Protocol

from erp_messaging.core.errors import TransportError
from erp_messaging.db.enums import MessagingEvent, PresenceStatus
from erp_messaging.utils.datetime_parsing import utcnow

logger = logging.getLogger(__name__)


class RoomEmitter(Protocol):
    def emit(self, event: str, payload: dict[str, Any]) -> None: ...


class RealtimeRooms(Protocol):
    """Realtime transport capability: room(company_id).emit(event, payload)."""

    def room(self, company_id: int) -> RoomEmitter: ...


def safe_emit(rooms: RealtimeRooms | None, company_id: int, event: str, payload: dict[str, Any]) -> bool:
    """Fire-and-forget emit. Returns False when the transport failed."""
    if rooms is None:
        return False
    try:
        rooms.room(company_id).emit(event, payload)
        return True
    except TransportError as exc:
        logger.warning("Realtime emit failed company_id=%s event=%s error=%s", company_id, event, exc)
        return False


class PresenceRegistry:
    """Concurrency-safe map of company_id -> {empid: last heartbeat status}."""

    def __init__(self, rooms: RealtimeRooms | None = None):
        self._online: dict[int, dict[str, str]] = {}
        self._lock = threading.Lock()
        self.rooms = rooms

    def mark_online(self, company_id: int, empid: str, status: str = PresenceStatus.ONLINE.value) -> bool:
        with self._lock:
            members = self._online.setdefault(company_id, {})
            changed = members.get(str(empid)) != status
            members[str(empid)] = status
        self._broadcast(company_id, empid, status)
        return changed

    def mark_offline(self, company_id: int, empid: str) -> bool:
        with self._lock:
            members = self._online.get(company_id)
            changed = bool(members) and str(empid) in members
            if members is not None:
                members.pop(str(empid), None)
                if not members:
                    del self._online[company_id]
        self._broadcast(company_id, empid, PresenceStatus.OFFLINE.value)
        return changed

    def list_online(self, company_id: int) -> list[str]:
        with self._lock:
            return sorted(self._online.get(company_id, {}))

    def status_of(self, company_id: int, empid: str) -> str:
        """Last heartbeat status, or offline."""
        with self._lock:
            return self._online.get(company_id, {}).get(str(empid), PresenceStatus.OFFLINE.value)

    def _broadcast(self, company_id: int, empid: str, status: str) -> None:
        safe_emit(
            self.rooms,
            company_id,
            MessagingEvent.PRESENCE_CHANGED.value,
            {"company_id": company_id, "empid": str(empid), "status": status, "at": utcnow().isoformat()},
        )
