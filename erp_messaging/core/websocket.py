"""
WebSocket connection manager for realtime messaging fanout.

Tracks active WebSocket connections per employee and company, and exposes
the room(company_id).emit(event, payload) capability the messaging
service publishes to. Emits may come from worker threads (sync endpoints),
so they are scheduled onto the event loop that accepted the connections.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Set, Tuple

from fastapi import WebSocket

from erp_messaging.core import metrics
from erp_messaging.core.errors import TransportError

logger = logging.getLogger(__name__)

ConnectionKey = Tuple[int, str]


def room_name(company_id: int) -> str:
    return f"company:{company_id}"


class CompanyRoom:
    """Emitter bound to one company room."""

    def __init__(self, manager: "ConnectionManager", company_id: int):
        self.manager = manager
        self.company_id = company_id
        self.name = room_name(company_id)

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        """Queue delivery to the room. Raises TransportError when the send cannot be scheduled."""
        coro = self.manager.send_to_company(self.company_id, {"event": event, "room": self.name, "payload": payload})
        try:
            self.manager.schedule(coro)
        except Exception as exc:
            coro.close()
            raise TransportError(f"Could not schedule {event} for {self.name}: {exc}") from exc


class ConnectionManager:
    """Manages WebSocket connections per (company, employee)."""

    def __init__(self):
        # (company_id, empid) -> set of active WebSocket connections
        self._connections: Dict[ConnectionKey, Set[WebSocket]] = {}
        self._lock = asyncio.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None

    def room(self, company_id: int) -> CompanyRoom:
        return CompanyRoom(self, company_id)

    def schedule(self, coro) -> None:
        """Run coro on the manager's loop without waiting for it."""
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is not None:
            running.create_task(coro)
        elif self._loop is not None and self._loop.is_running():
            asyncio.run_coroutine_threadsafe(coro, self._loop)
        else:
            # No connections were ever accepted; nobody to deliver to.
            coro.close()

    async def connect(self, websocket: WebSocket, company_id: int, empid: str) -> None:
        """Accept and register a new WebSocket connection."""
        await websocket.accept()
        self._loop = asyncio.get_running_loop()
        async with self._lock:
            self._connections.setdefault((company_id, empid), set()).add(websocket)
        metrics.WEBSOCKET_CONNECTIONS.inc()

    async def disconnect(self, websocket: WebSocket, company_id: int, empid: str) -> None:
        """Remove a WebSocket connection."""
        async with self._lock:
            key = (company_id, empid)
            if key in self._connections and websocket in self._connections[key]:
                self._connections[key].discard(websocket)
                metrics.WEBSOCKET_CONNECTIONS.dec()
                if not self._connections[key]:
                    del self._connections[key]

    async def send_to_company(self, company_id: int, message: dict) -> None:
        """Send a message to every connection in a company room."""
        async with self._lock:
            targets = [
                (key, ws)
                for key, sockets in self._connections.items()
                if key[0] == company_id
                for ws in sockets
            ]
        if not targets:
            return

        data = json.dumps(message, default=str)
        closed = []
        for key, ws in targets:
            try:
                await ws.send_text(data)
            except Exception as exc:
                # Connection closed or errored
                logger.debug("Dropping websocket company_id=%s empid=%s error=%s", key[0], key[1], exc)
                closed.append((key, ws))

        if closed:
            async with self._lock:
                for key, ws in closed:
                    sockets = self._connections.get(key)
                    if sockets and ws in sockets:
                        sockets.discard(ws)
                        metrics.WEBSOCKET_CONNECTIONS.dec()
                        if not sockets:
                            del self._connections[key]

    def get_company_empids(self, company_id: int) -> list[str]:
        """Get all connected employee ids for a company."""
        return sorted(empid for (cid, empid) in self._connections if cid == company_id)

    def get_total_connections(self) -> int:
        """Get total number of active connections."""
        return sum(len(conns) for conns in self._connections.values())
