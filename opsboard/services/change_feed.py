"""
Collection change feed.
WebSocket clients subscribe to collections and receive an event each time a
record in one of them is created, updated or deleted.
"""
import asyncio
from typing import Any, Dict, Iterable, Optional, Set

import anyio
import structlog
from fastapi import WebSocket

logger = structlog.get_logger(__name__)

COLLECTIONS = {
    "bookings",
    "deleted_bookings",
    "employees",
    "holidays",
    "bank_holidays",
    "notes",
    "vehicles",
    "equipment",
    "maintenance_bookings",
    "vehicle_checks",
    "timesheets",
    "sick_leave",
    "users",
}


class ChangeHub:
    def __init__(self) -> None:
        # collection -> set of WebSocket connections
        self._subscribers: Dict[str, Set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def subscribe(self, ws: WebSocket, collections: Iterable[str]) -> None:
        async with self._lock:
            for name in collections:
                self._subscribers.setdefault(name, set()).add(ws)

    async def unsubscribe(self, ws: WebSocket) -> None:
        async with self._lock:
            for name in list(self._subscribers):
                conns = self._subscribers[name]
                conns.discard(ws)
                if not conns:
                    self._subscribers.pop(name, None)

    def subscriber_count(self, collection: str) -> int:
        return len(self._subscribers.get(collection, ()))

    async def publish(self, collection: str, payload: Any) -> None:
        data = {"event": "change", "data": payload}
        async with self._lock:
            targets = list(self._subscribers.get(collection, set()))
        dead = []
        for ws in targets:
            try:
                await ws.send_json(data)
            except Exception as e:
                logger.info("change_feed_send_failed", collection=collection, error=str(e))
                dead.append(ws)
        for ws in dead:
            await self.unsubscribe(ws)


# Global singleton hub
hub = ChangeHub()


def publish_change(collection: str, action: str, doc_id: Any, doc: Optional[dict] = None) -> None:
    """
    Broadcast a change from a sync route handler (runs in the worker thread pool).
    Outside a worker thread there is no event loop to hand off to; the event is logged and dropped.
    """
    payload = {"collection": collection, "action": action, "id": str(doc_id), "doc": doc}

    async def _publish():
        await hub.publish(collection, payload)

    try:
        anyio.from_thread.run(_publish)
    except RuntimeError:
        logger.debug("change_feed_no_event_loop", collection=collection, action=action, id=str(doc_id))
