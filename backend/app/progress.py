"""Progress fan-out: WebSocket connections subscribe to a group, the pipeline publishes ticks to it.

Publishing is fire-and-forget. ``publish`` may be called from the event loop
or from worker threads; delivery always happens on the bound loop and any
failure is logged, never raised.
"""
import asyncio
import logging
import threading
import uuid
from typing import Any, Optional, Protocol

logger = logging.getLogger("converter.progress")

PROGRESS_EVENT = "progressTick"


class JsonSender(Protocol):
    async def send_json(self, data: Any) -> None: ...


class ProgressConnection:
    """A live client connection (normally a FastAPI ``WebSocket``) plus its id."""

    def __init__(self, sender: JsonSender, connection_id: Optional[str] = None):
        self.sender = sender
        self.connection_id = connection_id or str(uuid.uuid4())

    async def send(self, message: dict) -> None:
        await self.sender.send_json(message)


class ProgressChannel:
    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._groups: dict[str, set[str]] = {}
        self._connections: dict[str, ProgressConnection] = {}
        self._lock = threading.Lock()
        self._loop = loop
        self._pending: set[asyncio.Future] = set()

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def subscribe(self, connection: ProgressConnection, group_id: str) -> None:
        with self._lock:
            self._connections[connection.connection_id] = connection
            self._groups.setdefault(group_id, set()).add(connection.connection_id)
        logger.info("Connection %s joined group %s", connection.connection_id[:8], group_id)

    def unsubscribe(self, connection: ProgressConnection, group_id: Optional[str] = None) -> None:
        """Leave one group, or every group when ``group_id`` is None."""
        cid = connection.connection_id
        with self._lock:
            names = [group_id] if group_id is not None else list(self._groups)
            for name in names:
                members = self._groups.get(name)
                if members is None:
                    continue
                members.discard(cid)
                if not members:
                    del self._groups[name]
            if not any(cid in members for members in self._groups.values()):
                self._connections.pop(cid, None)

    def group_size(self, group_id: str) -> int:
        with self._lock:
            return len(self._groups.get(group_id, ()))

    def _members(self, group_id: str) -> list[ProgressConnection]:
        with self._lock:
            return [self._connections[cid] for cid in self._groups.get(group_id, ()) if cid in self._connections]

    def publish(self, group_id: str, percent: int) -> None:
        """Schedule delivery of one tick to every connection in the group and return immediately."""
        try:
            percent = max(0, min(100, int(percent)))
            targets = self._members(group_id)
            if not targets:
                logger.debug("No subscribers in group %s for %s%%", group_id, percent)
                return
            message = {"type": PROGRESS_EVENT, "groupId": group_id, "percent": percent}
            self._schedule(self._deliver(group_id, message, targets))
            logger.debug("Sending progress: %s%% to group %s", percent, group_id)
        except Exception:
            logger.exception("Failed to send progress: %s%% to group %s", percent, group_id)

    def _schedule(self, coro) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is not None:
            future = running.create_task(coro)
        elif self._loop is not None and self._loop.is_running():
            future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        else:
            coro.close()
            logger.warning("No running event loop; progress tick dropped")
            return
        self._pending.add(future)
        future.add_done_callback(self._pending.discard)

    async def _deliver(self, group_id: str, message: dict, targets: list[ProgressConnection]) -> None:
        for connection in targets:
            try:
                await connection.send(message)
            except Exception as e:
                logger.warning(
                    "Dropping connection %s from group %s after send failure: %s",
                    connection.connection_id[:8], group_id, e,
                )
                self.unsubscribe(connection)
