from __future__ import annotations

import asyncio
import logging

from fastapi import WebSocket

from sia.schemas.allocation import RunState

logger = logging.getLogger(__name__)


class RunStateHub:
    """Fans every RunState out to websocket clients and in-process subscribers."""

    def __init__(self) -> None:
        self._connections: set[WebSocket] = set()
        self._queues: set[asyncio.Queue[RunState]] = set()
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._connections.add(websocket)

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._connections.discard(websocket)

    def subscribe(self) -> asyncio.Queue[RunState]:
        queue: asyncio.Queue[RunState] = asyncio.Queue()
        self._queues.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[RunState]) -> None:
        self._queues.discard(queue)

    async def publish(self, state: RunState) -> None:
        for queue in list(self._queues):
            queue.put_nowait(state)

        async with self._lock:
            sockets = list(self._connections)

        if not sockets:
            return

        payload = {"event": "run.state", "state": state.model_dump(mode="json")}
        stale: list[WebSocket] = []
        for websocket in sockets:
            try:
                await websocket.send_json(payload)
            except Exception:  # pragma: no cover - network/runtime dependent
                stale.append(websocket)

        if stale:
            async with self._lock:
                for socket in stale:
                    self._connections.discard(socket)
            logger.debug("Removed %d stale run-state websocket(s)", len(stale))
