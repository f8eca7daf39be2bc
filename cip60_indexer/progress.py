"""One-way sync progress notifications for dashboards."""

from typing import Any, Callable, Dict, List, Optional

import websockets

from .util import json_dumps, log


ProgressCallback = Callable[[Dict[str, Any]], None]


class ProgressFeed:
    def __init__(self) -> None:
        self._subscribers: List[ProgressCallback] = []

    def subscribe(self, callback: ProgressCallback) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, current_slot: int, network_tip: int) -> None:
        if not self._subscribers:
            return
        update = {"currentSlot": current_slot, "networkTip": network_tip}
        for callback in list(self._subscribers):
            try:
                callback(update)
            except Exception as exc:
                log(f"WARN: progress subscriber failed: {exc}")


class ProgressServer:
    """Websocket endpoint that relays every progress update to connected dashboards."""

    def __init__(self, feed: ProgressFeed, host: str = "0.0.0.0", port: int = 3001):
        self.feed = feed
        self.host = host
        self.port = port
        self.clients = set()
        self._server = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    async def start(self) -> None:
        self._server = await websockets.serve(self._handle_client, self.host, self.port)
        self._unsubscribe = self.feed.subscribe(self._broadcast)
        log(f"Progress server listening on {self.host}:{self.port}")

    async def _handle_client(self, ws) -> None:
        self.clients.add(ws)
        try:
            await ws.wait_closed()
        finally:
            self.clients.discard(ws)

    def _broadcast(self, update: Dict[str, Any]) -> None:
        if self.clients:
            websockets.broadcast(self.clients, json_dumps({"type": "progress", "data": update}))

    async def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
            log("Progress server closed")
