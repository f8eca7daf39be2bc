"""Websocket lifecycle for the Ogmios endpoint: connect, health check, reconnect backoff, teardown."""

import asyncio
from typing import AsyncIterator, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.protocol import State

from .errors import ConnectFailed, ConnectionLost, ConnectionNotReady
from .util import debug, log


class Backoff:
    def __init__(self, base: float = 1.0, factor: float = 2.0, cap: float = 60.0):
        if base <= 0 or factor < 1 or cap < base:
            raise ValueError("backoff requires base > 0, factor >= 1 and cap >= base")
        self.base = base
        self.factor = factor
        self.cap = cap

    def delay(self, attempt: int) -> float:
        # float ** large int overflows; the cap is reached long before that
        try:
            raw = self.base * (self.factor ** attempt)
        except OverflowError:
            return self.cap
        return min(self.cap, raw)


class ConnectionSupervisor:
    """Owns the single live websocket. Nothing else keeps a reference to it."""

    def __init__(
        self,
        url: str,
        open_timeout: float = 10.0,
        backoff: Optional[Backoff] = None,
        ping_interval: Optional[float] = 20.0,
        ping_timeout: Optional[float] = 20.0,
    ):
        self.url = url
        self.open_timeout = open_timeout
        self.backoff = backoff or Backoff()
        self.ping_interval = ping_interval
        self.ping_timeout = ping_timeout
        self.attempt = 0

        self._ws = None
        self._reconnect_timer: Optional[asyncio.TimerHandle] = None
        self._reconnect_due = asyncio.Event()

    @property
    def connected(self) -> bool:
        return self._ws is not None and self._ws.state is State.OPEN

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_timer is not None

    async def _open(self, timeout: float):
        try:
            return await websockets.connect(
                self.url,
                open_timeout=timeout,
                ping_interval=self.ping_interval,
                ping_timeout=self.ping_timeout,
                max_size=None,
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            raise ConnectFailed(f"cannot connect to {self.url}: {exc!r}") from exc

    async def connect(self) -> None:
        await self.close()
        log(f"Connecting to Ogmios at {self.url}")
        self._ws = await self._open(self.open_timeout)
        self.attempt = 0
        log("Connected to Ogmios")

    async def check_health(self, timeout: float = 5.0) -> bool:
        try:
            ws = await self._open(timeout)
        except ConnectFailed as exc:
            log(f"ERROR: health check failed: {exc}")
            return False
        await ws.close()
        debug(f"Health check passed for {self.url}")
        return True

    async def send(self, message: str) -> None:
        ws = self._ws
        if ws is None or ws.state is not State.OPEN:
            raise ConnectionNotReady("websocket not open")
        try:
            await ws.send(message)
        except ConnectionClosed as exc:
            raise ConnectionLost(f"connection closed while sending: {exc}") from exc

    async def messages(self) -> AsyncIterator[str]:
        ws = self._ws
        if ws is None:
            raise ConnectionNotReady("websocket not open")
        try:
            async for message in ws:
                yield message
        except ConnectionClosed as exc:
            raise ConnectionLost(f"connection closed: {exc}") from exc

    async def close(self) -> None:
        ws = self._ws
        self._ws = None
        if ws is not None:
            await ws.close()
            log("WARN: Ogmios connection closed")

    def schedule_reconnect(self) -> Optional[float]:
        if self._reconnect_timer is not None:
            return None
        delay = self.backoff.delay(self.attempt)
        self.attempt += 1
        log(f"Scheduling reconnect in {delay:.1f}s (attempt {self.attempt})")
        self._reconnect_due.clear()
        loop = asyncio.get_running_loop()
        self._reconnect_timer = loop.call_later(delay, self._reconnect_due.set)
        return delay

    async def wait_for_reconnect(self) -> None:
        await self._reconnect_due.wait()
        self._reconnect_due.clear()
        self._reconnect_timer = None

    def cancel_reconnect(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None
        self._reconnect_due.set()
