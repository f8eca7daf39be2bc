"""JSON-RPC request/response correlation over the supervised websocket."""

import asyncio
import json
from typing import Any, Dict, Optional

from .connection import ConnectionSupervisor
from .errors import ConnectionLost, DuplicateRequestId, MalformedResponse, RemoteError, RequestTimeout
from .util import debug, json_dumps, log


QUERY_HEIGHT = "queryNetwork/blockHeight"
FIND_INTERSECTION = "findIntersection"
NEXT_BLOCK = "nextBlock"

_DEFAULT = object()


class ProtocolClient:
    def __init__(self, supervisor: ConnectionSupervisor, request_timeout: float = 10.0):
        self.supervisor = supervisor
        self.request_timeout = request_timeout
        self._pending: Dict[Any, asyncio.Future] = {}
        self._delivered = set()
        self._reader: Optional[asyncio.Task] = None
        self._ws_id = 0

    @property
    def pending_ids(self):
        return list(self._pending)

    @property
    def response_ready(self) -> bool:
        """True while a response has arrived but its requester has not resumed yet."""
        return bool(self._delivered)

    def next_id(self, prefix: str = "next-block") -> str:
        self._ws_id += 1
        return f"{prefix}-{self._ws_id}"

    def start(self) -> None:
        if self._reader is not None and not self._reader.done():
            return
        self._reader = asyncio.create_task(self._read_loop())

    async def stop(self) -> None:
        reader = self._reader
        self._reader = None
        if reader is not None and not reader.done():
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)
        self._fail_pending(ConnectionLost("protocol client stopped"))

    async def request(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
        timeout: Any = _DEFAULT,
    ) -> Any:
        """Send one request and wait for the response echoing its id.

        ``timeout=None`` waits until the response arrives or the connection
        drops, which is what the long-polling ``nextBlock`` needs.
        """
        if request_id is None:
            request_id = self.next_id(method.replace("/", "-"))
        if timeout is _DEFAULT:
            timeout = self.request_timeout
        if request_id in self._pending:
            raise DuplicateRequestId(f"request id {request_id!r} is already awaiting a response")

        fut = asyncio.get_running_loop().create_future()
        self._pending[request_id] = fut
        payload = {"jsonrpc": "2.0", "method": method, "params": params or {}, "id": request_id}
        try:
            await self.supervisor.send(json_dumps(payload))
            if timeout is None:
                envelope = await fut
            else:
                envelope = await asyncio.wait_for(fut, timeout)
        except asyncio.TimeoutError:
            raise RequestTimeout(method, request_id, timeout) from None
        finally:
            self._delivered.discard(request_id)
            if self._pending.get(request_id) is fut:
                del self._pending[request_id]

        if envelope.get("error") is not None:
            raise RemoteError(method, envelope["error"])
        return envelope.get("result")

    def dispatch(self, message: Any) -> None:
        try:
            data = json.loads(message)
        except (TypeError, ValueError, RecursionError) as exc:
            self._fail_unparseable(exc)
            return
        if not isinstance(data, dict):
            log(f"WARN: dropping non-object message: {str(data)[:200]}")
            return
        request_id = data.get("id")
        fut = None
        if isinstance(request_id, (str, int)):
            fut = self._pending.pop(request_id, None)
        if fut is None or fut.done():
            log(f"WARN: dropping unmatched response id={request_id!r}")
            return
        debug(f"Received response {request_id}, has result: {'result' in data}")
        fut.set_result(data)
        self._delivered.add(request_id)

    def _fail_unparseable(self, exc: Exception) -> None:
        # an unreadable reply carries no usable id; with one request in flight it can only be that one
        if len(self._pending) == 1:
            request_id, fut = self._pending.popitem()
            if not fut.done():
                log(f"ERROR: unparseable response for {request_id}: {exc!r}")
                fut.set_exception(MalformedResponse(f"unparseable response for {request_id}: {exc!r}"))
                return
        log(f"WARN: dropping unparseable message: {exc!r}")

    def _fail_pending(self, exc: Exception) -> None:
        pending = list(self._pending.values())
        self._pending.clear()
        for fut in pending:
            if not fut.done():
                fut.set_exception(exc)

    async def _read_loop(self) -> None:
        reason: Exception = ConnectionLost("connection closed")
        try:
            async for message in self.supervisor.messages():
                self.dispatch(message)
        except ConnectionError as exc:
            reason = exc if isinstance(exc, ConnectionLost) else ConnectionLost(str(exc))
        finally:
            self._fail_pending(reason)
