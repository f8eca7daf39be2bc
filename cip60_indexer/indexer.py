import asyncio
from typing import Any, Dict, Optional

from .blocks import BlockProcessor
from .connection import Backoff, ConnectionSupervisor
from .cursor import FALLBACK_CURSOR, IntersectionNegotiator, ResumeCursor, cursor_from_point
from .errors import MalformedResponse, StartupError, StorageError
from .progress import ProgressFeed, ProgressServer
from .protocol import NEXT_BLOCK, QUERY_HEIGHT, ProtocolClient
from .storage import AssetStore
from .util import log


QUERY_HEIGHT_ID = "query-height"


class MusicTokenIndexer:
    def __init__(self, config: Dict[str, Any], store: Optional[AssetStore] = None,
                 supervisor: Optional[ConnectionSupervisor] = None):
        self.config = config
        self.request_timeout = float(config.get("request_timeout", 10.0))
        self.checkpoint_interval = int(config.get("checkpoint_interval", 1_000_000))
        self.shutdown_grace = float(config.get("shutdown_grace", 30.0))

        self.store = store or AssetStore(config.get("db_path", "./cip60.db"))
        self.supervisor = supervisor or ConnectionSupervisor(
            config.get("ogmios_url", "ws://localhost:1337"),
            open_timeout=float(config.get("open_timeout", 10.0)),
            backoff=Backoff(
                float(config.get("reconnect_base", 1.0)),
                float(config.get("reconnect_factor", 2.0)),
                float(config.get("reconnect_max", 60.0)),
            ),
        )
        self.client = ProtocolClient(self.supervisor, self.request_timeout)
        self.progress = ProgressFeed()
        self.progress_server: Optional[ProgressServer] = None

        self.cursor: Optional[ResumeCursor] = None
        self.negotiator: Optional[IntersectionNegotiator] = None
        self.processor: Optional[BlockProcessor] = None
        self.network_height: Optional[int] = None

        self._stopping = asyncio.Event()
        self._processing = False
        self._run_task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        try:
            await self.store.open()
            durable = await self.store.load_cursor()
        except StorageError as exc:
            log(f"CRITICAL: Cannot connect to database: {exc}")
            raise StartupError(str(exc)) from exc

        if durable is not None:
            start = durable
            log(f"Loaded last state from database - Slot: {start.slot}, Hash: {start.block_hash}")
        elif self.config.get("start_point"):
            start = cursor_from_point(self.config["start_point"])
            log(f"No previous state found in database, starting from configured point {start.slot}")
        else:
            start = FALLBACK_CURSOR
            log("No previous state found in database, using Allegra as starting point")

        self.cursor = ResumeCursor(start)
        self.negotiator = IntersectionNegotiator(
            self.cursor,
            retries=int(self.config.get("intersection_retries", 3)),
            retry_delay=float(self.config.get("intersection_retry_delay", 5.0)),
        )
        self.processor = BlockProcessor(self.store, self.cursor, self.progress, self.checkpoint_interval)

        if self.config.get("health_check", True):
            healthy = await self.supervisor.check_health(float(self.config.get("health_check_timeout", 5.0)))
            if not healthy:
                raise StartupError(f"Ogmios endpoint {self.supervisor.url} is not reachable")

        port = self.config.get("progress_port")
        if port:
            self.progress_server = ProgressServer(
                self.progress, self.config.get("progress_host", "0.0.0.0"), int(port)
            )
            try:
                await self.progress_server.start()
            except OSError as exc:
                self.progress_server = None
                raise StartupError(f"cannot start progress server on port {port}: {exc}") from exc

    async def run(self) -> None:
        if self.processor is None:
            raise RuntimeError("start() must complete before run()")
        self._run_task = asyncio.current_task()
        while not self._stopping.is_set():
            try:
                await self._session()
            except Exception as exc:
                log(f"ERROR: Chain sync interrupted: {exc!r}")
            finally:
                await self._teardown()
            if self._stopping.is_set():
                break
            self.supervisor.schedule_reconnect()
            await self.supervisor.wait_for_reconnect()

    async def _session(self) -> None:
        await self.supervisor.connect()
        self.client.start()

        self.network_height = await self.client.request(QUERY_HEIGHT, request_id=QUERY_HEIGHT_ID)
        log(f"Network block height: {self.network_height}")

        await self.negotiator.negotiate(self.client)

        # one nextBlock in flight at a time; the next is only asked for once this block is stored
        while not self._stopping.is_set():
            try:
                result = await self.client.request(NEXT_BLOCK, request_id=self.client.next_id(), timeout=None)
            except MalformedResponse as exc:
                # the node has already moved past this block
                log(f"ERROR: Skipping unreadable block: {exc}")
                continue
            self._processing = True
            try:
                await self.processor.process(result)
            finally:
                self._processing = False

    async def _teardown(self) -> None:
        await self.client.stop()
        await self.supervisor.close()
        if self.negotiator is not None:
            self.negotiator.reset()

    async def _drain(self) -> None:
        task = self._run_task
        if task is None or task.done():
            return
        # a block being written, or one whose response already arrived, is finished first
        if not self._processing and not self.client.response_ready:
            task.cancel()
        await asyncio.wait({task})

    async def stop(self) -> bool:
        """Stop streaming, persist the cursor and release resources.

        Returns False if the drain exceeded the shutdown grace period.
        """
        log("Stopping indexer")
        self._stopping.set()
        self.supervisor.cancel_reconnect()

        clean = True
        try:
            await asyncio.wait_for(self._drain(), self.shutdown_grace)
        except asyncio.TimeoutError:
            log("CRITICAL: Forcing stop after shutdown grace period")
            clean = False
            if self._run_task is not None:
                self._run_task.cancel()
                await asyncio.wait({self._run_task})

        if self.cursor is not None and self.cursor.ahead_of_checkpoint:
            try:
                await self.store.checkpoint(self.cursor.current)
                self.cursor.mark_durable(self.cursor.current)
            except StorageError as exc:
                log(f"ERROR: Error saving final state: {exc}")
                clean = False

        await self._teardown()
        if self.progress_server is not None:
            await self.progress_server.close()
        await self.store.close()
        log("Indexer stopped")
        return clean
