"""Resume cursor and the find-intersection handshake."""

import asyncio
import enum
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List

from .errors import IntersectionNotFound, RemoteError, RequestTimeout
from .protocol import FIND_INTERSECTION, ProtocolClient
from .util import log, normalize_hash, parse_int


FIND_INTERSECTION_ID = "find-intersection"


@dataclass(frozen=True)
class Cursor:
    slot: int
    block_hash: str

    def as_point(self) -> Dict[str, Any]:
        return {"slot": self.slot, "id": self.block_hash}


# Mainnet hard-fork transition points
ERA_BOUNDARIES = (
    Cursor(4492799, "f8084c61b6a238acec985b59310b6ecec49c0ab8352249afd7268da5cff2a457"),
    Cursor(16588737, "4e9bbbb67e3ae262133d94c3da5bffce7b1127fc436e7433b87668dba34c354a"),
    Cursor(23068793, "69c44ac1dda2ec74646e4223bc804d9126f719b1c245dadc2ad65e8de1b276d7"),
    Cursor(39916796, "e72579ff89dc9ed325b723a33624b596c08141c7bd573ecfff56a1f7229e4d09"),
    Cursor(72316796, "c58a24ba8203e7629422a24d9dc68ce2ed495420bf40d9dab124373655161a20"),
    Cursor(133660799, "e757d57eb8dc9500a61c60a39fadb63d9be6973ba96ae337fd24453d4d15c343"),
)

FALLBACK_CURSOR = Cursor(52876752, "af192981f47a4150b4d4f96e2184050699febbbc31de18c3815bb5f338578ff6")


def cursor_from_point(point: Any) -> Cursor:
    if not isinstance(point, dict):
        raise ValueError(f"start point must be an object with slot and id, got {point!r}")
    return Cursor(parse_int(point["slot"]), normalize_hash(point["id"]))


def build_intersection_points(
    cursor: Cursor, boundaries: Iterable[Cursor] = ERA_BOUNDARIES
) -> List[Dict[str, Any]]:
    points = [cursor] + [b for b in boundaries if b.slot < cursor.slot]
    points.sort(key=lambda p: p.slot, reverse=True)
    return [p.as_point() for p in points]


class ResumeCursor:
    """Newest fully processed block, plus the slot of the last durable checkpoint."""

    def __init__(self, start: Cursor):
        self.current = start
        self.durable_slot = start.slot

    @property
    def ahead_of_checkpoint(self) -> bool:
        return self.current.slot > self.durable_slot

    def advance(self, slot: int, block_hash: str) -> bool:
        if slot <= self.current.slot:
            return False
        self.current = Cursor(slot, block_hash)
        return True

    def checkpoint_due(self, interval: int) -> bool:
        if interval <= 0:
            return self.ahead_of_checkpoint
        return self.current.slot // interval > self.durable_slot // interval

    def mark_durable(self, cursor: Cursor) -> None:
        if cursor.slot > self.durable_slot:
            self.durable_slot = cursor.slot


class SyncState(enum.Enum):
    IDLE = "idle"
    NEGOTIATING = "negotiating"
    SYNCED = "synced"


class IntersectionNegotiator:
    def __init__(
        self,
        cursor: ResumeCursor,
        boundaries: Iterable[Cursor] = ERA_BOUNDARIES,
        retries: int = 3,
        retry_delay: float = 5.0,
    ):
        self.cursor = cursor
        self.boundaries = tuple(boundaries)
        self.retries = retries
        self.retry_delay = retry_delay
        self.state = SyncState.IDLE

    def reset(self) -> None:
        self.state = SyncState.IDLE

    async def negotiate(self, client: ProtocolClient) -> Any:
        self.state = SyncState.NEGOTIATING
        attempt = 0
        while True:
            points = build_intersection_points(self.cursor.current, self.boundaries)
            log(f"Starting chain sync with {len(points)} points, latest slot: {points[0]['slot']}")
            # each retry gets its own id so a late reply to an abandoned attempt is dropped as unmatched
            request_id = FIND_INTERSECTION_ID if attempt == 0 else f"{FIND_INTERSECTION_ID}-retry-{attempt}"
            try:
                result = await client.request(FIND_INTERSECTION, {"points": points}, request_id=request_id)
            except (RemoteError, RequestTimeout) as exc:
                if attempt >= self.retries:
                    self.state = SyncState.IDLE
                    raise IntersectionNotFound(
                        f"no intersection after {attempt + 1} attempts: {exc}"
                    ) from exc
                attempt += 1
                log(f"WARN: find intersection failed ({exc}), retrying in {self.retry_delay}s ({attempt}/{self.retries})")
                await asyncio.sleep(self.retry_delay)
                continue
            self.state = SyncState.SYNCED
            intersection = result.get("intersection") if isinstance(result, dict) else result
            log(f"Intersection found: {intersection}")
            return intersection
