"""Scan fetched blocks for CIP-60 payloads and hand them to storage."""

from typing import Any, Dict, Iterator, List, Optional, Tuple

from .cursor import Cursor, ResumeCursor
from .errors import StorageError
from .normalizer import VERSION_MARKER, normalize
from .progress import ProgressFeed
from .storage import AssetRecord, AssetStore
from .util import debug, json_dumps, log, normalize_hash, parse_int, short_id


ASSET_LABEL = "721"
LABEL_WRAPPER = "json"


def find_tagged_payloads(tree: Any) -> Iterator[Tuple[List[str], Dict[str, Any]]]:
    """Depth-first walk yielding ``(path, subtree)`` for every subtree carrying the version marker.

    Descent stops at a tagged subtree, so markers nested inside one are not reported.
    """
    stack: List[Tuple[List[str], Any]] = [([], tree)]
    while stack:
        path, node = stack.pop()
        if isinstance(node, dict):
            if VERSION_MARKER in node:
                yield path, node
                continue
            children = [(path + [str(key)], value) for key, value in node.items()]
        elif isinstance(node, list):
            children = [(path + [str(index)], value) for index, value in enumerate(node)]
        else:
            continue
        stack.extend(reversed(children))


def asset_key(path: List[str]) -> Optional[Tuple[str, str]]:
    if ASSET_LABEL not in path:
        return None
    rest = path[path.index(ASSET_LABEL) + 1:]
    if rest and rest[0] == LABEL_WRAPPER:
        rest = rest[1:]
    if len(rest) < 2:
        return None
    return rest[0], rest[1]


def build_record(policy_id: str, asset_name: str, payload: Dict[str, Any]) -> Optional[AssetRecord]:
    document = normalize(payload)
    if document is None:
        return None
    return AssetRecord(
        policy_id=policy_id,
        asset_name=asset_name,
        metadata_version=str(payload.get(VERSION_MARKER)),
        metadata_json=json_dumps(document),
    )


class BlockProcessor:
    def __init__(
        self,
        store: AssetStore,
        cursor: ResumeCursor,
        progress: Optional[ProgressFeed] = None,
        checkpoint_interval: int = 1_000_000,
    ):
        self.store = store
        self.cursor = cursor
        self.progress = progress or ProgressFeed()
        self.checkpoint_interval = checkpoint_interval
        self.assets_seen = 0

    def _records(self, block: Dict[str, Any]) -> List[AssetRecord]:
        records = []
        for tx in block.get("transactions") or []:
            if not isinstance(tx, dict) or not tx.get("metadata"):
                continue
            try:
                tagged = list(find_tagged_payloads(tx["metadata"]))
            except Exception as exc:
                log(f"ERROR: Error scanning transaction metadata: {exc!r}")
                continue
            for path, payload in tagged:
                try:
                    key = asset_key(path)
                    if key is None:
                        debug(f"Ignoring tagged payload outside a {ASSET_LABEL} asset path: {path}")
                        continue
                    record = build_record(key[0], key[1], payload)
                except Exception as exc:
                    log(f"ERROR: Error processing metadata at {path}: {exc}")
                    continue
                if record is not None:
                    records.append(record)
        return records

    async def process(self, result: Any) -> Optional[Cursor]:
        """Handle one ``nextBlock`` result and return the new cursor, if it moved.

        Malformed blocks and payloads are logged and skipped. ``StorageError``
        propagates and leaves the cursor where it was.
        """
        if not isinstance(result, dict):
            debug("Received non-object block data, skipping")
            return None
        if result.get("direction") == "backward":
            debug(f"Roll backward to {result.get('point')}")
            return None

        block = result.get("block") or result
        if not isinstance(block, dict) or block.get("slot") is None or not block.get("id"):
            debug("Skipping block without required slot/id properties")
            return None
        try:
            slot = parse_int(block["slot"])
            block_hash = normalize_hash(block["id"])
        except (TypeError, ValueError) as exc:
            log(f"ERROR: Invalid block header received: {exc}")
            return None

        for record in self._records(block):
            try:
                await self.store.upsert(record)
            except StorageError:
                log(f"ERROR: storage failed in block {slot}, cursor stays at {self.cursor.current.slot}")
                raise
            self.assets_seen += 1
            log(
                f"Found CIP-60 Music Token: {short_id(record.policy_id)} - "
                f"{record.asset_name} (v{record.metadata_version})"
            )

        moved = self.cursor.advance(slot, block_hash)
        if moved and self.cursor.checkpoint_due(self.checkpoint_interval):
            try:
                await self.store.checkpoint(self.cursor.current)
                self.cursor.mark_durable(self.cursor.current)
            except StorageError as exc:
                log(f"ERROR: Error saving periodic state: {exc}")

        self._report_progress(slot, result.get("tip"))
        return self.cursor.current if moved else None

    def _report_progress(self, slot: int, tip: Any) -> None:
        if not isinstance(tip, dict):
            return
        try:
            tip_slot = parse_int(tip.get("slot"))
        except (TypeError, ValueError):
            return
        if tip_slot > 0:
            debug(f"Sync progress: {slot / tip_slot * 100:.2f}% ({slot}/{tip_slot})")
        self.progress.publish(slot, tip_slot)
