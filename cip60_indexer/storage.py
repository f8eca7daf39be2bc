import asyncio
import datetime
import sqlite3
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .cursor import Cursor
from .errors import StorageError
from .util import log


@dataclass(frozen=True)
class AssetRecord:
    policy_id: str
    asset_name: str
    metadata_version: str
    metadata_json: str


def _utc_now() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


class AssetStore:
    def __init__(self, db_path: str):
        self.db_path = db_path
        self.conn: Optional[sqlite3.Connection] = None
        self.db_lock = asyncio.Lock()

    async def open(self, create_schema: bool = True) -> None:
        try:
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            self.conn.execute("SELECT 1").fetchone()
            if create_schema:
                self._create_schema()
        except sqlite3.Error as exc:
            raise StorageError(f"cannot open database {self.db_path}: {exc}") from exc

    def _create_schema(self) -> None:
        cur = self.conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS indexer_state (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                last_slot INTEGER NOT NULL,
                last_block_hash TEXT NOT NULL,
                updated_at TIMESTAMP NOT NULL
            )
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_indexer_state_updated ON indexer_state(updated_at)")
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS assets (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                policy_id TEXT NOT NULL,
                asset_name TEXT NOT NULL,
                metadata_version TEXT,
                metadata_json TEXT,
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL,
                UNIQUE(policy_id, asset_name)
            )
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_assets_policy ON assets(policy_id)")
        self.conn.commit()

    def _require(self) -> sqlite3.Connection:
        if not self.conn:
            raise StorageError("DB not initialized")
        return self.conn

    async def close(self) -> None:
        async with self.db_lock:
            if self.conn is not None:
                self.conn.close()
                self.conn = None
                log("Database closed")

    async def upsert(self, record: AssetRecord) -> str:
        """Insert the asset, or overwrite its metadata if the natural key exists.

        Returns ``"inserted"`` or ``"updated"``.
        """
        async with self.db_lock:
            conn = self._require()
            now = _utc_now()
            try:
                try:
                    conn.execute(
                        """
                        INSERT INTO assets (
                            policy_id, asset_name, metadata_version, metadata_json, created_at, updated_at
                        ) VALUES (?, ?, ?, ?, ?, ?)
                        """,
                        (
                            record.policy_id,
                            record.asset_name,
                            record.metadata_version,
                            record.metadata_json,
                            now,
                            now,
                        ),
                    )
                    outcome = "inserted"
                except sqlite3.IntegrityError:
                    conn.execute(
                        """
                        UPDATE assets
                        SET metadata_version = ?, metadata_json = ?, updated_at = ?
                        WHERE policy_id = ? AND asset_name = ?
                        """,
                        (
                            record.metadata_version,
                            record.metadata_json,
                            now,
                            record.policy_id,
                            record.asset_name,
                        ),
                    )
                    outcome = "updated"
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                raise StorageError(
                    f"failed to store asset {record.policy_id}.{record.asset_name}: {exc}"
                ) from exc
            return outcome

    async def checkpoint(self, cursor: Cursor) -> None:
        async with self.db_lock:
            conn = self._require()
            try:
                conn.execute(
                    "INSERT INTO indexer_state (last_slot, last_block_hash, updated_at) VALUES (?, ?, ?)",
                    (cursor.slot, cursor.block_hash, _utc_now()),
                )
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                raise StorageError(f"failed to save state at slot {cursor.slot}: {exc}") from exc
        log(f"Saved state: Slot {cursor.slot}, Hash {cursor.block_hash}")

    async def load_state(self) -> Optional[Dict[str, Any]]:
        async with self.db_lock:
            conn = self._require()
            try:
                row = conn.execute(
                    """
                    SELECT last_slot, last_block_hash, updated_at
                    FROM indexer_state
                    ORDER BY updated_at DESC, id DESC
                    LIMIT 1
                    """
                ).fetchone()
            except sqlite3.Error as exc:
                raise StorageError(f"failed to load state: {exc}") from exc
        if row is None:
            return None
        return {
            "slot": int(row["last_slot"]),
            "hash": row["last_block_hash"],
            "updated_at": row["updated_at"],
        }

    async def load_cursor(self) -> Optional[Cursor]:
        state = await self.load_state()
        if state is None:
            return None
        return Cursor(state["slot"], state["hash"])

    async def get_asset(self, policy_id: str, asset_name: str) -> Optional[Dict[str, Any]]:
        async with self.db_lock:
            row = self._require().execute(
                """
                SELECT policy_id, asset_name, metadata_version, metadata_json, created_at, updated_at
                FROM assets WHERE policy_id = ? AND asset_name = ?
                """,
                (policy_id, asset_name),
            ).fetchone()
        return dict(row) if row else None

    async def list_assets(self, policy_id: Optional[str] = None, limit: int = 200) -> List[Dict[str, Any]]:
        params: List[Any] = []
        where = ""
        if policy_id:
            where = "WHERE policy_id = ?"
            params.append(policy_id)
        params.append(limit)
        async with self.db_lock:
            rows = self._require().execute(
                "SELECT policy_id, asset_name, metadata_version, metadata_json, created_at, updated_at "
                f"FROM assets {where} ORDER BY updated_at DESC, id DESC LIMIT ?",
                params,
            ).fetchall()
        return [dict(row) for row in rows]

    async def count_assets(self) -> int:
        async with self.db_lock:
            row = self._require().execute("SELECT COUNT(*) AS n FROM assets").fetchone()
        return int(row["n"])
