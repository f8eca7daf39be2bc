"""CIP-60 music token indexer.

Usage:
  cip60-indexer --config config.json run
  cip60-indexer --config config.json health
  cip60-indexer --config config.json state
  cip60-indexer --config config.json assets --policy <policy_id> [--asset <name>] [--limit 50]
"""

import argparse
import asyncio
import json
import signal
import sys
from typing import Any, Dict, Optional

from .config import load_config
from .connection import ConnectionSupervisor
from .errors import StartupError, StorageError
from .indexer import MusicTokenIndexer
from .storage import AssetStore
from .util import json_dumps, log, set_verbose


async def _run(cfg: Dict[str, Any]) -> int:
    indexer = MusicTokenIndexer(cfg)
    try:
        await indexer.start()
    except StartupError as exc:
        log(f"CRITICAL: Failed to start indexer: {exc}")
        await indexer.stop()
        return 1

    loop = asyncio.get_running_loop()
    stop_requested = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_requested.set)
        except NotImplementedError:
            pass

    run_task = asyncio.create_task(indexer.run())
    stop_task = asyncio.create_task(stop_requested.wait())
    await asyncio.wait({run_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
    if stop_requested.is_set():
        log("Received shutdown signal, starting graceful shutdown")
    stop_task.cancel()

    clean = await indexer.stop()
    if run_task.done() and not run_task.cancelled() and run_task.exception() is not None:
        log(f"CRITICAL: indexer loop failed: {run_task.exception()!r}")
        return 1
    return 0 if clean else 1


async def _health(cfg: Dict[str, Any]) -> int:
    supervisor = ConnectionSupervisor(cfg["ogmios_url"])
    healthy = await supervisor.check_health(float(cfg.get("health_check_timeout", 5.0)))
    print(json_dumps({"url": cfg["ogmios_url"], "healthy": healthy}))
    return 0 if healthy else 1


async def _state(cfg: Dict[str, Any]) -> int:
    store = AssetStore(cfg["db_path"])
    await store.open()
    try:
        state = await store.load_state()
        state = state or {}
        state["assets"] = await store.count_assets()
        print(json_dumps(state))
    finally:
        await store.close()
    return 0


def _decode_metadata(row: Dict[str, Any]) -> Dict[str, Any]:
    if row.get("metadata_json"):
        try:
            row["metadata_json"] = json.loads(row["metadata_json"])
        except json.JSONDecodeError:
            pass
    return row


async def _assets(cfg: Dict[str, Any], policy: Optional[str], asset: Optional[str], limit: int) -> int:
    store = AssetStore(cfg["db_path"])
    await store.open()
    try:
        if policy and asset:
            row = await store.get_asset(policy, asset)
            if row is None:
                log(f"ERROR: asset {policy}.{asset} not found")
                return 1
            print(json_dumps(_decode_metadata(row)))
        else:
            rows = await store.list_assets(policy, limit)
            print(json_dumps([_decode_metadata(row) for row in rows]))
    finally:
        await store.close()
    return 0


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="CIP-60 Music Token Indexer")
    parser.add_argument("--config", default="config.json", help="Path to config JSON")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("run", help="Start indexing")
    sub.add_parser("health", help="Check that the Ogmios endpoint accepts connections")
    sub.add_parser("state", help="Show the latest checkpoint")

    assets_parser = sub.add_parser("assets", help="Query stored assets")
    assets_parser.add_argument("--policy", type=str, default=None)
    assets_parser.add_argument("--asset", type=str, default=None)
    assets_parser.add_argument("--limit", type=int, default=200)

    args = parser.parse_args(argv)
    try:
        cfg = load_config(args.config)
    except (OSError, ValueError) as exc:
        log(f"CRITICAL: cannot load config {args.config}: {exc}")
        sys.exit(1)
    set_verbose(args.verbose or cfg.get("verbose"))

    try:
        if args.command == "run":
            code = asyncio.run(_run(cfg))
        elif args.command == "health":
            code = asyncio.run(_health(cfg))
        elif args.command == "state":
            code = asyncio.run(_state(cfg))
        else:
            code = asyncio.run(_assets(cfg, args.policy, args.asset, args.limit))
    except StorageError as exc:
        log(f"CRITICAL: {exc}")
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
