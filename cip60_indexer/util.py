import json
import sys
import time
from typing import Any

from hexbytes import HexBytes


_verbose = False


def set_verbose(enabled: bool) -> None:
    global _verbose
    _verbose = bool(enabled)


def log(msg: str) -> None:
    ts = time.strftime("%Y-%m-%d %H:%M:%S", time.gmtime())
    sys.stderr.write(f"[{ts} UTC] {msg}\n")
    sys.stderr.flush()


def debug(msg: str) -> None:
    if _verbose:
        log(f"DEBUG: {msg}")


def _json_default(obj: Any) -> Any:
    if isinstance(obj, HexBytes):
        return bytes(obj).hex()
    if isinstance(obj, (bytes, bytearray)):
        return obj.hex()
    if isinstance(obj, set):
        return list(obj)
    return str(obj)


def json_dumps(obj: Any) -> str:
    return json.dumps(obj, default=_json_default, ensure_ascii=True)


def load_json(path: str) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def parse_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"not an integer: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        if value.startswith("0x"):
            return int(value, 16)
        return int(value)
    return int(value)


def normalize_hash(value: Any) -> str:
    """Block hashes travel as hex strings; store them lowercase without a prefix."""
    if not isinstance(value, str) or not value:
        raise ValueError(f"invalid block hash: {value!r}")
    return bytes(HexBytes(value)).hex()


def short_id(value: str) -> str:
    if len(value) <= 16:
        return value
    return f"{value[:8]}...{value[-8:]}"
