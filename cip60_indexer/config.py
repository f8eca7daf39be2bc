import os
from typing import Any, Dict

from .util import load_json


DEFAULTS: Dict[str, Any] = {
    "ogmios_url": "ws://localhost:1337",
    "db_path": "./cip60.db",
    "open_timeout": 10.0,
    "request_timeout": 10.0,
    "health_check": True,
    "health_check_timeout": 5.0,
    "reconnect_base": 1.0,
    "reconnect_factor": 2.0,
    "reconnect_max": 60.0,
    "intersection_retries": 3,
    "intersection_retry_delay": 5.0,
    "checkpoint_interval": 1_000_000,
    "shutdown_grace": 30.0,
    "progress_host": "0.0.0.0",
    "progress_port": 3001,
    "start_point": None,
    "verbose": False,
}


def load_config(path: str) -> Dict[str, Any]:
    cfg = load_json(path)
    if not isinstance(cfg, dict):
        raise ValueError(f"config {path} must be a JSON object")
    for key, value in DEFAULTS.items():
        cfg.setdefault(key, value)
    if os.environ.get("OGMIOS_URL"):
        cfg["ogmios_url"] = os.environ["OGMIOS_URL"]
    return cfg
