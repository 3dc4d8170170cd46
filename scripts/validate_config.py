"""
Configuration validation script.

Validates shared/config/relay.json against minimal runtime expectations.

Design rules:
- No side effects on import
- No runtime startup
- Validation only (no mutation)
- Forward-compatible: unknown fields are ignored
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Tuple

# ------------------------------------------------------------
# Paths
# ------------------------------------------------------------

ROOT = Path(__file__).resolve().parents[1]
CONFIG_PATH = ROOT / "shared" / "config" / "relay.json"


# ------------------------------------------------------------
# Expected shape: section -> key -> accepted types
# ------------------------------------------------------------

_NUMBER = (int, float)

SCHEMA: Dict[str, Dict[str, Tuple[type, ...]]] = {
    "browser": {
        "headless": (bool,),
        "executable_path": (str, type(None)),
        "launch_timeout_ms": (int,),
        "user_agent": (str,),
        "args": (list,),
    },
    "discovery": {
        "site_url": (str,),
        "landing_timeout_ms": (int,),
        "settle_seconds": _NUMBER,
        "markers": (list,),
        "excluded_paths": (list,),
        "min_title_length": (int,),
    },
    "resolver": {
        "navigation_timeout_ms": (int,),
        "poll_interval": _NUMBER,
        "initial_wait": _NUMBER,
        "interaction_wait": _NUMBER,
        "variant_grace": _NUMBER,
        "max_frames": (int,),
        "candidate_delay": _NUMBER,
    },
    "proxy": {
        "public_base_url": (str,),
        "origin": (str,),
        "timeout_seconds": _NUMBER,
        "max_manifest_bytes": (int,),
    },
    "scheduler": {
        "interval_seconds": _NUMBER,
        "run_on_start": (bool,),
    },
    "server": {
        "host": (str,),
        "port": (int,),
    },
}


# ------------------------------------------------------------
# Helpers
# ------------------------------------------------------------

def _load_json(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}

    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
            if isinstance(data, dict):
                return data
            raise ValueError("Root JSON value must be an object")
    except Exception as e:
        raise ValueError(f"{path.name}: invalid JSON ({e})") from e


def _error(msg: str):
    print(f"[CONFIG ERROR] {msg}", file=sys.stderr)


# ------------------------------------------------------------
# Validators
# ------------------------------------------------------------

def validate_relay_config(data: Dict[str, Any]) -> List[str]:
    """
    Return a list of problems found in a relay.json payload.

    Missing sections and keys are allowed. Booleans are not accepted where
    numbers are expected.
    """
    problems: List[str] = []

    for section, keys in SCHEMA.items():
        raw = data.get(section)
        if raw is None:
            continue
        if not isinstance(raw, dict):
            problems.append(f"'{section}' must be an object")
            continue

        for key, accepted in keys.items():
            if key not in raw:
                continue
            value = raw[key]
            if isinstance(value, bool) and bool not in accepted:
                problems.append(f"'{section}.{key}' must not be a boolean")
            elif not isinstance(value, accepted):
                names = "/".join(t.__name__ for t in accepted)
                problems.append(f"'{section}.{key}' must be {names}")

    port = data.get("server", {}).get("port") if isinstance(data.get("server"), dict) else None
    if isinstance(port, int) and not isinstance(port, bool) and not 0 < port < 65536:
        problems.append("'server.port' must be between 1 and 65535")

    resolver = data.get("resolver") if isinstance(data.get("resolver"), dict) else {}
    for key in ("poll_interval", "initial_wait", "interaction_wait"):
        value = resolver.get(key)
        if isinstance(value, _NUMBER) and not isinstance(value, bool) and value <= 0:
            problems.append(f"'resolver.{key}' must be greater than 0")

    return problems


# ------------------------------------------------------------
# Entry point
# ------------------------------------------------------------

def main() -> int:
    try:
        data = _load_json(CONFIG_PATH)
    except ValueError as e:
        _error(str(e))
        return 1

    problems = validate_relay_config(data)
    for problem in problems:
        _error(f"relay.json: {problem}")

    if problems:
        print("Configuration validation failed.", file=sys.stderr)
        return 1

    print("Configuration validation passed.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
