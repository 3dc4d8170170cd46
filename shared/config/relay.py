"""
Relay runtime configuration loader.

Design rules:
- Import-safe (no side effects)
- JSON file first, environment overrides second
- Invalid values are ignored per-key, never globally
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from shared.logging.logger import get_logger

log = get_logger("shared.config.relay")

_CONFIG_PATH = Path(__file__).parent / "relay.json"

# Smallest poll step for manifest capture; zero would never advance the wait.
MIN_POLL_INTERVAL = 0.01

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/131.0.0.0 Safari/537.36"
)


@dataclass
class BrowserConfig:
    headless: bool = True
    executable_path: Optional[str] = None
    launch_timeout_ms: int = 30000
    viewport_width: int = 1920
    viewport_height: int = 1080
    user_agent: str = DEFAULT_USER_AGENT
    accept_language: str = "en-US,en;q=0.9"
    args: List[str] = field(default_factory=lambda: [
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-dev-shm-usage",
        "--disable-blink-features=AutomationControlled",
        "--disable-gpu",
        "--disable-extensions",
        "--mute-audio",
    ])


@dataclass
class DiscoveryConfig:
    site_url: str = "https://ppv.to/"
    landing_wait_until: str = "networkidle"
    landing_timeout_ms: int = 30000
    settle_seconds: float = 2.0
    markers: Tuple[str, ...] = ("live now",)
    live_glyph: str = "🔴"
    live_path: str = "/live/"
    excluded_fragments: Tuple[str, ...] = ("category", "jump")
    excluded_paths: Tuple[str, ...] = ("/live/sports",)
    min_title_length: int = 4


@dataclass
class ResolverConfig:
    wait_until: str = "domcontentloaded"
    navigation_timeout_ms: int = 25000
    poll_interval: float = 0.5
    initial_wait: float = 8.0
    interaction_wait: float = 5.0
    variant_grace: float = 2.0
    max_frames: int = 10
    candidate_delay: float = 1.0
    mailbox_size: int = 256
    manifest_suffix: str = ".m3u8"
    master_markers: Tuple[str, ...] = ("master.m3u8", "index.m3u8", "playlist.m3u8")


@dataclass
class ProxyConfig:
    public_base_url: str = ""
    origin: str = "https://ppv.to"
    user_agent: str = DEFAULT_USER_AGENT
    timeout_seconds: float = 15.0
    max_manifest_bytes: int = 2 * 1024 * 1024
    manifest_cache_control: str = "no-cache"
    segment_cache_control: str = "public, max-age=60"
    chunk_size: int = 64 * 1024


@dataclass
class SchedulerConfig:
    interval_seconds: float = 600.0
    run_on_start: bool = True


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 7000


@dataclass
class AppConfig:
    browser: BrowserConfig = field(default_factory=BrowserConfig)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    resolver: ResolverConfig = field(default_factory=ResolverConfig)
    proxy: ProxyConfig = field(default_factory=ProxyConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    server: ServerConfig = field(default_factory=ServerConfig)


# ------------------------------------------------------------
# Helpers
# ------------------------------------------------------------

def _load_json(path: Path) -> Dict[str, Any]:
    if not path.exists():
        log.debug(f"relay.json not found at {path}; using defaults")
        return {}

    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
            return data if isinstance(data, dict) else {}
    except Exception as e:
        log.warning(f"Failed to load relay.json ({e}); using defaults")
        return {}


def _apply(target: Any, raw: Optional[Dict[str, Any]], section: str) -> Any:
    """
    Copy known keys from raw onto a dataclass instance.

    Each value is coerced to the type of the existing default; a value that
    cannot be coerced is skipped with a warning and the default is kept.
    """
    if not isinstance(raw, dict):
        return target

    for key, value in raw.items():
        if not hasattr(target, key):
            log.debug(f"Unknown {section} key '{key}' ignored")
            continue

        current = getattr(target, key)
        try:
            setattr(target, key, _coerce(current, value))
        except (TypeError, ValueError):
            log.warning(
                f"Invalid value for {section}.{key}: {value!r}; keeping {current!r}"
            )

    return target


def _coerce(current: Any, value: Any) -> Any:
    if isinstance(current, bool):
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return _parse_bool(value)
        raise TypeError("expected boolean")
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    if isinstance(current, tuple):
        if isinstance(value, str) or not isinstance(value, (list, tuple)):
            raise TypeError("expected list")
        return tuple(str(v) for v in value)
    if isinstance(current, list):
        if not isinstance(value, (list, tuple)):
            raise TypeError("expected list")
        return [str(v) for v in value]
    if current is None:
        return None if value in (None, "") else str(value)
    return str(value)


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise ValueError("expected boolean")


_ENV_OVERRIDES = (
    ("PPVRELAY_SITE_URL", "discovery", "site_url"),
    ("PPVRELAY_PUBLIC_BASE_URL", "proxy", "public_base_url"),
    ("PPVRELAY_HOST", "server", "host"),
    ("PPVRELAY_PORT", "server", "port"),
    ("PPVRELAY_REFRESH_INTERVAL", "scheduler", "interval_seconds"),
    ("PPVRELAY_HEADLESS", "browser", "headless"),
    ("PPVRELAY_CHROME_PATH", "browser", "executable_path"),
)


def _apply_env(cfg: AppConfig) -> None:
    for env_key, section, attr in _ENV_OVERRIDES:
        value = os.getenv(env_key)
        if value is None:
            continue
        _apply(getattr(cfg, section), {attr: value}, section)


# ------------------------------------------------------------
# Public API
# ------------------------------------------------------------

def load_app_config(
    raw: Optional[Dict[str, Any]] = None,
    *,
    use_env: bool = True,
) -> AppConfig:
    raw = raw if raw is not None else _load_json(_CONFIG_PATH)
    if not isinstance(raw, dict):
        raw = {}

    cfg = AppConfig(
        browser=_apply(BrowserConfig(), raw.get("browser"), "browser"),
        discovery=_apply(DiscoveryConfig(), raw.get("discovery"), "discovery"),
        resolver=_apply(ResolverConfig(), raw.get("resolver"), "resolver"),
        proxy=_apply(ProxyConfig(), raw.get("proxy"), "proxy"),
        scheduler=_apply(SchedulerConfig(), raw.get("scheduler"), "scheduler"),
        server=_apply(ServerConfig(), raw.get("server"), "server"),
    )

    if use_env:
        _apply_env(cfg)

    cfg.scheduler.interval_seconds = max(30.0, float(cfg.scheduler.interval_seconds))
    cfg.resolver.poll_interval = max(MIN_POLL_INTERVAL, float(cfg.resolver.poll_interval))
    cfg.proxy.public_base_url = cfg.proxy.public_base_url.rstrip("/")

    return cfg
