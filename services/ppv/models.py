"""Live event data carriers shared by discovery, resolution and the cache."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def normalize_title(title: str) -> str:
    """Case and whitespace-insensitive key for title deduplication."""
    return " ".join(title.split()).lower()


@dataclass(frozen=True)
class LiveEventCandidate:
    title: str
    source_link: str
    channel: Optional[str] = None


@dataclass(frozen=True)
class ResolvedStream:
    candidate: LiveEventCandidate
    manifest_urls: Tuple[str, ...] = ()

    @property
    def found(self) -> bool:
        return bool(self.manifest_urls)


@dataclass(frozen=True)
class StreamRecord:
    """
    One cache entry: a resolved stream under its stable id.

    Feeds are addressed 1-based by the per-event endpoint.
    """

    id: str
    stream: ResolvedStream
    last_updated: str = field(default_factory=_utc_now_iso)

    @property
    def title(self) -> str:
        return self.stream.candidate.title

    @property
    def channel(self) -> Optional[str]:
        return self.stream.candidate.channel

    @property
    def manifest_urls(self) -> Tuple[str, ...]:
        return self.stream.manifest_urls

    def feed(self, index: int) -> Optional[str]:
        if index < 1 or index > len(self.manifest_urls):
            return None
        return self.manifest_urls[index - 1]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "channel": self.channel,
            "source_link": self.stream.candidate.source_link,
            "feeds": len(self.manifest_urls),
            "last_updated": self.last_updated,
        }
