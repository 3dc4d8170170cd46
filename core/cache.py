"""
Published stream cache.

The cache holds exactly one immutable StreamSnapshot. Publishing builds a new
snapshot and swaps the reference, so a reader always sees either the previous
or the new mapping in full.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional

from services.ppv.models import StreamRecord
from shared.logging.logger import get_logger

log = get_logger("core.cache")


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class StreamSnapshot:
    version: int = 0
    records: Mapping[str, StreamRecord] = field(
        default_factory=lambda: MappingProxyType({})
    )
    published_at: Optional[str] = None

    def __len__(self) -> int:
        return len(self.records)


class StreamCache:
    def __init__(self) -> None:
        self._snapshot = StreamSnapshot()

    # ------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------

    @property
    def snapshot(self) -> StreamSnapshot:
        return self._snapshot

    def get(self, stream_id: str) -> Optional[StreamRecord]:
        return self._snapshot.records.get(stream_id)

    def records(self) -> List[StreamRecord]:
        return list(self._snapshot.records.values())

    def __len__(self) -> int:
        return len(self._snapshot)

    # ------------------------------------------------------------
    # Writer
    # ------------------------------------------------------------

    def publish(self, records: Iterable[StreamRecord]) -> StreamSnapshot:
        """
        Replace the whole mapping.

        Records are keyed by id in iteration order; a later record with an
        id already seen replaces the earlier one.
        """
        mapping: Dict[str, StreamRecord] = {}
        for record in records:
            previous = mapping.get(record.id)
            if previous is not None and previous.title != record.title:
                log.warning(
                    f"Stream id collision on '{record.id}': "
                    f"{previous.title!r} replaced by {record.title!r}"
                )
            mapping[record.id] = record

        snapshot = StreamSnapshot(
            version=self._snapshot.version + 1,
            records=MappingProxyType(mapping),
            published_at=_utc_now_iso(),
        )
        self._snapshot = snapshot

        log.info(f"Published snapshot v{snapshot.version} with {len(mapping)} stream(s)")
        return snapshot
