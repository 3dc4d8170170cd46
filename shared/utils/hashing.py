"""Hashing helpers for stable event identifiers."""
from __future__ import annotations

import hashlib
import re

from shared.logging.logger import get_logger

log = get_logger("shared.utils.hashing")

MAX_ID_LENGTH = 64

_NON_SLUG = re.compile(r"[^a-z0-9]+")


def title_digest(title: str, *, length: int = 10) -> str:
    """Short deterministic digest of a title (whitespace/case-insensitive)."""

    normalized = " ".join(title.split()).lower()
    return hashlib.sha1(normalized.encode("utf-8")).hexdigest()[:length]


def stable_event_id(title: str, *, max_length: int = MAX_ID_LENGTH) -> str:
    """Derive the cache id for an event title.

    The title is lowercased, every run of characters outside ``[a-z0-9]``
    collapses to a single hyphen, and the result is trimmed and truncated to
    ``max_length`` without a trailing hyphen. The same title always yields the
    same id. Titles with nothing usable (e.g. only emoji) fall back to
    ``event-<digest>``.
    """

    slug = _NON_SLUG.sub("-", title.lower()).strip("-")
    slug = slug[:max_length].rstrip("-")

    if not slug:
        fallback = f"event-{title_digest(title)}"
        log.debug(f"Title {title!r} has no slug characters; using {fallback}")
        return fallback

    return slug
