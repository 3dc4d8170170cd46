"""HLS manifest detection, validation and line rewriting."""

from __future__ import annotations

from typing import Callable, Optional
from urllib.parse import urljoin, urlparse

from services.relay.errors import ProxyValidationError

MANIFEST_HEADER = "#EXTM3U"
MANIFEST_CONTENT_TYPE = "application/vnd.apple.mpegurl"

_BOM = "\ufeff"


def is_manifest(url: str, content_type: Optional[str] = None) -> bool:
    if urlparse(url).path.lower().endswith(".m3u8"):
        return True
    return "mpegurl" in (content_type or "").lower()


def validate_manifest(text: str) -> None:
    if not text.lstrip(_BOM).startswith(MANIFEST_HEADER):
        raise ProxyValidationError(f"Upstream manifest does not start with {MANIFEST_HEADER}")


def rewrite_manifest(
    text: str,
    base_url: str,
    relay_url: Callable[[str], str],
) -> str:
    """
    Route every URI line of a manifest back through the relay.

    Directive, comment and blank lines are kept verbatim. URI lines are
    resolved against base_url when relative and replaced by relay_url(absolute).
    Line count, order and line endings are preserved.
    """
    validate_manifest(text)

    out = []
    for line in text.split("\n"):
        body = line[:-1] if line.endswith("\r") else line
        stripped = body.strip().lstrip(_BOM)

        if not stripped or stripped.startswith("#"):
            out.append(line)
            continue

        out.append(relay_url(urljoin(base_url, stripped)) + line[len(body):])

    return "\n".join(out)
