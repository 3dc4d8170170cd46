"""
Relay tokens.

A token is the unpadded URL-safe base64 of the upstream URL. Encoding is pure
and needs no lookup table; decoding only accepts the canonical form, so
encode(decode(t)) == t for every token decode accepts.
"""

from __future__ import annotations

import base64
import binascii
import re
from urllib.parse import urlparse

from services.relay.errors import InvalidToken

_TOKEN_RE = re.compile(r"^[A-Za-z0-9_-]+$")


def encode_token(url: str) -> str:
    raw = base64.urlsafe_b64encode(url.encode("utf-8")).decode("ascii")
    return raw.rstrip("=")


def decode_token(token: str) -> str:
    if not token or not _TOKEN_RE.match(token) or len(token) % 4 == 1:
        raise InvalidToken(token)

    padded = token + "=" * (-len(token) % 4)
    try:
        url = base64.urlsafe_b64decode(padded).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise InvalidToken(token) from e

    if encode_token(url) != token:
        raise InvalidToken(token)

    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidToken(token)

    return url


def split_token(segment: str) -> str:
    """Strip the player-facing extension hint from a relay path segment."""
    return segment.split(".", 1)[0]
