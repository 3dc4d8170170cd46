"""
Live event discovery.

The landing page is rendered by the session, then the heuristics below run
over its HTML:

1. find the "live now" landmark (or fall back to the first live link)
2. walk up to the nearest ancestor holding live links (the events container)
3. collect, filter and deduplicate the links into candidates
"""

from __future__ import annotations

import asyncio
import re
from typing import Dict, List, Optional, Set
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup, Tag

from services.ppv.browser.session import RenderingSession
from services.ppv.errors import DiscoveryError, NavigationTimeout
from services.ppv.models import LiveEventCandidate, normalize_title
from shared.config.relay import DiscoveryConfig
from shared.logging.logger import get_logger

log = get_logger("ppv.discovery")

HEADING_TAGS = {"h1", "h2", "h3", "h4", "h5", "h6"}
BLOCK_TAGS = [
    "div", "section", "article", "main", "aside", "nav",
    "header", "footer", "ul", "ol", "li", "table", "body",
]

# Longest label still considered a landmark for substring matches.
MAX_LANDMARK_LABEL = 40


# ----------------------------------------------------------------------
# Landmark
# ----------------------------------------------------------------------

def _collapse(text: str) -> str:
    return " ".join(text.split())


def _marker_pattern(marker: str) -> "re.Pattern[str]":
    words = [re.escape(w) for w in marker.split()]
    return re.compile(r"\s+".join(words), re.IGNORECASE)


def _find_landmark(soup: BeautifulSoup, config: DiscoveryConfig) -> Optional[Tag]:
    positions: Dict[int, int] = {
        id(el): index for index, el in enumerate(soup.find_all(True))
    }
    glyph = config.live_glyph
    ranked = []
    seen: Set[int] = set()

    for marker in config.markers:
        marker_lower = _collapse(marker).lower()
        pattern = _marker_pattern(marker)

        for text_node in soup.find_all(string=pattern):
            node = text_node.parent
            while isinstance(node, Tag) and not isinstance(node, BeautifulSoup):
                label = _collapse(node.get_text(" "))
                if len(label) > MAX_LANDMARK_LABEL:
                    break

                if id(node) not in seen:
                    seen.add(id(node))
                    cleaned = _collapse(label.replace(glyph, " ") if glyph else label).lower()
                    if marker_lower in cleaned:
                        is_heading = node.name in HEADING_TAGS
                        has_glyph = bool(glyph) and glyph in label
                        exact = cleaned == marker_lower
                        ranked.append((
                            not is_heading,
                            not has_glyph,
                            not exact,
                            positions.get(id(node), len(positions)),
                            node,
                        ))
                node = node.parent

    if not ranked:
        return None

    ranked.sort(key=lambda entry: entry[:4])
    if len(ranked) > 1:
        log.debug(f"{len(ranked)} landmark candidates; picked <{ranked[0][4].name}>")
    return ranked[0][4]


# ----------------------------------------------------------------------
# Links
# ----------------------------------------------------------------------

def _is_live_link(tag: Tag, config: DiscoveryConfig) -> bool:
    href = tag.get("href") or ""
    return config.live_path in href


def _live_links(root: Tag, config: DiscoveryConfig) -> List[Tag]:
    return [a for a in root.find_all("a", href=True) if _is_live_link(a, config)]


def _is_excluded(href: str, base_url: str, config: DiscoveryConfig) -> bool:
    if any(fragment in href for fragment in config.excluded_fragments):
        return True
    path = urlparse(urljoin(base_url, href)).path.rstrip("/")
    return path in {p.rstrip("/") for p in config.excluded_paths}


def _events_container(landmark: Tag, config: DiscoveryConfig) -> Optional[Tag]:
    node = landmark
    while isinstance(node, Tag) and not isinstance(node, BeautifulSoup):
        if _live_links(node, config):
            return node
        node = node.parent
    return None


# ----------------------------------------------------------------------
# Cards
# ----------------------------------------------------------------------

def _card_for(link: Tag) -> Optional[Tag]:
    node = link
    while isinstance(node, Tag) and not isinstance(node, BeautifulSoup):
        classes = " ".join(node.get("class") or []).lower()
        if "card" in classes or "item" in classes or node.name == "div":
            return node
        node = node.parent
    return None


def _card_title(card: Tag) -> str:
    heading = card.find("h5")
    if heading is None:
        heading = card.select_one('h4, h3, [class*="title"]')

    if heading is not None:
        return _collapse(heading.get_text(" "))

    for line in card.get_text("\n").split("\n"):
        if line.strip():
            return _collapse(line)
    return ""


def _card_channel(card: Tag) -> Optional[str]:
    el = card.select_one('[class*="channel"], [class*="network"]')
    if el is None:
        return None
    return _collapse(el.get_text(" ")) or None


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def extract_candidates(
    html: str,
    base_url: str,
    config: Optional[DiscoveryConfig] = None,
) -> List[LiveEventCandidate]:
    """Run the discovery heuristics over rendered HTML."""
    config = config or DiscoveryConfig()
    soup = BeautifulSoup(html or "", "html.parser")

    landmark = _find_landmark(soup, config)
    if landmark is None:
        first_link = next(iter(_live_links(soup, config)), None)
        if first_link is None:
            raise DiscoveryError("Could not find live-now landmark")
        landmark = first_link.find_parent(BLOCK_TAGS) or first_link
        log.info("Live-now landmark missing; falling back to first live link")

    container = _events_container(landmark, config)
    if container is None:
        raise DiscoveryError("Could not find events container")

    candidates: List[LiveEventCandidate] = []
    seen_links: Set[str] = set()
    seen_titles: Set[str] = set()

    for link in _live_links(container, config):
        href = link.get("href", "").strip()

        if not href or _is_excluded(href, base_url, config):
            continue

        if href in seen_links:
            continue

        card = _card_for(link)
        if card is None:
            continue

        title = _card_title(card)
        title_key = normalize_title(title)
        if title_key in seen_titles:
            continue

        if len(title) < config.min_title_length:
            log.debug(f"Skipping short title {title!r} ({href})")
            continue

        seen_links.add(href)
        seen_titles.add(title_key)
        candidates.append(LiveEventCandidate(
            title=title,
            source_link=urljoin(base_url, href),
            channel=_card_channel(card),
        ))

    return candidates


class EventDiscovery:
    """Loads the landing page through a rendering session and extracts candidates."""

    def __init__(self, config: Optional[DiscoveryConfig] = None):
        self._config = config or DiscoveryConfig()

    async def discover(self, session: RenderingSession) -> List[LiveEventCandidate]:
        cfg = self._config
        log.info(f"Navigating to {cfg.site_url}")

        try:
            await session.navigate(cfg.site_url, cfg.landing_wait_until, cfg.landing_timeout_ms)
        except NavigationTimeout as e:
            log.warning(f"Landing page load timeout, continuing: {e}")

        if cfg.settle_seconds > 0:
            await asyncio.sleep(cfg.settle_seconds)

        html = await session.content()
        candidates = extract_candidates(html, cfg.site_url, cfg)

        log.info(f"Found {len(candidates)} live event(s)")
        return candidates
