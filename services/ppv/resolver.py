"""
Per-event manifest resolution.

Each candidate page is loaded in the shared rendering session while a
ManifestCapture scope listens to its network traffic. Observed manifest URLs
land in a bounded mailbox that is drained between polls.
"""

from __future__ import annotations

import asyncio
from typing import Any, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

from services.ppv.browser.session import RenderingSession, Unsubscribe
from services.ppv.errors import NavigationTimeout, ResolutionFailure
from services.ppv.models import LiveEventCandidate, ResolvedStream
from shared.config.relay import MIN_POLL_INTERVAL, ResolverConfig
from shared.logging.logger import get_logger

log = get_logger("ppv.resolver")


# Finds the first <video>, mutes it and starts playback so lazy players
# request their manifest. Returns whether a video element was found.
PLAY_VIDEO_SCRIPT = """
    () => {
        const video = document.querySelector('video');
        if (!video) return false;
        video.muted = true;
        video.click();
        const playPromise = video.play();
        if (playPromise !== undefined) {
            playPromise.catch(() => {});
        }
        return true;
    }
"""


def select_manifests(
    observed: Sequence[str],
    master_markers: Sequence[str] = ResolverConfig.master_markers,
) -> Tuple[str, ...]:
    """
    Deduplicate observed URLs (first-seen order) and prefer master playlists.

    When any URL path carries a master/index/playlist marker only that subset
    is kept; otherwise every distinct URL is.
    """
    unique = tuple(dict.fromkeys(observed))
    masters = tuple(
        url for url in unique
        if any(marker in urlparse(url).path for marker in master_markers)
    )
    return masters or unique


class ManifestCapture:
    """
    Scoped network observation for one candidate.

    Entering subscribes request and response observers on the session;
    leaving always unsubscribes them, whatever the exit path.
    """

    def __init__(self, session: RenderingSession, *, suffix: str = ".m3u8", maxsize: int = 256):
        self._session = session
        self._suffix = suffix
        self._mailbox: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._unsubscribe: Optional[Unsubscribe] = None
        self.urls: List[str] = []
        self.dropped = 0

    async def __aenter__(self) -> "ManifestCapture":
        self._unsubscribe = self._session.observe(
            self._on_request,
            self._on_response,
        )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.drain()

    # ------------------------------------------------------------

    def _matches(self, url: str) -> bool:
        return self._suffix in urlparse(url).path

    def _offer(self, url: str, source: str) -> None:
        if not self._matches(url):
            return
        try:
            self._mailbox.put_nowait(url)
            log.debug(f"Manifest in {source}: {url[:120]}")
        except asyncio.QueueFull:
            self.dropped += 1

    def _on_request(self, url: str) -> None:
        self._offer(url, "request")

    def _on_response(self, url: str) -> None:
        self._offer(url, "response")

    # ------------------------------------------------------------

    @property
    def active(self) -> bool:
        return self._unsubscribe is not None

    def drain(self) -> List[str]:
        while True:
            try:
                self.urls.append(self._mailbox.get_nowait())
            except asyncio.QueueEmpty:
                break
        return self.urls

    async def wait_for_any(self, budget: float, interval: float) -> bool:
        """Poll until something was captured or the budget is spent."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + budget
        interval = max(interval, MIN_POLL_INTERVAL)

        while not self.drain():
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await asyncio.sleep(min(interval, remaining))
        return bool(self.urls)


class StreamResolver:
    """Resolves candidates one at a time against a shared rendering session."""

    def __init__(self, config: Optional[ResolverConfig] = None):
        self._config = config or ResolverConfig()

    # ------------------------------------------------------------

    async def resolve(
        self,
        candidate: LiveEventCandidate,
        session: RenderingSession,
    ) -> ResolvedStream:
        """
        Capture the candidate's manifest URLs.

        Navigation and frame evaluation errors are logged and produce an empty
        result, so a single broken event never stops the batch.
        """
        try:
            urls = await self._capture(candidate, session)
        except Exception as e:
            failure = ResolutionFailure(candidate.title, e)
            log.error(f"Error processing event: {failure}")
            return ResolvedStream(candidate=candidate)

        return ResolvedStream(
            candidate=candidate,
            manifest_urls=select_manifests(urls, self._config.master_markers),
        )

    async def resolve_all(
        self,
        candidates: Sequence[LiveEventCandidate],
        session: RenderingSession,
    ) -> List[ResolvedStream]:
        results: List[ResolvedStream] = []
        total = len(candidates)

        for index, candidate in enumerate(candidates, start=1):
            log.info(f"Processing event {index}/{total}: {candidate.title}")
            resolved = await self.resolve(candidate, session)

            if resolved.found:
                log.info(f"Saved {len(resolved.manifest_urls)} stream(s) for {candidate.title}")
            else:
                log.info(f"No streams found for {candidate.title}")
            results.append(resolved)

            if index < total and self._config.candidate_delay > 0:
                await asyncio.sleep(self._config.candidate_delay)

        return results

    # ------------------------------------------------------------

    async def _capture(
        self,
        candidate: LiveEventCandidate,
        session: RenderingSession,
    ) -> List[str]:
        cfg = self._config

        async with ManifestCapture(
            session,
            suffix=cfg.manifest_suffix,
            maxsize=cfg.mailbox_size,
        ) as capture:
            log.debug(f"Navigating to {candidate.source_link}")
            try:
                await session.navigate(
                    candidate.source_link,
                    cfg.wait_until,
                    cfg.navigation_timeout_ms,
                )
            except NavigationTimeout as e:
                log.warning(f"Navigation timeout (continuing): {e}")

            found = await capture.wait_for_any(cfg.initial_wait, cfg.poll_interval)
            if found:
                log.debug(f"Found {len(capture.urls)} manifest(s), waiting for variants")
            else:
                found = await self._interact_with_frames(session, capture)

            # Sibling variant playlists usually follow the first manifest closely.
            if found and cfg.variant_grace > 0:
                await asyncio.sleep(cfg.variant_grace)

        if capture.dropped:
            log.warning(f"Dropped {capture.dropped} manifest observation(s); mailbox full")
        return capture.urls

    async def _interact_with_frames(
        self,
        session: RenderingSession,
        capture: ManifestCapture,
    ) -> bool:
        cfg = self._config
        frames: List[Any] = session.list_frames()[: cfg.max_frames]
        log.debug(f"No manifest yet, trying video interaction across {len(frames)} frame(s)")

        for frame_index, frame in enumerate(frames):
            try:
                has_video = await session.evaluate_in_frame(frame, PLAY_VIDEO_SCRIPT)
            except Exception as e:
                log.debug(f"Frame {frame_index} evaluation failed: {e}")
                continue

            if not has_video:
                continue

            log.debug(f"Video found in frame {frame_index}, waiting for manifest")
            if await capture.wait_for_any(cfg.interaction_wait, cfg.poll_interval):
                log.debug(f"Manifest loaded after video interaction in frame {frame_index}")
                return True
            log.debug(f"No manifest after interaction in frame {frame_index}")

        return False
