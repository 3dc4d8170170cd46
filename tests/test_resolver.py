"""Tests for manifest resolution against a fake rendering session."""

import asyncio
from unittest import TestCase

from services.ppv.errors import NavigationTimeout
from services.ppv.models import LiveEventCandidate
from services.ppv.resolver import ManifestCapture, StreamResolver, select_manifests
from shared.config.relay import ResolverConfig
from tests.fakes import FakeFrame, FakePage, FakeSession

EVENT_URL = "https://ppv.to/live/heat-magic"


def _candidate(url=EVENT_URL, title="Heat vs Magic"):
    return LiveEventCandidate(title=title, source_link=url)


def _fast_config(**overrides):
    values = dict(
        poll_interval=0.01,
        initial_wait=0.05,
        interaction_wait=0.05,
        variant_grace=0,
        candidate_delay=0,
    )
    values.update(overrides)
    return ResolverConfig(**values)


def _resolve(session, candidate=None, **overrides):
    resolver = StreamResolver(_fast_config(**overrides))
    return asyncio.run(resolver.resolve(candidate or _candidate(), session))


class TestSelectManifests(TestCase):
    """Test cases for select_manifests."""

    def test_master_subset_wins(self):
        observed = [
            "https://cdn.example/A/chunklist.m3u8",
            "https://cdn.example/A/chunklist.m3u8",
            "https://cdn.example/B/master.m3u8",
        ]
        self.assertEqual(select_manifests(observed), ("https://cdn.example/B/master.m3u8",))

    def test_all_distinct_without_master(self):
        observed = [
            "https://cdn.example/720/chunks.m3u8",
            "https://cdn.example/360/chunks.m3u8",
            "https://cdn.example/720/chunks.m3u8",
        ]
        self.assertEqual(
            select_manifests(observed),
            ("https://cdn.example/720/chunks.m3u8", "https://cdn.example/360/chunks.m3u8"),
        )

    def test_marker_in_query_does_not_count(self):
        observed = [
            "https://cdn.example/a/chunks.m3u8?next=index.m3u8",
            "https://cdn.example/b/chunks.m3u8",
        ]
        self.assertEqual(len(select_manifests(observed)), 2)

    def test_empty(self):
        self.assertEqual(select_manifests([]), ())


class TestManifestCapture(TestCase):
    """Test cases for the scoped network observation."""

    def test_filters_non_manifest_urls(self):
        session = FakeSession({EVENT_URL: FakePage(network=[
            "https://cdn.example/seg_001.ts",
            "https://cdn.example/live/index.m3u8?sig=1",
            "https://ads.example/pixel.gif",
        ])})

        async def scenario():
            async with ManifestCapture(session) as capture:
                await session.navigate(EVENT_URL, "domcontentloaded", 1000)
                capture.drain()
            return capture

        capture = asyncio.run(scenario())
        self.assertEqual(set(capture.urls), {"https://cdn.example/live/index.m3u8?sig=1"})

    def test_full_mailbox_drops_and_counts(self):
        session = FakeSession({EVENT_URL: FakePage(network=[
            "https://cdn.example/1.m3u8",
            "https://cdn.example/2.m3u8",
            "https://cdn.example/3.m3u8",
        ])})

        async def scenario():
            async with ManifestCapture(session, maxsize=1) as capture:
                await session.navigate(EVENT_URL, "domcontentloaded", 1000)
            return capture

        capture = asyncio.run(scenario())

        self.assertEqual(capture.urls, ["https://cdn.example/1.m3u8"])
        self.assertEqual(capture.dropped, 5)

    def test_wait_is_bounded_with_zero_interval(self):
        """Test that the wait ends at its budget even when the poll step is zero."""
        session = FakeSession()

        async def scenario():
            async with ManifestCapture(session) as capture:
                return await asyncio.wait_for(capture.wait_for_any(0.05, 0), timeout=2)

        self.assertFalse(asyncio.run(scenario()))

    def test_resolve_finishes_with_zero_poll_interval(self):
        session = FakeSession({EVENT_URL: FakePage(frames=[FakeFrame(has_video=True)])})
        resolver = StreamResolver(_fast_config(poll_interval=0))

        async def scenario():
            return await asyncio.wait_for(resolver.resolve(_candidate(), session), timeout=2)

        self.assertFalse(asyncio.run(scenario()).found)
        self.assertEqual(session.observers, 0)

    def test_unsubscribes_on_exit(self):
        session = FakeSession()

        async def scenario():
            async with ManifestCapture(session) as capture:
                self.assertTrue(capture.active)
                self.assertEqual(session.observers, 1)
            return capture

        capture = asyncio.run(scenario())
        self.assertFalse(capture.active)
        self.assertEqual(session.observers, 0)

    def test_unsubscribes_when_body_raises(self):
        session = FakeSession()

        async def scenario():
            async with ManifestCapture(session):
                raise RuntimeError("boom")

        with self.assertRaises(RuntimeError):
            asyncio.run(scenario())
        self.assertEqual(session.observers, 0)
        self.assertEqual(session.unsubscriptions, 1)


class TestStreamResolver(TestCase):
    """Test cases for StreamResolver.resolve and resolve_all."""

    def test_manifest_observed_during_load(self):
        session = FakeSession({EVENT_URL: FakePage(network=[
            "https://cdn.example/A/chunklist.m3u8",
            "https://cdn.example/A/chunklist.m3u8",
            "https://cdn.example/B/master.m3u8",
        ])})

        resolved = _resolve(session)

        self.assertTrue(resolved.found)
        self.assertEqual(resolved.manifest_urls, ("https://cdn.example/B/master.m3u8",))
        self.assertEqual(session.visited, [(EVENT_URL, "domcontentloaded", 25000)])
        self.assertEqual(session.evaluated, [])
        self.assertEqual(session.observers, 0)

    def test_frame_interaction_fallback(self):
        """Test that frames are tried in order until a video yields a manifest."""
        frames = [
            FakeFrame(error=RuntimeError("detached")),
            FakeFrame(has_video=False),
            FakeFrame(has_video=True),
        ]
        session = FakeSession({EVENT_URL: FakePage(
            frames=frames,
            play_network=["https://cdn.example/live/index.m3u8"],
        )})

        resolved = _resolve(session)

        self.assertEqual(resolved.manifest_urls, ("https://cdn.example/live/index.m3u8",))
        self.assertEqual(session.evaluated, frames)
        self.assertEqual(session.observers, 0)

    def test_frame_limit(self):
        frames = [FakeFrame(has_video=False), FakeFrame(has_video=True)]
        session = FakeSession({EVENT_URL: FakePage(
            frames=frames,
            play_network=["https://cdn.example/live/index.m3u8"],
        )})

        resolved = _resolve(session, max_frames=1)

        self.assertFalse(resolved.found)
        self.assertEqual(session.evaluated, frames[:1])

    def test_nothing_found(self):
        session = FakeSession({EVENT_URL: FakePage(frames=[FakeFrame(has_video=True)])})

        resolved = _resolve(session)

        self.assertFalse(resolved.found)
        self.assertEqual(resolved.manifest_urls, ())
        self.assertEqual(session.observers, 0)

    def test_navigation_timeout_is_not_fatal(self):
        session = FakeSession({EVENT_URL: FakePage(
            network=["https://cdn.example/live/playlist.m3u8"],
            timeout=True,
        )})

        resolved = _resolve(session)

        self.assertEqual(resolved.manifest_urls, ("https://cdn.example/live/playlist.m3u8",))

    def test_navigation_error_yields_empty_result(self):
        """Test that a broken page produces an empty stream and releases observers."""
        session = FakeSession({EVENT_URL: FakePage(error=RuntimeError("net::ERR_ABORTED"))})

        resolved = _resolve(session)

        self.assertFalse(resolved.found)
        self.assertEqual(resolved.candidate.source_link, EVENT_URL)
        self.assertEqual(session.subscriptions, 1)
        self.assertEqual(session.unsubscriptions, 1)

    def test_resolve_all_keeps_order_and_continues(self):
        second_url = "https://ppv.to/live/suns-kings"
        third_url = "https://ppv.to/live/arsenal-chelsea"
        session = FakeSession({
            EVENT_URL: FakePage(network=["https://cdn.example/1/index.m3u8"]),
            second_url: FakePage(error=NavigationTimeout(second_url, 25000), frames=[]),
            third_url: FakePage(network=["https://cdn.example/3/index.m3u8"]),
        })
        candidates = [
            _candidate(),
            _candidate(second_url, "Suns vs Kings"),
            _candidate(third_url, "Arsenal vs Chelsea"),
        ]

        resolver = StreamResolver(_fast_config())
        results = asyncio.run(resolver.resolve_all(candidates, session))

        self.assertEqual([r.candidate for r in results], candidates)
        self.assertEqual([r.found for r in results], [True, False, True])
        self.assertEqual([v[0] for v in session.visited], [EVENT_URL, second_url, third_url])
        self.assertEqual(session.observers, 0)
        self.assertEqual(session.unsubscriptions, 3)
