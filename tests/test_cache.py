"""Tests for the published stream cache."""

from unittest import TestCase

from core.cache import StreamCache
from services.ppv.models import LiveEventCandidate, ResolvedStream, StreamRecord


def _record(stream_id, title, *urls):
    candidate = LiveEventCandidate(title=title, source_link=f"https://ppv.to/live/{stream_id}")
    return StreamRecord(id=stream_id, stream=ResolvedStream(candidate, tuple(urls)))


class TestStreamCache(TestCase):
    """Test cases for StreamCache.publish and readers."""

    def test_starts_empty(self):
        cache = StreamCache()
        self.assertEqual(cache.snapshot.version, 0)
        self.assertEqual(len(cache), 0)
        self.assertIsNone(cache.get("anything"))

    def test_publish_replaces_whole_mapping(self):
        cache = StreamCache()
        cache.publish([_record("a", "Event A", "https://x/a.m3u8")])
        cache.publish([_record("b", "Event B", "https://x/b.m3u8")])

        self.assertIsNone(cache.get("a"))
        self.assertEqual(cache.get("b").title, "Event B")
        self.assertEqual(cache.snapshot.version, 2)

    def test_previous_snapshot_is_untouched(self):
        """Test that a reader holding the old snapshot keeps seeing it in full."""
        cache = StreamCache()
        first = cache.publish([_record("a", "Event A", "https://x/a.m3u8")])
        cache.publish([])

        self.assertEqual(list(first.records), ["a"])
        self.assertEqual(len(cache.snapshot), 0)

    def test_snapshot_records_are_read_only(self):
        cache = StreamCache()
        snapshot = cache.publish([_record("a", "Event A", "https://x/a.m3u8")])

        with self.assertRaises(TypeError):
            snapshot.records["b"] = _record("b", "Event B")

    def test_id_collision_last_wins(self):
        """Test that a later record with the same id replaces the earlier one."""
        cache = StreamCache()
        cache.publish([
            _record("heat-vs-magic", "Heat vs Magic", "https://x/1.m3u8"),
            _record("heat-vs-magic", "HEAT vs. MAGIC", "https://x/2.m3u8"),
        ])

        self.assertEqual(len(cache), 1)
        self.assertEqual(cache.get("heat-vs-magic").manifest_urls, ("https://x/2.m3u8",))


class TestStreamRecord(TestCase):
    """Test cases for StreamRecord feed addressing."""

    def test_feed_is_one_based(self):
        record = _record("a", "Event A", "https://x/1.m3u8", "https://x/2.m3u8")
        self.assertEqual(record.feed(1), "https://x/1.m3u8")
        self.assertEqual(record.feed(2), "https://x/2.m3u8")

    def test_feed_out_of_range(self):
        record = _record("a", "Event A", "https://x/1.m3u8")
        self.assertIsNone(record.feed(0))
        self.assertIsNone(record.feed(2))

    def test_to_dict(self):
        data = _record("a", "Event A", "https://x/1.m3u8").to_dict()
        self.assertEqual(data["id"], "a")
        self.assertEqual(data["feeds"], 1)
        self.assertTrue(data["last_updated"].endswith("Z"))
